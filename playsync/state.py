import json
import logging
import os
import threading
import uuid
import fcntl
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Type
from pydantic import BaseModel
from .models import ActiveSessionState, InstallState, SyncCursor
from .config import settings

logger = logging.getLogger(__name__)

class JsonStateFile:
    """
    One pydantic model persisted as one JSON file.

    Every read-modify-write on ``state`` goes through ``self._lock`` so concurrent
    callers are linearized. Each file is loaded and saved independently, so a crash
    while writing one file never touches the others.
    """
    model: Type[BaseModel] = BaseModel

    def __init__(self, path: str):
        self.path = Path(path)
        self.read_only = False
        self._lock = threading.RLock()
        self.state = self._load()

    def _load(self):
        if not self.path.exists():
            logger.info(f"No state file found at {self.path}, creating new.")
            return self.model()

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            return self.model.model_validate(data or {})
        except Exception as e:
            logger.error(f"Failed to load state from {self.path}: {e}. Starting fresh.", exc_info=True)
            return self.model()

    def save(self):
        with self._lock:
            self._save_locked()

    def _save_locked(self):
        if not settings.PERSIST_ENABLED or self.read_only:
            return

        tmp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Atomic write pattern with locking
            with open(tmp_path, 'w') as f:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning(f"Could not acquire lock for {self.path}. Skipping save cycle.")
                    return

                try:
                    json.dump(self.state.model_dump(mode="json"), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)

            os.rename(tmp_path, self.path)

        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")
            # If we can't write, switch to read-only to be safe for this run
            self.read_only = True


class InstallStateManager(JsonStateFile):
    """Install identity, active session markers, sync cursor and the allowed-source cache."""
    model = InstallState

    def ensure_install_id(self) -> str:
        with self._lock:
            if not self.state.install_id:
                self.state.install_id = str(uuid.uuid4())
                logger.info("Generated new install ID")
                self._save_locked()
            return self.state.install_id

    @property
    def install_id(self) -> Optional[str]:
        with self._lock:
            return self.state.install_id

    def get_session(self) -> ActiveSessionState:
        with self._lock:
            return self.state.session.model_copy()

    def set_active_session(self, session_id: str):
        """Stores the session id and drops any pending-start marker."""
        if not session_id:
            logger.warning("Attempted to set empty session ID")
            return
        with self._lock:
            logger.info(f"Setting active session ID: {session_id}")
            self.state.session.active_session_id = session_id
            self.state.session.pending_start_game_id = None
            self._save_locked()

    def clear_active_session(self):
        with self._lock:
            if self.state.session.active_session_id:
                logger.info("Clearing active session ID")
                self.state.session.active_session_id = None
                self._save_locked()

    def set_pending_start(self, game_id: Optional[str]):
        with self._lock:
            self.state.session.pending_start_game_id = game_id
            self._save_locked()

    def get_cursor(self) -> SyncCursor:
        with self._lock:
            return self.state.cursor.model_copy()

    def update_cursor(self, **changes):
        with self._lock:
            for key, value in changes.items():
                if key not in SyncCursor.model_fields:
                    raise AttributeError(f"SyncCursor has no field {key!r}")
                setattr(self.state.cursor, key, value)
            self._save_locked()

    def get_allowed_plugins(self) -> List[str]:
        with self._lock:
            return list(self.state.allowed_plugins)

    def get_allowed_plugins_fetched_at(self) -> Optional[datetime]:
        with self._lock:
            return self.state.allowed_plugins_last_fetched

    def set_allowed_plugins(self, plugin_ids: List[str], fetched_at: datetime):
        with self._lock:
            self.state.allowed_plugins = list(plugin_ids)
            self.state.allowed_plugins_last_fetched = fetched_at
            self._save_locked()
