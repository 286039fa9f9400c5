import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel
from .catalog import CatalogGame
from .clients.base import RemoteClient
from .config import settings
from .models import QUEUED_SESSION_ID, FinishPayload, OperationKind, PendingOperation, StartPayload
from .pending import PendingOperationQueue
from .sources import AllowedSources
from .state import InstallStateManager

logger = logging.getLogger(__name__)

def local_timestamp(now: Optional[datetime] = None) -> str:
    """Local wall-clock time with its UTC offset, e.g. 2024-05-01T20:15:00+02:00."""
    now = now or datetime.now().astimezone()
    return now.isoformat(timespec="seconds")

class FlushResult(BaseModel):
    delivered: int = 0
    requeued: int = 0
    dropped: int = 0

class ScrobblingService:
    """
    Turns game start/stop notifications into remote sessions.

    Undelivered calls go to the pending queue. A stop for a game whose start is
    still queued is queued as a finish with the "queued" session sentinel so the
    replay produces a paired session.
    """

    def __init__(self, client: RemoteClient, install_state: InstallStateManager, queue: PendingOperationQueue,
                 sources: AllowedSources, max_flush_attempts: Optional[int] = None):
        self.client = client
        self.install_state = install_state
        self.queue = queue
        self.sources = sources
        self.max_flush_attempts = max_flush_attempts or settings.MAX_FLUSH_ATTEMPTS
        self._flush_lock = asyncio.Lock()

    def _metadata(self, game: CatalogGame) -> Dict[str, str]:
        return {"PluginId": game.plugin_id or ""}

    def _start_payload(self, game: CatalogGame) -> StartPayload:
        return StartPayload(
            user_id=self.install_state.ensure_install_id(),
            game_name=game.name,
            game_id=game.id,
            plugin_id=game.plugin_id,
            external_game_id=game.game_id,
            metadata=self._metadata(game),
            started_at=local_timestamp(),
        )

    def _finish_payload(self, game: CatalogGame, session_id: str) -> FinishPayload:
        return FinishPayload(
            user_id=self.install_state.ensure_install_id(),
            game_name=game.name,
            game_id=game.id,
            plugin_id=game.plugin_id,
            external_game_id=game.game_id,
            session_id=session_id,
            metadata=self._metadata(game),
            finished_at=local_timestamp(),
        )

    async def on_game_started(self, game: CatalogGame):
        try:
            if settings.DISABLE_SCROBBLING:
                logger.info("Scrobbling disabled, skipping game start tracking")
                return
            if not self.sources.is_allowed(game.plugin_id):
                logger.info(f"Skipping scrobble start for unsupported plugin: {game.plugin_id}")
                return

            logger.info(f"Starting scrobble session for game: {game.name} (ID: {game.id})")
            payload = self._start_payload(game)
            session_id = await self.client.start_session(payload)
            if session_id:
                self.install_state.set_active_session(session_id)
                logger.info(f"Successfully started scrobble session with ID: {session_id}")
                return

            logger.error(f"Failed to start scrobble session for game: {game.name} (ID: {game.id}). Queuing start for retry.")
            self.queue.enqueue(PendingOperation.for_start(payload))
            self.install_state.set_pending_start(game.id)
        except Exception as e:
            logger.error(f"Error starting scrobble session for game: {game.name} (ID: {game.id}): {e}", exc_info=True)

    async def on_game_stopped(self, game: CatalogGame):
        try:
            if settings.DISABLE_SCROBBLING:
                logger.info("Scrobbling disabled, skipping game stop tracking")
                return

            session = self.install_state.get_session()
            if session.pending_start_game_id and session.pending_start_game_id == game.id:
                logger.info(f"Queuing finish to pair with pending start for game: {game.name} (ID: {game.id})")
                self.queue.enqueue(PendingOperation.for_finish(self._finish_payload(game, QUEUED_SESSION_ID)))
                self.install_state.set_pending_start(None)
                return

            if not session.active_session_id:
                logger.warning("No active session ID found when stopping game")
                return

            if not self.sources.is_allowed(game.plugin_id):
                logger.info(f"Skipping scrobble finish for unsupported plugin: {game.plugin_id}")
                self.install_state.clear_active_session()
                return

            logger.info(f"Stopping scrobble session for game: {game.name} (ID: {game.id})")
            payload = self._finish_payload(game, session.active_session_id)
            if await self.client.finish_session(payload) is not None:
                self.install_state.clear_active_session()
                logger.info(f"Successfully finished scrobble session for game: {game.name} (ID: {game.id})")
                return

            # Session id stays in place so a later retry can still reference it.
            logger.error(f"Failed to finish game session for {game.name} (ID: {game.id}). Queuing for retry.")
            self.queue.enqueue(PendingOperation.for_finish(payload))
        except Exception as e:
            logger.error(f"Error stopping scrobble session for game: {game.name} (ID: {game.id}): {e}", exc_info=True)

    async def on_application_stopped(self):
        """Finishes a still-active session when the host application shuts down."""
        try:
            if settings.DISABLE_SCROBBLING:
                logger.info("Scrobbling disabled, skipping application stop cleanup")
                return

            session = self.install_state.get_session()
            if not session.active_session_id:
                logger.debug("No active session to clean up on application stop")
                return

            logger.info("Application stopping with active session, finishing scrobble session")
            payload = FinishPayload(
                user_id=self.install_state.ensure_install_id(),
                session_id=session.active_session_id,
                metadata={"reason": "application_stopped"},
                finished_at=local_timestamp(),
            )
            if await self.client.finish_session(payload) is not None:
                self.install_state.clear_active_session()
                logger.info("Successfully cleaned up active session on application stop")
                return

            logger.error("Failed to finish active session on application stop. Queuing for retry.")
            self.queue.enqueue(PendingOperation.for_finish(payload))
        except Exception as e:
            logger.error(f"Error cleaning up active session on application stop: {e}", exc_info=True)

    def _adopt_replayed_session(self, payload: StartPayload, session_id: str):
        """A replayed start for the game still marked as pending becomes the live session."""
        session = self.install_state.get_session()
        if payload.game_id and session.pending_start_game_id == payload.game_id:
            logger.info(f"Replayed start for game {payload.game_id} delivered, tracking session {session_id}")
            self.install_state.set_active_session(session_id)

    async def flush_pending(self) -> FlushResult:
        """
        Replays every queued operation once. Failures are re-queued in their
        original order until they reach ``max_flush_attempts``, then dropped.
        A flush already in progress is not re-entered.
        """
        if self._flush_lock.locked():
            logger.debug("Flush already running, skipping")
            return FlushResult()

        async with self._flush_lock:
            pending = self.queue.dequeue_all()
            result = FlushResult()
            if not pending:
                return result

            logger.info(f"Flushing {len(pending)} pending scrobble(s)")
            failed: List[PendingOperation] = []

            for op in pending:
                success = False
                try:
                    if op.kind == OperationKind.START and op.start is not None:
                        session_id = await self.client.start_session(op.start)
                        success = session_id is not None
                        if session_id:
                            self._adopt_replayed_session(op.start, session_id)
                    elif op.kind == OperationKind.FINISH and op.finish is not None:
                        success = await self.client.finish_session(op.finish) is not None
                    else:
                        logger.warning(f"Dropping invalid pending scrobble (type={op.kind.value})")
                        result.dropped += 1
                        continue
                except Exception as e:
                    logger.error(f"Exception flushing pending scrobble (type={op.kind.value}, queued={op.queued_at.isoformat()}): {e}",
                                 exc_info=True)

                if success:
                    result.delivered += 1
                    continue

                op.flush_attempts += 1
                if op.flush_attempts >= self.max_flush_attempts:
                    logger.warning(f"Dropping pending scrobble after {op.flush_attempts} failed flush attempts "
                                   f"(type={op.kind.value}, queued={op.queued_at.isoformat()})")
                    result.dropped += 1
                else:
                    failed.append(op)

            if failed:
                logger.info(f"Re-queuing {len(failed)} pending scrobble(s) for later retry")
                # Retained items go ahead of anything queued while the flush was running.
                self.queue.requeue_front(failed)
                result.requeued = len(failed)

            return result
