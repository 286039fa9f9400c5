import logging
import threading
from datetime import timedelta
from typing import Iterable, Optional, Set
from .clients.base import RemoteClient
from .config import settings
from .models import utc_now
from .state import InstallStateManager

logger = logging.getLogger(__name__)

EMPTY_PLUGIN_ID = "00000000-0000-0000-0000-000000000000"

# Official library plugins, used when the server is unreachable and nothing is cached.
HARDCODED_PLUGIN_IDS = frozenset(pid.lower() for pid in (
    "CB91DFC9-B977-43BF-8E70-55F46E410FAB",  # Steam
    "AEBE8B7C-6DC3-4A66-AF31-E7375C6B5E9E",  # GOG
    "00000002-DBD1-46C6-B5D0-B1BA559D10E4",  # Epic Games
    "7E4FBB5E-2AE3-48D4-8BA0-6B30E7A4E287",  # Xbox
    "E3C26A3D-D695-4CB7-A769-5FF7612C7EDD",  # Battle.net
    "C2F038E5-8B92-4877-91F1-DA9094155FC5",  # Ubisoft Connect
    "00000001-EBB2-4EEC-ABCB-7C89937A42BB",  # itch.io
    "96E8C4BC-EC5C-4C8B-87E7-18EE5A690626",  # Humble
    "402674CD-4AF6-4886-B6EC-0E695BFA0688",  # Amazon Games
    "85DD7072-2F20-4E76-A007-41035E390724",  # Origin (legacy)
    "0E2E793E-E0DD-4447-835C-C44A1FD506EC",  # Bethesda (legacy)
    "E2A7D494-C138-489D-BB3F-1D786BEEB675",  # Twitch (legacy)
    "E4AC81CB-1B1A-4EC9-8639-9A9633989A71",  # PlayStation
))

def normalize_plugin_id(plugin_id: Optional[str]) -> str:
    return (plugin_id or "").strip().lower()

class AllowedSources:
    """
    Set of source plugins whose games may be sent to the remote service.
    Fallback chain: server -> persisted cache -> hardcoded list.
    """

    def __init__(self, install_state: InstallStateManager):
        self.install_state = install_state
        self._lock = threading.Lock()
        cached = {normalize_plugin_id(p) for p in install_state.get_allowed_plugins()}
        cached.discard("")
        self._allowed: Set[str] = cached or set(HARDCODED_PLUGIN_IDS)

    def is_allowed(self, plugin_id: Optional[str]) -> bool:
        pid = normalize_plugin_id(plugin_id)
        if not pid or pid == EMPTY_PLUGIN_ID:
            return False
        with self._lock:
            return pid in self._allowed

    def snapshot(self) -> Set[str]:
        with self._lock:
            return set(self._allowed)

    def replace(self, plugin_ids: Iterable[str]):
        ids = {normalize_plugin_id(p) for p in plugin_ids}
        ids.discard("")
        if not ids:
            return
        with self._lock:
            self._allowed = ids
        self.install_state.set_allowed_plugins(sorted(ids), utc_now())

    async def refresh(self, client: RemoteClient) -> bool:
        """Fetches the active plugin list from the server. Returns True when the set was replaced."""
        try:
            plugins = await client.get_allowed_sources()
        except Exception as e:
            logger.warning(f"Failed to fetch allowed plugins: {e}")
            plugins = None

        if plugins:
            active = [p.plugin_id for p in plugins if p.status == "active"]
            if active:
                self.replace(active)
                logger.info(f"Refreshed allowed plugins from server: {len(active)} active plugins")
                return True

        fetched_at = self.install_state.get_allowed_plugins_fetched_at()
        if fetched_at and utc_now() - fetched_at < timedelta(hours=settings.ALLOWED_SOURCES_CACHE_HOURS):
            logger.info("Server unreachable, using cached plugin list (still fresh)")
        elif self.install_state.get_allowed_plugins():
            logger.warning("Server unreachable, using stale cached plugin list")
        else:
            logger.warning("No plugin list from server, using hardcoded fallback")
        return False
