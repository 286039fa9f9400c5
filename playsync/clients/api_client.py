import logging
import httpx
from typing import Awaitable, Callable, List, Optional, TypeVar
from pydantic import BaseModel
from ..breaker import CircuitBreaker
from ..config import settings
from ..errors import InvalidRequestError
from ..models import (
    QUEUED_SESSION_ID, AchievementsDiffSyncRequest, AchievementsFullSyncRequest, AllowedSource,
    AllowedSourcesResponse, FinishPayload, LibraryDiffSyncRequest, LibraryFullSyncRequest,
    StartPayload, SyncAck,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

START_PATH = "/api/playnite/v2/scrobble/start"
FINISH_PATH = "/api/playnite/v2/scrobble/finish"
LIBRARY_FULL_PATH = "/api/playnite/v2/library/sync-full"
LIBRARY_DIFF_PATH = "/api/playnite/v2/library/sync-diff"
ACHIEVEMENTS_FULL_PATH = "/api/playnite/v2/achievements/sync-full"
ACHIEVEMENTS_DIFF_PATH = "/api/playnite/v2/achievements/sync-diff"
ALLOWED_PLUGINS_PATH = "/api/playnite/allowed-plugins"

class ApiClient:
    """
    HTTP client for the remote service. Every call goes through one shared
    circuit breaker; transport errors, non-2xx statuses and unreadable bodies
    count as failures and end up as a None result.
    """

    def __init__(self, breaker: Optional[CircuitBreaker] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        headers = {}
        if settings.API_TOKEN:
            headers["Authorization"] = f"Bearer {settings.API_TOKEN}"
        self.client = http_client or httpx.AsyncClient(
            base_url=settings.API_BASE_URL.rstrip('/'),
            headers=headers,
            timeout=settings.REQUEST_TIMEOUT_SECONDS
        )
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.BREAKER_FAILURE_THRESHOLD,
            timeout=settings.BREAKER_TIMEOUT_SECONDS,
            jitter=settings.RETRY_JITTER_SECONDS
        )
        self.scrobble_retries = settings.SCROBBLE_MAX_RETRIES
        self.sync_retries = settings.SYNC_MAX_RETRIES
        self.base_delay = settings.RETRY_BASE_DELAY_SECONDS

    async def close(self):
        await self.client.aclose()

    async def _post_ack(self, path: str, payload: BaseModel) -> SyncAck:
        resp = await self.client.post(path, json=payload.model_dump(mode="json"))
        resp.raise_for_status()
        return SyncAck.model_validate(resp.json())

    async def _guarded(self, description: str, operation: Callable[[], Awaitable[T]],
                       max_retries: int) -> Optional[T]:
        try:
            return await self.breaker.execute(operation, max_retries=max_retries, base_delay=self.base_delay)
        except Exception as e:
            logger.error(f"{description} failed after retries: {e}")
            return None

    @staticmethod
    def _require_user(payload, call: str):
        if payload is None:
            raise InvalidRequestError(f"{call} called without a payload")
        if not payload.user_id:
            raise InvalidRequestError(f"{call} called with empty user_id")

    # --- Scrobbling ---

    async def start_session(self, payload: StartPayload) -> Optional[str]:
        self._require_user(payload, "start_session")
        if not payload.game_name:
            logger.warning("start_session called with empty game_name")

        ack = await self._guarded(
            "Scrobble start", lambda: self._post_ack(START_PATH, payload), self.scrobble_retries)
        if ack is not None and ack.is_queued:
            logger.info(f"Scrobble start queued with ID: {ack.queue_id}")
            return QUEUED_SESSION_ID
        logger.error("Failed to queue scrobble start request")
        return None

    async def finish_session(self, payload: FinishPayload) -> Optional[str]:
        self._require_user(payload, "finish_session")
        if not payload.session_id:
            raise InvalidRequestError("finish_session called with empty session_id")

        ack = await self._guarded(
            "Scrobble finish", lambda: self._post_ack(FINISH_PATH, payload), self.scrobble_retries)
        if ack is not None and ack.is_queued:
            logger.info(f"Scrobble finish queued with ID: {ack.queue_id}")
            return ack.status
        logger.error("Failed to queue scrobble finish request")
        return None

    # --- Library / achievements ---

    async def _sync(self, path: str, payload: BaseModel, call: str) -> Optional[SyncAck]:
        self._require_user(payload, call)
        return await self._guarded(call, lambda: self._post_ack(path, payload), self.sync_retries)

    async def sync_library_full(self, payload: LibraryFullSyncRequest) -> Optional[SyncAck]:
        return await self._sync(LIBRARY_FULL_PATH, payload, "sync_library_full")

    async def sync_library_diff(self, payload: LibraryDiffSyncRequest) -> Optional[SyncAck]:
        return await self._sync(LIBRARY_DIFF_PATH, payload, "sync_library_diff")

    async def sync_achievements_full(self, payload: AchievementsFullSyncRequest) -> Optional[SyncAck]:
        return await self._sync(ACHIEVEMENTS_FULL_PATH, payload, "sync_achievements_full")

    async def sync_achievements_diff(self, payload: AchievementsDiffSyncRequest) -> Optional[SyncAck]:
        return await self._sync(ACHIEVEMENTS_DIFF_PATH, payload, "sync_achievements_diff")

    # --- Allowed plugins ---

    async def _get_allowed(self) -> AllowedSourcesResponse:
        resp = await self.client.get(ALLOWED_PLUGINS_PATH)
        resp.raise_for_status()
        return AllowedSourcesResponse.model_validate(resp.json())

    async def get_allowed_sources(self) -> Optional[List[AllowedSource]]:
        res = await self._guarded("Allowed plugins fetch", self._get_allowed, self.sync_retries)
        return res.plugins if res is not None else None
