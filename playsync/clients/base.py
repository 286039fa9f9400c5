from typing import List, Optional, Protocol
from ..models import (
    AchievementsDiffSyncRequest, AchievementsFullSyncRequest, AllowedSource, FinishPayload,
    LibraryDiffSyncRequest, LibraryFullSyncRequest, StartPayload, SyncAck,
)

class RemoteClient(Protocol):
    """
    Calls the sync engine and scrobbler make against the remote service.
    None is the uniform "not delivered" result; implementations do not raise
    for transport failures.
    """

    async def start_session(self, payload: StartPayload) -> Optional[str]: ...

    async def finish_session(self, payload: FinishPayload) -> Optional[str]: ...

    async def sync_library_full(self, payload: LibraryFullSyncRequest) -> Optional[SyncAck]: ...

    async def sync_library_diff(self, payload: LibraryDiffSyncRequest) -> Optional[SyncAck]: ...

    async def sync_achievements_full(self, payload: AchievementsFullSyncRequest) -> Optional[SyncAck]: ...

    async def sync_achievements_diff(self, payload: AchievementsDiffSyncRequest) -> Optional[SyncAck]: ...

    async def get_allowed_sources(self) -> Optional[List[AllowedSource]]: ...
