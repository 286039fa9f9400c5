from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, List, Optional

QUEUED_SESSION_ID = "queued"

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class SyncOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    COOLDOWN = "cooldown"
    ERROR = "error"

# --- Wire payloads ---

class StartPayload(BaseModel):
    user_id: Optional[str] = None
    game_name: Optional[str] = None
    game_id: Optional[str] = None
    plugin_id: Optional[str] = None
    external_game_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    started_at: Optional[str] = None

class FinishPayload(BaseModel):
    user_id: Optional[str] = None
    game_name: Optional[str] = None
    game_id: Optional[str] = None
    plugin_id: Optional[str] = None
    external_game_id: Optional[str] = None
    session_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    finished_at: Optional[str] = None

class GameSyncDto(BaseModel):
    playnite_id: str
    game_id: Optional[str] = None
    plugin_id: Optional[str] = None
    game_name: Optional[str] = None
    playtime_seconds: int = 0
    play_count: int = 0
    last_activity: Optional[datetime] = None
    is_installed: bool = False
    completion_status_id: Optional[str] = None
    completion_status_name: Optional[str] = None
    achievement_count_unlocked: Optional[int] = None
    achievement_count_total: Optional[int] = None

    genres: Optional[List[str]] = None
    platforms: Optional[List[str]] = None
    developers: Optional[List[str]] = None
    publishers: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    features: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    series: Optional[List[str]] = None
    age_ratings: Optional[List[str]] = None
    regions: Optional[List[str]] = None

    user_score: Optional[int] = None
    critic_score: Optional[int] = None
    community_score: Optional[int] = None
    release_year: Optional[int] = None
    release_date: Optional[str] = None  # "YYYY-MM-DD" or "YYYY"
    date_added: Optional[datetime] = None
    modified: Optional[datetime] = None
    is_favorite: bool = False
    is_hidden: bool = False
    source_name: Optional[str] = None

class AchievementItemDto(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    date_unlocked: Optional[datetime] = None
    is_unlocked: bool = False
    rarity_percent: Optional[float] = None

class GameAchievementsDto(BaseModel):
    playnite_id: str
    game_id: Optional[str] = None
    plugin_id: Optional[str] = None
    achievements: List[AchievementItemDto] = Field(default_factory=list)

class LibraryFullSyncRequest(BaseModel):
    user_id: Optional[str] = None
    library: List[GameSyncDto] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)

class LibraryDiffSyncRequest(BaseModel):
    user_id: Optional[str] = None
    added: List[GameSyncDto] = Field(default_factory=list)
    updated: List[GameSyncDto] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    base_snapshot_hash: str = ""
    flags: List[str] = Field(default_factory=list)

class AchievementsFullSyncRequest(BaseModel):
    user_id: Optional[str] = None
    games: List[GameAchievementsDto] = Field(default_factory=list)

class AchievementsDiffSyncRequest(BaseModel):
    user_id: Optional[str] = None
    changed: List[GameAchievementsDto] = Field(default_factory=list)
    base_snapshot_hash: str = ""

class SyncAck(BaseModel):
    """Acknowledgement returned by every queued remote endpoint."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    status: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    queue_id: Optional[str] = Field(default=None, alias="queueId")
    cooldown_expires_at: Optional[datetime] = Field(default=None, alias="cooldownExpiresAt")

    @property
    def is_queued(self) -> bool:
        return self.success and self.status == "queued"

    @property
    def is_cooldown(self) -> bool:
        return self.status == "skipped" and (self.reason or "").startswith("cooldown_")

    @property
    def is_force_full_sync(self) -> bool:
        return self.status == "force-full-sync"

class AllowedSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plugin_id: str = Field(alias="pluginId")
    library_name: Optional[str] = Field(default=None, alias="libraryName")
    source_slug: Optional[str] = Field(default=None, alias="sourceSlug")
    status: Optional[str] = None

class AllowedSourcesResponse(BaseModel):
    plugins: List[AllowedSource] = Field(default_factory=list)
    source: Optional[str] = None

# --- Persisted state ---

class OperationKind(str, Enum):
    START = "start"
    FINISH = "finish"

class PendingOperation(BaseModel):
    kind: OperationKind
    start: Optional[StartPayload] = None
    finish: Optional[FinishPayload] = None
    queued_at: datetime = Field(default_factory=utc_now)
    flush_attempts: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_payload_matches_kind(self):
        if self.kind == OperationKind.START and (self.start is None or self.finish is not None):
            raise ValueError("start operation requires exactly a start payload")
        if self.kind == OperationKind.FINISH and (self.finish is None or self.start is not None):
            raise ValueError("finish operation requires exactly a finish payload")
        return self

    @classmethod
    def for_start(cls, payload: StartPayload) -> "PendingOperation":
        return cls(kind=OperationKind.START, start=payload)

    @classmethod
    def for_finish(cls, payload: FinishPayload) -> "PendingOperation":
        return cls(kind=OperationKind.FINISH, finish=payload)

class PendingQueueState(BaseModel):
    items: List[PendingOperation] = Field(default_factory=list)

class ActiveSessionState(BaseModel):
    active_session_id: Optional[str] = None
    pending_start_game_id: Optional[str] = None

class SyncCursor(BaseModel):
    last_library_hash: Optional[str] = None
    last_achievement_hash: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_count: int = 0
    last_full_sync_at: Optional[datetime] = None
    library_cooldown_until: Optional[datetime] = None
    library_diff_cooldown_until: Optional[datetime] = None
    achievement_cooldown_until: Optional[datetime] = None

class InstallState(BaseModel):
    install_id: Optional[str] = None
    session: ActiveSessionState = Field(default_factory=ActiveSessionState)
    cursor: SyncCursor = Field(default_factory=SyncCursor)
    allowed_plugins: List[str] = Field(default_factory=list)
    allowed_plugins_last_fetched: Optional[datetime] = None

class GameSnapshot(BaseModel):
    playnite_id: str
    game_id: Optional[str] = None
    plugin_id: Optional[str] = None
    playtime_seconds: int = 0
    play_count: int = 0
    last_activity: Optional[datetime] = None
    metadata_hash: str = ""
    achievement_count_unlocked: Optional[int] = None
    achievement_count_total: Optional[int] = None

class AchievementSnapshot(BaseModel):
    name: Optional[str] = None
    is_unlocked: bool = False
    date_unlocked: Optional[datetime] = None
    rarity_percent: Optional[float] = None

class GameAchievementSnapshot(BaseModel):
    playnite_id: str
    achievements: List[AchievementSnapshot] = Field(default_factory=list)

class SnapshotBaseline(BaseModel):
    library: Dict[str, GameSnapshot] = Field(default_factory=dict)
    achievements: Dict[str, GameAchievementSnapshot] = Field(default_factory=dict)
    library_baseline_at: Optional[datetime] = None
    achievements_baseline_at: Optional[datetime] = None
