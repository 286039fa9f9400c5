import json
import logging
from datetime import datetime
from pathlib import Path
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Tuple
from .achievements import AchievementItem
from .models import GameSyncDto

logger = logging.getLogger(__name__)

class CatalogGame(BaseModel):
    """One item of the host application's game library."""
    id: str
    game_id: Optional[str] = None  # id within the source store
    plugin_id: Optional[str] = None
    name: Optional[str] = None
    playtime_seconds: int = 0
    play_count: int = 0
    last_activity: Optional[datetime] = None
    is_installed: bool = False
    completion_status_id: Optional[str] = None
    completion_status_name: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    developers: List[str] = Field(default_factory=list)
    publishers: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    series: List[str] = Field(default_factory=list)
    age_ratings: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    user_score: Optional[int] = None
    critic_score: Optional[int] = None
    community_score: Optional[int] = None
    release_year: Optional[int] = None
    release_month: Optional[int] = None
    release_day: Optional[int] = None
    added: Optional[datetime] = None
    modified: Optional[datetime] = None
    favorite: bool = False
    hidden: bool = False
    source_name: Optional[str] = None

def build_release_date(year: Optional[int], month: Optional[int], day: Optional[int]) -> Optional[str]:
    """Returns YYYY-MM-DD when month and day are known, YYYY when only the year is."""
    if not year:
        return None
    if month and day:
        return f"{year:04d}-{month:02d}-{day:02d}"
    return f"{year:04d}"

def _names(values: List[str]) -> Optional[List[str]]:
    return list(values) if values else None

def map_game_to_dto(g: CatalogGame, counts: Optional[Tuple[int, int]] = None) -> GameSyncDto:
    return GameSyncDto(
        playnite_id=g.id,
        game_id=g.game_id,
        plugin_id=g.plugin_id,
        game_name=g.name,
        playtime_seconds=g.playtime_seconds,
        play_count=g.play_count,
        last_activity=g.last_activity,
        is_installed=g.is_installed,
        completion_status_id=g.completion_status_id,
        completion_status_name=g.completion_status_name,
        achievement_count_unlocked=counts[0] if counts else None,
        achievement_count_total=counts[1] if counts else None,
        genres=_names(g.genres),
        platforms=_names(g.platforms),
        developers=_names(g.developers),
        publishers=_names(g.publishers),
        tags=_names(g.tags),
        features=_names(g.features),
        categories=_names(g.categories),
        series=_names(g.series),
        age_ratings=_names(g.age_ratings),
        regions=_names(g.regions),
        user_score=g.user_score,
        critic_score=g.critic_score,
        community_score=g.community_score,
        release_year=g.release_year or None,
        release_date=build_release_date(g.release_year, g.release_month, g.release_day),
        date_added=g.added,
        modified=g.modified,
        is_favorite=g.favorite,
        is_hidden=g.hidden,
        source_name=g.source_name,
    )

class CatalogExport(BaseModel):
    games: List[CatalogGame] = Field(default_factory=list)
    achievements: Dict[str, List[AchievementItem]] = Field(default_factory=dict)

class CatalogFile:
    """
    Reads the host's catalog export:
    ``{"games": [...], "achievements": {"<game id>": [...]}}``.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> CatalogExport:
        if not self.path.exists():
            logger.warning(f"Catalog export not found at {self.path}")
            return CatalogExport()
        with open(self.path, 'r') as f:
            return CatalogExport.model_validate(json.load(f))
