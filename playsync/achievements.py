import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pydantic import BaseModel
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

class AchievementItem(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    date_unlocked: Optional[datetime] = None
    is_unlocked: bool = False
    rarity_percent: Optional[float] = None

class AchievementProvider(ABC):
    """
    Source of per-game achievement data.
    Lookups return None when the provider is not installed or has no data for the game.
    """

    @property
    @abstractmethod
    def is_installed(self) -> bool: ...

    @property
    @abstractmethod
    def provider_name(self) -> str: ...

    def get_version(self) -> Optional[str]:
        return None

    @abstractmethod
    def get_counts(self, game_id: str) -> Optional[Tuple[int, int]]:
        """Returns (unlocked, total) from a single lookup."""

    @abstractmethod
    def get_achievements(self, game_id: str) -> Optional[List[AchievementItem]]: ...

    def get_unlocked_count(self, game_id: str) -> Optional[int]:
        counts = self.get_counts(game_id)
        return counts[0] if counts else None

    def get_total_count(self, game_id: str) -> Optional[int]:
        counts = self.get_counts(game_id)
        return counts[1] if counts else None

class AchievementAggregator(AchievementProvider):
    """
    Combines several providers; for each game the first installed provider with
    data wins. Counts always come from one provider so unlocked/total never mix.
    """

    def __init__(self, *providers: AchievementProvider):
        self._providers = list(providers)

    @property
    def provider_name(self) -> str:
        return "Aggregator"

    @property
    def is_installed(self) -> bool:
        return any(p.is_installed for p in self._providers)

    def get_counts(self, game_id: str) -> Optional[Tuple[int, int]]:
        for p in self._providers:
            if not p.is_installed:
                continue
            counts = p.get_counts(game_id)
            # (0, 0) means "known game, no achievements"; let the next provider answer
            if counts is not None and counts[1] > 0:
                return counts
        return None

    def get_achievements(self, game_id: str) -> Optional[List[AchievementItem]]:
        for p in self._providers:
            if not p.is_installed:
                continue
            achievements = p.get_achievements(game_id)
            if achievements is not None:
                return achievements
        return None

    def get_installed_providers(self) -> List[AchievementProvider]:
        return [p for p in self._providers if p.is_installed]

class StaticAchievementProvider(AchievementProvider):
    """Serves achievements from an in-memory map, e.g. the host's catalog export."""

    def __init__(self, achievements: Dict[str, List[AchievementItem]], name: str = "Catalog"):
        self._achievements = achievements
        self._name = name

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def is_installed(self) -> bool:
        return True

    def replace(self, achievements: Dict[str, List[AchievementItem]]):
        self._achievements = achievements

    def get_counts(self, game_id: str) -> Optional[Tuple[int, int]]:
        items = self._achievements.get(game_id)
        if items is None:
            return None
        return sum(1 for a in items if a.is_unlocked), len(items)

    def get_achievements(self, game_id: str) -> Optional[List[AchievementItem]]:
        items = self._achievements.get(game_id)
        return list(items) if items is not None else None
