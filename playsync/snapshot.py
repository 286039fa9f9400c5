import logging
from typing import Dict, Iterable, List, Tuple
from .hashing import compute_game_metadata_hash
from .models import (
    AchievementSnapshot, GameAchievementSnapshot, GameAchievementsDto, GameSnapshot,
    GameSyncDto, SnapshotBaseline, utc_now,
)
from .state import JsonStateFile

logger = logging.getLogger(__name__)

class SnapshotStore(JsonStateFile):
    """
    Last acknowledged library and achievement state, used as the diff baseline.

    Kept in its own file so the install state file stays small. Readers get copies
    of the maps; only the methods below mutate the stored baseline.
    """
    model = SnapshotBaseline

    @property
    def has_library_baseline(self) -> bool:
        # Timestamp, not map size: an empty library is a valid baseline.
        with self._lock:
            return self.state.library_baseline_at is not None

    @property
    def has_achievements_baseline(self) -> bool:
        with self._lock:
            return self.state.achievements_baseline_at is not None

    def get_library_snapshot(self) -> Dict[str, GameSnapshot]:
        with self._lock:
            return {k: v.model_copy(deep=True) for k, v in self.state.library.items()}

    def get_achievements_snapshot(self) -> Dict[str, GameAchievementSnapshot]:
        with self._lock:
            return {k: v.model_copy(deep=True) for k, v in self.state.achievements.items()}

    def update_library_snapshot(self, library: Dict[str, GameSnapshot]):
        with self._lock:
            self.state.library = dict(library)
            self.state.library_baseline_at = utc_now()
            self._save_locked()

    def apply_library_diff(self, added: Dict[str, GameSnapshot], updated: Dict[str, GameSnapshot],
                           removed: Iterable[str]):
        with self._lock:
            self.state.library.update(added)
            self.state.library.update(updated)
            for playnite_id in removed:
                self.state.library.pop(playnite_id, None)
            self._save_locked()

    def update_achievements_snapshot(self, achievements: Dict[str, GameAchievementSnapshot]):
        with self._lock:
            self.state.achievements = dict(achievements)
            self.state.achievements_baseline_at = utc_now()
            self._save_locked()

    def apply_achievements_diff(self, changed: Dict[str, GameAchievementSnapshot], cleared: Iterable[str]):
        with self._lock:
            self.state.achievements.update(changed)
            for playnite_id in cleared:
                self.state.achievements.pop(playnite_id, None)
            self._save_locked()

    def clear_library_snapshot(self):
        """Drops the library baseline. Used when the server requests a full sync."""
        with self._lock:
            self.state.library = {}
            self.state.library_baseline_at = None
            self._save_locked()

    def clear_achievements_snapshot(self):
        with self._lock:
            self.state.achievements = {}
            self.state.achievements_baseline_at = None
            self._save_locked()


def build_game_snapshot(g: GameSyncDto) -> GameSnapshot:
    return GameSnapshot(
        playnite_id=g.playnite_id,
        game_id=g.game_id,
        plugin_id=g.plugin_id,
        playtime_seconds=g.playtime_seconds,
        play_count=g.play_count,
        last_activity=g.last_activity,
        metadata_hash=compute_game_metadata_hash(g),
        achievement_count_unlocked=g.achievement_count_unlocked,
        achievement_count_total=g.achievement_count_total,
    )

def build_achievement_snapshot(g: GameAchievementsDto) -> GameAchievementSnapshot:
    return GameAchievementSnapshot(
        playnite_id=g.playnite_id,
        achievements=[
            AchievementSnapshot(
                name=a.name,
                is_unlocked=a.is_unlocked,
                date_unlocked=a.date_unlocked,
                rarity_percent=a.rarity_percent,
            )
            for a in g.achievements
        ],
    )

def compute_library_diff(current: List[GameSyncDto], baseline: Dict[str, GameSnapshot]
                         ) -> Tuple[List[GameSyncDto], List[GameSyncDto], List[str]]:
    """
    Classifies the current library against the baseline.
    Returns (added, updated, removed); unchanged games appear in none of them.
    """
    added: List[GameSyncDto] = []
    updated: List[GameSyncDto] = []
    current_ids = set()

    for g in current:
        current_ids.add(g.playnite_id)
        prev = baseline.get(g.playnite_id)
        if prev is None:
            added.append(g)
            continue

        if (g.playtime_seconds != prev.playtime_seconds
                or g.play_count != prev.play_count
                or g.last_activity != prev.last_activity):
            updated.append(g)
            continue

        if compute_game_metadata_hash(g) != prev.metadata_hash:
            updated.append(g)

    removed = [playnite_id for playnite_id in baseline if playnite_id not in current_ids]
    return added, updated, removed

def _achievements_changed(current: GameAchievementsDto, prev: GameAchievementSnapshot) -> bool:
    if len(current.achievements) != len(prev.achievements):
        return True
    prev_by_name = {a.name or "": a for a in prev.achievements}
    for a in current.achievements:
        before = prev_by_name.get(a.name or "")
        if before is None:
            return True
        if a.is_unlocked != before.is_unlocked or a.rarity_percent != before.rarity_percent:
            return True
    return False

def compute_achievement_diff(entries: Dict[str, GameAchievementsDto],
                             baseline: Dict[str, GameAchievementSnapshot]
                             ) -> Tuple[List[GameAchievementsDto], List[str]]:
    """
    ``entries`` holds one DTO per eligible catalog game; an empty achievement list
    means the provider has no data for that game.

    Returns (changed, cleared). ``changed`` includes an empty-achievement entry for
    games that had data in the baseline but report none now. ``cleared`` lists
    baseline games that are no longer in the catalog at all.
    """
    changed: List[GameAchievementsDto] = []
    seen = set()

    for playnite_id, dto in entries.items():
        if not dto.achievements:
            if playnite_id in baseline:
                seen.add(playnite_id)
                changed.append(dto.model_copy(update={"achievements": []}))
            continue

        seen.add(playnite_id)
        prev = baseline.get(playnite_id)
        if prev is None or _achievements_changed(dto, prev):
            changed.append(dto)

    cleared = [playnite_id for playnite_id in baseline if playnite_id not in seen]
    return changed, cleared
