import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from .achievements import AchievementProvider
from .clients.base import RemoteClient
from .catalog import CatalogGame, map_game_to_dto
from .config import active_flags, settings
from .hashing import compute_achievement_hash, compute_library_hash
from .models import (
    AchievementItemDto, AchievementsDiffSyncRequest, AchievementsFullSyncRequest, GameAchievementsDto,
    GameSyncDto, LibraryDiffSyncRequest, LibraryFullSyncRequest, SyncAck, SyncCursor, SyncOutcome, utc_now,
)
from .snapshot import (
    SnapshotStore, build_achievement_snapshot, build_game_snapshot,
    compute_achievement_diff, compute_library_diff,
)
from .sources import AllowedSources
from .state import InstallStateManager

logger = logging.getLogger(__name__)

def _cooldown_active(until: Optional[datetime]) -> bool:
    if until is None:
        return False
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    return utc_now() < until

class SyncEngine:
    """
    Library and achievement sync against the remote service.

    Each kind runs the same steps: cooldown gate, build + hash, hash skip, full or
    diff send, then acknowledgement handling. Baseline and cursor are written only
    after the server accepted the payload.
    """

    def __init__(self, client: RemoteClient, install_state: InstallStateManager, snapshots: SnapshotStore,
                 sources: AllowedSources, achievements: AchievementProvider):
        self.client = client
        self.install_state = install_state
        self.snapshots = snapshots
        self.sources = sources
        self.achievements = achievements

    # --- Building ---

    def _eligible(self, games: List[CatalogGame]) -> List[CatalogGame]:
        return [g for g in games if self.sources.is_allowed(g.plugin_id)]

    def build_library(self, games: List[CatalogGame]) -> List[GameSyncDto]:
        eligible = self._eligible(games)
        filtered = len(games) - len(eligible)
        if filtered:
            logger.info(f"Filtered {filtered} games from unsupported plugins (sending {len(eligible)}/{len(games)})")

        with_counts = settings.SYNC_ACHIEVEMENTS and self.achievements.is_installed
        return [map_game_to_dto(g, self.achievements.get_counts(g.id) if with_counts else None)
                for g in eligible]

    def build_achievement_entries(self, games: List[CatalogGame]) -> Dict[str, GameAchievementsDto]:
        """
        One entry per eligible game, keyed by catalog id. Games without provider
        data get an empty achievement list. Duplicate achievement names collapse
        to the last one reported.
        """
        entries = {}
        for g in self._eligible(games):
            by_name: Dict[str, AchievementItemDto] = {}
            for a in self.achievements.get_achievements(g.id) or []:
                by_name[a.name or ""] = AchievementItemDto(**a.model_dump())
            entries[g.id] = GameAchievementsDto(
                playnite_id=g.id,
                game_id=g.game_id,
                plugin_id=g.plugin_id,
                achievements=list(by_name.values()),
            )
        return entries

    def _build_and_hash_library(self, games) -> Tuple[List[GameSyncDto], str]:
        library = self.build_library(games)
        return library, compute_library_hash(library)

    def _build_and_hash_achievements(self, games) -> Tuple[Dict[str, GameAchievementsDto], str]:
        entries = self.build_achievement_entries(games)
        return entries, compute_achievement_hash(e for e in entries.values() if e.achievements)

    # --- Public entry points ---

    async def sync_library(self, games: List[CatalogGame], full: bool = False) -> SyncOutcome:
        try:
            return await self._sync_library(games, full, bypass_cooldown=False)
        except Exception as e:
            logger.error(f"Error in library sync: {e}", exc_info=True)
            return SyncOutcome.ERROR

    async def sync_achievements(self, games: List[CatalogGame], full: bool = False) -> SyncOutcome:
        try:
            return await self._sync_achievements(games, full, bypass_cooldown=False)
        except Exception as e:
            logger.error(f"Error in achievements sync: {e}", exc_info=True)
            return SyncOutcome.ERROR

    async def sync_all(self, games: List[CatalogGame], full: bool = False) -> Tuple[SyncOutcome, SyncOutcome]:
        library = await self.sync_library(games, full)
        achievements = await self.sync_achievements(games, full)
        return library, achievements

    # --- Library ---

    async def _sync_library(self, games, full: bool, bypass_cooldown: bool) -> SyncOutcome:
        cursor = self.install_state.get_cursor()
        if not bypass_cooldown and self._library_cooldown(cursor, full):
            return SyncOutcome.COOLDOWN

        library, library_hash = await asyncio.to_thread(self._build_and_hash_library, games)
        has_baseline = self.snapshots.has_library_baseline

        if library_hash == cursor.last_library_hash and has_baseline:
            logger.info("Library hash unchanged since last sync, skipping")
            return SyncOutcome.SKIPPED

        if not full and not has_baseline:
            logger.info("No library baseline yet, sending full sync instead of diff")
            full = True
            if not bypass_cooldown and self._library_cooldown(cursor, full):
                return SyncOutcome.COOLDOWN

        user_id = self.install_state.ensure_install_id()

        if full:
            logger.info(f"Starting full library sync ({len(library)} games)")
            ack = await self.client.sync_library_full(LibraryFullSyncRequest(
                user_id=user_id, library=library, flags=active_flags()))
            outcome = self._check_library_ack(ack, "full")
            if outcome is not SyncOutcome.SUCCESS:
                return outcome

            snapshot = {g.playnite_id: build_game_snapshot(g) for g in library}
            await asyncio.to_thread(self.snapshots.update_library_snapshot, snapshot)
            self._record_library_sync(library_hash, len(library), full=True)
            return SyncOutcome.SUCCESS

        baseline = self.snapshots.get_library_snapshot()
        added, updated, removed = await asyncio.to_thread(compute_library_diff, library, baseline)

        if not (added or updated or removed):
            logger.info("Library diff is empty, skipping")
            self.install_state.update_cursor(last_library_hash=library_hash)
            return SyncOutcome.SKIPPED

        logger.info(f"Library diff: {len(added)} added, {len(updated)} updated, {len(removed)} removed")
        ack = await self.client.sync_library_diff(LibraryDiffSyncRequest(
            user_id=user_id,
            added=added,
            updated=updated,
            removed=removed,
            base_snapshot_hash=cursor.last_library_hash or "",
            flags=active_flags(),
        ))

        if ack is not None and ack.is_force_full_sync:
            logger.info(f"Server requested full library sync (reason: {ack.reason}), falling back")
            self.snapshots.clear_library_snapshot()
            self.install_state.update_cursor(last_library_hash=None, library_cooldown_until=None)
            return await self._sync_library(games, full=True, bypass_cooldown=True)

        outcome = self._check_library_ack(ack, "diff")
        if outcome is not SyncOutcome.SUCCESS:
            return outcome

        await asyncio.to_thread(
            self.snapshots.apply_library_diff,
            {g.playnite_id: build_game_snapshot(g) for g in added},
            {g.playnite_id: build_game_snapshot(g) for g in updated},
            removed,
        )
        self._record_library_sync(library_hash, len(library))
        return SyncOutcome.SUCCESS

    def _library_cooldown(self, cursor: SyncCursor, full: bool) -> bool:
        """Full and diff library syncs are gated by separate server cooldowns."""
        until = cursor.library_cooldown_until if full else cursor.library_diff_cooldown_until
        if _cooldown_active(until):
            logger.info(f"Library {'full' if full else 'diff'} sync skipped: cooldown active until {until.isoformat()}")
            return True
        return False

    def _check_library_ack(self, ack: Optional[SyncAck], mode: str) -> SyncOutcome:
        if ack is None:
            logger.error(f"Failed to queue {mode} library sync")
            return SyncOutcome.ERROR
        if ack.is_cooldown:
            self._store_cooldown(ack, "library_cooldown_until" if mode == "full" else "library_diff_cooldown_until")
            return SyncOutcome.COOLDOWN
        if ack.is_queued:
            return SyncOutcome.SUCCESS
        logger.error(f"Unexpected response from {mode} library sync: status={ack.status}")
        return SyncOutcome.ERROR

    def _record_library_sync(self, library_hash: str, count: int, full: bool = False):
        now = utc_now()
        changes = dict(
            last_library_hash=library_hash,
            last_sync_at=now,
            last_sync_count=count,
        )
        if full:
            changes["last_full_sync_at"] = now
            changes["library_cooldown_until"] = None
        else:
            changes["library_diff_cooldown_until"] = None
        self.install_state.update_cursor(**changes)
        logger.info(f"{'Full' if full else 'Diff'} library sync queued ({count} games)")

    # --- Achievements ---

    async def _sync_achievements(self, games, full: bool, bypass_cooldown: bool) -> SyncOutcome:
        if not settings.SYNC_ACHIEVEMENTS or not self.achievements.is_installed:
            logger.info("Achievement sync skipped: disabled or no achievement provider installed")
            return SyncOutcome.SKIPPED

        cursor = self.install_state.get_cursor()
        if not bypass_cooldown and _cooldown_active(cursor.achievement_cooldown_until):
            logger.info(f"Achievement sync skipped: cooldown active until {cursor.achievement_cooldown_until.isoformat()}")
            return SyncOutcome.COOLDOWN

        entries, achievement_hash = await asyncio.to_thread(self._build_and_hash_achievements, games)
        has_baseline = self.snapshots.has_achievements_baseline

        if achievement_hash == cursor.last_achievement_hash and has_baseline:
            logger.info("Achievement hash unchanged since last sync, skipping")
            return SyncOutcome.SKIPPED

        if not full and not has_baseline:
            logger.info("No achievement baseline yet, sending full sync instead of diff")
            full = True

        user_id = self.install_state.ensure_install_id()

        if full:
            with_data = [e for e in entries.values() if e.achievements]
            if not with_data:
                logger.info("No games with achievements found, recording empty baseline")
                self.snapshots.update_achievements_snapshot({})
                return SyncOutcome.SKIPPED

            logger.info(f"Sending full achievements for {len(with_data)} games")
            ack = await self.client.sync_achievements_full(AchievementsFullSyncRequest(
                user_id=user_id, games=with_data))
            outcome = self._check_achievements_ack(ack, "full")
            if outcome is not SyncOutcome.SUCCESS:
                return outcome

            await asyncio.to_thread(self.snapshots.update_achievements_snapshot,
                                    {e.playnite_id: build_achievement_snapshot(e) for e in with_data})
            self.install_state.update_cursor(last_achievement_hash=achievement_hash,
                                             achievement_cooldown_until=None)
            return SyncOutcome.SUCCESS

        baseline = self.snapshots.get_achievements_snapshot()
        changed, cleared = await asyncio.to_thread(compute_achievement_diff, entries, baseline)

        if not (changed or cleared):
            logger.info("Achievement diff is empty, skipping")
            return SyncOutcome.SKIPPED

        # Games gone from the catalog are sent with no achievements so the server drops them.
        payload = changed + [GameAchievementsDto(playnite_id=pid) for pid in cleared]
        logger.info(f"Achievement diff: {len(payload)} games total ({len(cleared)} cleared)")
        ack = await self.client.sync_achievements_diff(AchievementsDiffSyncRequest(
            user_id=user_id,
            changed=payload,
            base_snapshot_hash=cursor.last_achievement_hash or "",
        ))

        if ack is not None and ack.is_force_full_sync:
            logger.info(f"Server requested full achievement sync (reason: {ack.reason}), falling back")
            self.snapshots.clear_achievements_snapshot()
            self.install_state.update_cursor(last_achievement_hash=None, achievement_cooldown_until=None)
            return await self._sync_achievements(games, full=True, bypass_cooldown=True)

        outcome = self._check_achievements_ack(ack, "diff")
        if outcome is not SyncOutcome.SUCCESS:
            return outcome

        await asyncio.to_thread(
            self.snapshots.apply_achievements_diff,
            {e.playnite_id: build_achievement_snapshot(e) for e in changed if e.achievements},
            [e.playnite_id for e in changed if not e.achievements] + cleared,
        )
        # Recompute from the stored baseline so the hash describes what the server now holds.
        updated = self.snapshots.get_achievements_snapshot()
        snapshot_hash = compute_achievement_hash(
            GameAchievementsDto(
                playnite_id=s.playnite_id,
                achievements=[AchievementItemDto(**a.model_dump()) for a in s.achievements],
            )
            for s in updated.values()
        )
        self.install_state.update_cursor(last_achievement_hash=snapshot_hash,
                                         achievement_cooldown_until=None)
        return SyncOutcome.SUCCESS

    def _check_achievements_ack(self, ack: Optional[SyncAck], mode: str) -> SyncOutcome:
        if ack is None:
            logger.error(f"Failed to queue {mode} achievements sync")
            return SyncOutcome.ERROR
        if ack.is_cooldown:
            self._store_cooldown(ack, "achievement_cooldown_until")
            return SyncOutcome.COOLDOWN
        if ack.is_queued:
            logger.info(f"{mode.capitalize()} achievements sync queued successfully")
            return SyncOutcome.SUCCESS
        logger.error(f"Unexpected response from {mode} achievements sync: status={ack.status}")
        return SyncOutcome.ERROR

    def _store_cooldown(self, ack: SyncAck, field: str):
        expires = ack.cooldown_expires_at
        if expires is not None and expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        logger.info(f"Sync skipped by server cooldown. Expires: {expires.isoformat() if expires else 'unknown'}")
        if expires is not None:
            self.install_state.update_cursor(**{field: expires.astimezone(timezone.utc)})
