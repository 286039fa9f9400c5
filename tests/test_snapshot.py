import os
import tempfile
import unittest
from datetime import datetime, timezone
from playsync.models import AchievementItemDto, GameAchievementsDto, GameSyncDto
from playsync.snapshot import (
    SnapshotStore, build_achievement_snapshot, build_game_snapshot,
    compute_achievement_diff, compute_library_diff,
)

def game(playnite_id, **fields):
    return GameSyncDto(playnite_id=playnite_id, **fields)

def achievements(playnite_id, *items):
    return GameAchievementsDto(playnite_id=playnite_id, achievements=list(items))

class TestSnapshotStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "snapshot.json")
        self.store = SnapshotStore(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_empty_map_is_a_baseline(self):
        self.assertFalse(self.store.has_library_baseline)
        self.store.update_library_snapshot({})
        self.assertTrue(self.store.has_library_baseline)
        self.assertTrue(SnapshotStore(self.path).has_library_baseline)
        self.assertFalse(self.store.has_achievements_baseline)

    def test_readers_get_copies(self):
        self.store.update_library_snapshot({"g1": build_game_snapshot(game("g1", playtime_seconds=5))})
        snap = self.store.get_library_snapshot()
        snap["g1"].playtime_seconds = 999
        snap.pop("g1")
        self.assertEqual(self.store.get_library_snapshot()["g1"].playtime_seconds, 5)

    def test_apply_library_diff(self):
        self.store.update_library_snapshot({
            "keep": build_game_snapshot(game("keep")),
            "old": build_game_snapshot(game("old")),
            "gone": build_game_snapshot(game("gone")),
        })
        self.store.apply_library_diff(
            {"new": build_game_snapshot(game("new"))},
            {"old": build_game_snapshot(game("old", play_count=2))},
            ["gone"],
        )
        snap = SnapshotStore(self.path).get_library_snapshot()
        self.assertEqual(sorted(snap), ["keep", "new", "old"])
        self.assertEqual(snap["old"].play_count, 2)

    def test_clear_library_drops_baseline(self):
        self.store.update_library_snapshot({"g1": build_game_snapshot(game("g1"))})
        self.store.clear_library_snapshot()
        self.assertFalse(self.store.has_library_baseline)
        self.assertEqual(self.store.get_library_snapshot(), {})

    def test_achievement_snapshot_round_trip(self):
        entry = achievements("g1", AchievementItemDto(name="A", is_unlocked=True, rarity_percent=3.5))
        self.store.update_achievements_snapshot({"g1": build_achievement_snapshot(entry)})
        self.store.apply_achievements_diff({}, ["missing"])
        snap = SnapshotStore(self.path).get_achievements_snapshot()
        self.assertTrue(SnapshotStore(self.path).has_achievements_baseline)
        self.assertEqual(snap["g1"].achievements[0].rarity_percent, 3.5)

        self.store.clear_achievements_snapshot()
        self.assertFalse(self.store.has_achievements_baseline)

class TestLibraryDiff(unittest.TestCase):
    def test_four_classifications(self):
        t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        baseline = {g.playnite_id: build_game_snapshot(g) for g in [
            game("same", playtime_seconds=10, last_activity=t),
            game("changed", playtime_seconds=10),
            game("removed"),
        ]}
        current = [
            game("same", playtime_seconds=10, last_activity=t),
            game("changed", playtime_seconds=20),
            game("added"),
        ]
        added, updated, removed = compute_library_diff(current, baseline)
        self.assertEqual([g.playnite_id for g in added], ["added"])
        self.assertEqual([g.playnite_id for g in updated], ["changed"])
        self.assertEqual(removed, ["removed"])

    def test_metadata_only_change_is_an_update(self):
        baseline = {"g1": build_game_snapshot(game("g1", tags=["Co-op"]))}
        _, updated, _ = compute_library_diff([game("g1", tags=["Co-op", "Indie"])], baseline)
        self.assertEqual([g.playnite_id for g in updated], ["g1"])

    def test_last_activity_change_is_an_update(self):
        baseline = {"g1": build_game_snapshot(game("g1"))}
        current = [game("g1", last_activity=datetime(2024, 2, 2, tzinfo=timezone.utc))]
        _, updated, _ = compute_library_diff(current, baseline)
        self.assertEqual(len(updated), 1)

    def test_empty_baseline_means_everything_added(self):
        added, updated, removed = compute_library_diff([game("a"), game("b")], {})
        self.assertEqual(len(added), 2)
        self.assertEqual((updated, removed), ([], []))

class TestAchievementDiff(unittest.TestCase):
    def setUp(self):
        self.baseline = {
            "same": build_achievement_snapshot(achievements("same", AchievementItemDto(name="A", is_unlocked=True))),
            "unlocked": build_achievement_snapshot(achievements("unlocked", AchievementItemDto(name="A"))),
            "lost": build_achievement_snapshot(achievements("lost", AchievementItemDto(name="A"))),
            "vanished": build_achievement_snapshot(achievements("vanished", AchievementItemDto(name="A"))),
        }

    def test_classification(self):
        entries = {
            "same": achievements("same", AchievementItemDto(name="A", is_unlocked=True)),
            "unlocked": achievements("unlocked", AchievementItemDto(name="A", is_unlocked=True)),
            "lost": achievements("lost"),
            "new": achievements("new", AchievementItemDto(name="X")),
            "none": achievements("none"),
        }
        changed, cleared = compute_achievement_diff(entries, self.baseline)
        self.assertEqual([c.playnite_id for c in changed], ["unlocked", "lost", "new"])
        self.assertEqual(changed[1].achievements, [])
        self.assertEqual(cleared, ["vanished"])

    def test_rarity_and_name_changes_count(self):
        baseline = {"g": build_achievement_snapshot(achievements("g", AchievementItemDto(name="A", rarity_percent=1.0)))}
        rarity, _ = compute_achievement_diff(
            {"g": achievements("g", AchievementItemDto(name="A", rarity_percent=2.0))}, baseline)
        renamed, _ = compute_achievement_diff(
            {"g": achievements("g", AchievementItemDto(name="B", rarity_percent=1.0))}, baseline)
        more, _ = compute_achievement_diff(
            {"g": achievements("g", AchievementItemDto(name="A", rarity_percent=1.0), AchievementItemDto(name="B"))},
            baseline)
        self.assertEqual(len(rarity), 1)
        self.assertEqual(len(renamed), 1)
        self.assertEqual(len(more), 1)

if __name__ == '__main__':
    unittest.main()
