import hashlib
import unittest
from datetime import datetime, timedelta, timezone
from playsync.hashing import (
    compute_achievement_hash, compute_game_metadata_hash, compute_library_hash,
    format_hash_timestamp, hash_sorted_keys,
)
from playsync.models import AchievementItemDto, GameAchievementsDto, GameSyncDto

# Reference digests shared with the server implementation.
EMPTY_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
DEFAULT_METADATA_HASH = "dc8ffce8ea6bdfdbe7de4f94600943dcc9f73b8e5c095d5ff2328b82a20bf070"
SINGLE_GAME_ABC_HASH = "262c8283df39850de9ee82fd42c57d55a9a6aed42029808e1400dc33c4655e8d"

def game(playnite_id="g1", **fields):
    return GameSyncDto(playnite_id=playnite_id, **fields)

class TestTimestampFormat(unittest.TestCase):
    def test_utc_second_precision(self):
        ts = datetime(2024, 3, 5, 7, 8, 9, 123456, tzinfo=timezone.utc)
        self.assertEqual(format_hash_timestamp(ts), "2024-03-05T07:08:09Z")

    def test_offset_is_converted_to_utc(self):
        ts = datetime(2024, 3, 5, 9, 8, 9, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(format_hash_timestamp(ts), "2024-03-05T07:08:09Z")

    def test_naive_is_treated_as_utc(self):
        self.assertEqual(format_hash_timestamp(datetime(2024, 3, 5, 7, 8, 9)), "2024-03-05T07:08:09Z")

    def test_none_is_empty(self):
        self.assertEqual(format_hash_timestamp(None), "")

class TestLibraryHash(unittest.TestCase):
    def test_pinned_empty_library(self):
        self.assertEqual(compute_library_hash([]), EMPTY_HASH)

    def test_pinned_single_default_game(self):
        self.assertEqual(compute_game_metadata_hash(game("abc")), DEFAULT_METADATA_HASH)
        self.assertEqual(compute_library_hash([game("abc")]), SINGLE_GAME_ABC_HASH)

    def test_single_game_matches_composed_key(self):
        parts = ["", "", "", "0"] + [""] * 10 + [""] * 6 + ["0", "0"] + [""] * 4
        metadata = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
        expected = hashlib.sha256(f"abc:0:0::{metadata}|".encode("utf-8")).hexdigest()
        self.assertEqual(compute_library_hash([game("abc")]), expected)

    def test_order_independent(self):
        games = [game("b", playtime_seconds=10), game("a", play_count=2), game("C", game_name="x")]
        self.assertEqual(compute_library_hash(games), compute_library_hash(list(reversed(games))))

    def test_keys_sorted_ordinally(self):
        # Upper case sorts before lower case in code-unit order.
        expected = hashlib.sha256(b"B|a|").hexdigest()
        self.assertEqual(hash_sorted_keys(["a", "B"]), expected)

    def test_each_key_field_changes_hash(self):
        base = game(playtime_seconds=100, play_count=3,
                    last_activity=datetime(2024, 1, 1, tzinfo=timezone.utc), game_name="Portal")
        base_hash = compute_library_hash([base])
        variants = [
            base.model_copy(update={"playtime_seconds": 101}),
            base.model_copy(update={"play_count": 4}),
            base.model_copy(update={"last_activity": datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)}),
            base.model_copy(update={"game_name": "Portal 2"}),
        ]
        for v in variants:
            self.assertNotEqual(compute_library_hash([v]), base_hash)

    def test_sub_second_activity_change_is_invisible(self):
        a = game(last_activity=datetime(2024, 1, 1, 12, 0, 0, 1000, tzinfo=timezone.utc))
        b = game(last_activity=datetime(2024, 1, 1, 12, 0, 0, 999000, tzinfo=timezone.utc))
        self.assertEqual(compute_library_hash([a]), compute_library_hash([b]))

class TestMetadataHash(unittest.TestCase):
    def test_ignores_activity_fields(self):
        base = game(game_name="Hades")
        moved = base.model_copy(update={
            "playtime_seconds": 3600,
            "play_count": 9,
            "last_activity": datetime(2024, 6, 1, tzinfo=timezone.utc),
        })
        self.assertEqual(compute_game_metadata_hash(base), compute_game_metadata_hash(moved))

    def test_covered_fields_change_hash(self):
        base = game(game_name="Hades", genres=["Roguelike"], completion_status_name="Playing")
        base_hash = compute_game_metadata_hash(base)
        for update in [
            {"game_name": "Hades II"},
            {"genres": ["Roguelike", "Action"]},
            {"completion_status_name": "Beaten"},
            {"is_favorite": True},
            {"release_year": 2020},
            {"date_added": datetime(2023, 1, 1, tzinfo=timezone.utc)},
            {"achievement_count_unlocked": 1},
        ]:
            self.assertNotEqual(compute_game_metadata_hash(base.model_copy(update=update)), base_hash, update)

    def test_none_and_empty_list_hash_identically(self):
        self.assertEqual(
            compute_game_metadata_hash(game(genres=None, tags=None)),
            compute_game_metadata_hash(game(genres=[], tags=[])),
        )

    def test_list_order_matters(self):
        self.assertNotEqual(
            compute_game_metadata_hash(game(platforms=["PC", "Mac"])),
            compute_game_metadata_hash(game(platforms=["Mac", "PC"])),
        )

class TestAchievementHash(unittest.TestCase):
    def entry(self, playnite_id, *achievements):
        return GameAchievementsDto(playnite_id=playnite_id, achievements=list(achievements))

    def test_name_order_within_game_is_irrelevant(self):
        a = self.entry("g1", AchievementItemDto(name="A"), AchievementItemDto(name="B"))
        b = self.entry("g1", AchievementItemDto(name="B"), AchievementItemDto(name="A"))
        self.assertEqual(compute_achievement_hash([a]), compute_achievement_hash([b]))

    def test_unlock_changes_hash(self):
        a = self.entry("g1", AchievementItemDto(name="A"))
        b = self.entry("g1", AchievementItemDto(name="A", is_unlocked=True))
        self.assertNotEqual(compute_achievement_hash([a]), compute_achievement_hash([b]))

    def test_rarity_does_not_change_hash(self):
        a = self.entry("g1", AchievementItemDto(name="A", rarity_percent=10.0))
        b = self.entry("g1", AchievementItemDto(name="A", rarity_percent=12.5))
        self.assertEqual(compute_achievement_hash([a]), compute_achievement_hash([b]))

    def test_key_format(self):
        e = self.entry("g1", AchievementItemDto(name="b", is_unlocked=True), AchievementItemDto(name="a"))
        names = hashlib.sha256(b"a,b").hexdigest()
        expected = hashlib.sha256(f"g1:2:1:{names}|".encode("utf-8")).hexdigest()
        self.assertEqual(compute_achievement_hash([e]), expected)

if __name__ == '__main__':
    unittest.main()
