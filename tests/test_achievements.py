import unittest
from playsync.achievements import (
    AchievementAggregator, AchievementItem, AchievementProvider, StaticAchievementProvider,
)

class FixedProvider(AchievementProvider):
    def __init__(self, name, installed=True, counts=None, items=None):
        self._name = name
        self._installed = installed
        self._counts = counts or {}
        self._items = items or {}
        self.lookups = 0

    @property
    def provider_name(self):
        return self._name

    @property
    def is_installed(self):
        return self._installed

    def get_version(self):
        return "1.0"

    def get_counts(self, game_id):
        self.lookups += 1
        return self._counts.get(game_id)

    def get_achievements(self, game_id):
        return self._items.get(game_id)

class TestAchievementAggregator(unittest.TestCase):
    def test_first_provider_with_data_wins(self):
        first = FixedProvider("first", counts={"g1": (1, 10)})
        second = FixedProvider("second", counts={"g1": (5, 5), "g2": (2, 3)})
        agg = AchievementAggregator(first, second)
        self.assertEqual(agg.get_counts("g1"), (1, 10))
        self.assertEqual(agg.get_counts("g2"), (2, 3))
        self.assertIsNone(agg.get_counts("g3"))

    def test_zero_total_falls_through(self):
        agg = AchievementAggregator(
            FixedProvider("empty", counts={"g1": (0, 0)}),
            FixedProvider("real", counts={"g1": (3, 4)}),
        )
        self.assertEqual(agg.get_counts("g1"), (3, 4))
        self.assertEqual((agg.get_unlocked_count("g1"), agg.get_total_count("g1")), (3, 4))

    def test_uninstalled_providers_are_not_asked(self):
        missing = FixedProvider("missing", installed=False, counts={"g1": (9, 9)})
        agg = AchievementAggregator(missing, FixedProvider("real", counts={"g1": (1, 2)}))
        self.assertEqual(agg.get_counts("g1"), (1, 2))
        self.assertEqual(missing.lookups, 0)
        self.assertEqual([p.provider_name for p in agg.get_installed_providers()], ["real"])

    def test_installed_when_any_provider_is(self):
        self.assertFalse(AchievementAggregator().is_installed)
        self.assertFalse(AchievementAggregator(FixedProvider("x", installed=False)).is_installed)
        self.assertTrue(AchievementAggregator(FixedProvider("x", installed=False), FixedProvider("y")).is_installed)

    def test_achievement_lists(self):
        items = [AchievementItem(name="Win", is_unlocked=True)]
        agg = AchievementAggregator(FixedProvider("a"), FixedProvider("b", items={"g1": items}))
        self.assertEqual(agg.get_achievements("g1"), items)
        self.assertIsNone(agg.get_achievements("g2"))
        self.assertIsNone(agg.get_version())

class TestStaticAchievementProvider(unittest.TestCase):
    def test_counts_and_copies(self):
        provider = StaticAchievementProvider({
            "g1": [AchievementItem(name="A", is_unlocked=True), AchievementItem(name="B")],
            "g2": [],
        })
        self.assertEqual(provider.get_counts("g1"), (1, 2))
        self.assertEqual(provider.get_counts("g2"), (0, 0))
        self.assertIsNone(provider.get_counts("g3"))

        provider.get_achievements("g1").clear()
        self.assertEqual(len(provider.get_achievements("g1")), 2)

        provider.replace({})
        self.assertIsNone(provider.get_achievements("g1"))
        self.assertEqual(provider.provider_name, "Catalog")

if __name__ == '__main__':
    unittest.main()
