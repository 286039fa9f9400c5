import os
import tempfile
import unittest
from datetime import timedelta
from playsync.config import settings
from playsync.models import AllowedSource, utc_now
from playsync.sources import HARDCODED_PLUGIN_IDS, AllowedSources
from playsync.state import InstallStateManager

STEAM = "cb91dfc9-b977-43bf-8e70-55f46e410fab"

class FakeSourcesClient:
    def __init__(self, plugins=None, error=None):
        self.plugins = plugins
        self.error = error

    async def get_allowed_sources(self):
        if self.error:
            raise self.error
        return self.plugins

class TestInstallStateManager(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "install.json")
        self.sm = InstallStateManager(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_install_id_generated_once(self):
        first = self.sm.ensure_install_id()
        self.assertTrue(first)
        self.assertEqual(self.sm.ensure_install_id(), first)
        self.assertEqual(InstallStateManager(self.path).install_id, first)

    def test_session_markers(self):
        self.sm.set_pending_start("g1")
        self.sm.set_active_session("queued")
        session = InstallStateManager(self.path).get_session()
        self.assertEqual(session.active_session_id, "queued")
        self.assertIsNone(session.pending_start_game_id)

        self.sm.set_active_session("")
        self.assertEqual(self.sm.get_session().active_session_id, "queued")

        self.sm.clear_active_session()
        self.assertIsNone(InstallStateManager(self.path).get_session().active_session_id)

    def test_session_copy_is_detached(self):
        self.sm.get_session().active_session_id = "x"
        self.assertIsNone(self.sm.get_session().active_session_id)

    def test_update_cursor(self):
        now = utc_now()
        self.sm.update_cursor(last_library_hash="h1", last_sync_at=now, last_sync_count=3)
        cursor = InstallStateManager(self.path).get_cursor()
        self.assertEqual(cursor.last_library_hash, "h1")
        self.assertEqual(cursor.last_sync_at, now)
        self.assertEqual(cursor.last_sync_count, 3)

        with self.assertRaises(AttributeError):
            self.sm.update_cursor(no_such_field=1)

    def test_corrupt_file_starts_fresh(self):
        with open(self.path, 'w') as f:
            f.write("[1, 2")
        sm = InstallStateManager(self.path)
        self.assertIsNone(sm.install_id)
        self.assertIsNone(sm.get_cursor().last_library_hash)

    def test_persist_disabled_writes_nothing(self):
        saved = settings.PERSIST_ENABLED
        settings.PERSIST_ENABLED = False
        try:
            path = os.path.join(self.tmp.name, "other.json")
            InstallStateManager(path).ensure_install_id()
            self.assertFalse(os.path.exists(path))
        finally:
            settings.PERSIST_ENABLED = saved

class TestAllowedSources(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "install.json")
        self.sm = InstallStateManager(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_hardcoded_fallback(self):
        sources = AllowedSources(self.sm)
        self.assertEqual(sources.snapshot(), set(HARDCODED_PLUGIN_IDS))
        self.assertTrue(sources.is_allowed(STEAM.upper()))
        self.assertFalse(sources.is_allowed("00000000-0000-0000-0000-000000000000"))
        self.assertFalse(sources.is_allowed(None))
        self.assertFalse(sources.is_allowed(""))

    async def test_refresh_keeps_active_plugins_and_persists(self):
        sources = AllowedSources(self.sm)
        client = FakeSourcesClient([
            AllowedSource(plugin_id="11111111-2222-3333-4444-555555555555", status="active"),
            AllowedSource(plugin_id=STEAM.upper(), status="active"),
            AllowedSource(plugin_id="85DD7072-2F20-4E76-A007-41035E390724", status="deprecated"),
        ])
        self.assertTrue(await sources.refresh(client))
        self.assertTrue(sources.is_allowed("11111111-2222-3333-4444-555555555555"))
        self.assertFalse(sources.is_allowed("85dd7072-2f20-4e76-a007-41035e390724"))

        reloaded = AllowedSources(InstallStateManager(self.path))
        self.assertEqual(reloaded.snapshot(), {"11111111-2222-3333-4444-555555555555", STEAM})
        self.assertIsNotNone(self.sm.get_allowed_plugins_fetched_at())

    async def test_failed_refresh_keeps_current_set(self):
        self.sm.set_allowed_plugins([STEAM], utc_now() - timedelta(hours=48))
        sources = AllowedSources(self.sm)

        self.assertFalse(await sources.refresh(FakeSourcesClient(error=RuntimeError("down"))))
        self.assertFalse(await sources.refresh(FakeSourcesClient(plugins=None)))
        self.assertFalse(await sources.refresh(FakeSourcesClient(plugins=[
            AllowedSource(plugin_id=STEAM, status="disabled"),
        ])))
        self.assertEqual(sources.snapshot(), {STEAM})

if __name__ == '__main__':
    unittest.main()
