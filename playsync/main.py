import asyncio
import logging
import signal
import sys
import time
import uvicorn
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from .config import settings
from .state import InstallStateManager
from .pending import PendingOperationQueue
from .snapshot import SnapshotStore
from .sources import AllowedSources
from .breaker import CircuitBreaker
from .achievements import AchievementAggregator, StaticAchievementProvider
from .catalog import CatalogFile, CatalogGame
from .clients.api_client import ApiClient
from .engine import SyncEngine
from .scrobbler import ScrobblingService
from .models import utc_now
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class SyncService:
    def __init__(self, client=None):
        self.running = True
        data_dir = Path(settings.DATA_DIR)

        # One store per file, shared by reference with every component
        self.install_state = InstallStateManager(str(data_dir / "install.json"))
        self.queue = PendingOperationQueue(str(data_dir / "pending.json"))
        self.snapshots = SnapshotStore(str(data_dir / "snapshot.json"))
        self.sources = AllowedSources(self.install_state)
        self.catalog = CatalogFile(settings.CATALOG_PATH)

        self.catalog_achievements = StaticAchievementProvider({})
        self.achievements = AchievementAggregator(self.catalog_achievements)

        self.breaker = CircuitBreaker(
            failure_threshold=settings.BREAKER_FAILURE_THRESHOLD,
            timeout=settings.BREAKER_TIMEOUT_SECONDS,
            jitter=settings.RETRY_JITTER_SECONDS
        )
        self.client = client or ApiClient(breaker=self.breaker)
        self.breaker.add_listener(self._on_breaker_recovered)

        self.engine = SyncEngine(self.client, self.install_state, self.snapshots, self.sources, self.achievements)
        self.scrobbler = ScrobblingService(self.client, self.install_state, self.queue, self.sources)

        self._sync_lock = asyncio.Lock()
        self._background = set()

        # Link service to server module
        server.service = self

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_breaker_recovered(self):
        logger.info("Remote service recovered, flushing pending scrobbles")
        self._spawn(self.scrobbler.flush_pending())

    def schedule_sync(self, full: bool = False) -> asyncio.Task:
        return self._spawn(self.run_sync(full=full))

    async def load_catalog(self) -> List[CatalogGame]:
        export = await asyncio.to_thread(self.catalog.load)
        self.catalog_achievements.replace(export.achievements)
        return export.games

    def is_full_sync_due(self) -> bool:
        if settings.FULL_SYNC_INTERVAL_SECONDS <= 0:
            return False
        last_full = self.install_state.get_cursor().last_full_sync_at
        if last_full is None:
            return True
        return utc_now() - last_full >= timedelta(seconds=settings.FULL_SYNC_INTERVAL_SECONDS)

    def is_sources_refresh_due(self) -> bool:
        fetched = self.install_state.get_allowed_plugins_fetched_at()
        if fetched is None:
            return True
        return utc_now() - fetched >= timedelta(hours=settings.ALLOWED_SOURCES_CACHE_HOURS)

    async def run_sync(self, full: Optional[bool] = None):
        """One library + achievements pass. ``full=None`` picks full mode when the periodic full sync is due."""
        async with self._sync_lock:
            try:
                if full is None:
                    full = self.is_full_sync_due()
                games = await self.load_catalog()
                logger.info(f"Running {'full' if full else 'diff'} sync over {len(games)} catalog games")
                library, achievements = await self.engine.sync_all(games, full=full)
                logger.info(f"Sync finished: library={library.value}, achievements={achievements.value}")
            except Exception as e:
                logger.error(f"Error in sync run: {e}", exc_info=True)

    async def setup(self):
        self.install_state.ensure_install_id()
        await self.sources.refresh(self.client)
        result = await self.scrobbler.flush_pending()
        if result.delivered or result.requeued or result.dropped:
            logger.info(f"Startup flush: {result.delivered} delivered, {result.requeued} re-queued, {result.dropped} dropped")

    async def sync_loop(self):
        while self.running:
            start_time = time.time()
            try:
                if self.is_sources_refresh_due():
                    await self.sources.refresh(self.client)
                await self.run_sync()
            except Exception as e:
                logger.error(f"Error in sync loop: {e}", exc_info=True)

            # Wait for remainder of interval
            elapsed = time.time() - start_time
            sleep_time = max(1, settings.SYNC_INTERVAL_SECONDS - elapsed)
            await asyncio.sleep(sleep_time)

    async def shutdown(self):
        self.running = False
        await self.scrobbler.on_application_stopped()
        if hasattr(self.client, "close"):
            await self.client.close()

    async def start(self):
        await self.setup()

        tasks = [asyncio.create_task(self.sync_loop())]

        if settings.HTTP_SERVER_ENABLED:
            config = uvicorn.Config(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
            server_task = uvicorn.Server(config).serve()
            tasks.append(asyncio.create_task(server_task))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

async def run():
    service = SyncService()
    await service.start()

if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
