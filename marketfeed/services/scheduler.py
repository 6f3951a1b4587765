"""
Periodic jobs: chart auto-sync and cache sweeping.
Uses APScheduler on the running asyncio loop.
"""

import time
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from marketfeed.constants import DEFAULT_RESOLUTION, RESOLUTION_CONFIG
from marketfeed.services.cache import CacheStore
from marketfeed.utils import time_range_for

AUTO_SYNC_JOB_ID = "auto_sync_job"
CACHE_SWEEP_JOB_ID = "cache_sweep_job"

# 1min charts tick every 15s but only refresh on every 4th tick
FAST_RESOLUTION = "1min"
FAST_RESOLUTION_TICKS = 4

UpdateCallback = Callable[[int, int, str], Awaitable[None]]


class RefreshScheduler:
    """
    Keeps a chart window current and the cache tidy.

    Usage:
        scheduler = RefreshScheduler(cache, on_update=refresh_chart)
        scheduler.start()
        scheduler.enable_auto_sync("15min")
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        cache: CacheStore,
        on_update: UpdateCallback | None = None,
        sweep_minutes: int = 15,
        clock: Callable[[], float] = time.time,
    ):
        self.scheduler = AsyncIOScheduler()
        self.cache = cache
        self.on_update = on_update
        self.sweep_minutes = sweep_minutes
        self._clock = clock
        self._is_running = False
        self._resolution: str | None = None
        self._ticks = 0

    @property
    def auto_sync_resolution(self) -> str | None:
        return self._resolution

    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        """Start the scheduler with the cache sweep job."""
        if self._is_running:
            logger.warning("Refresh scheduler is already running")
            return

        self.scheduler.add_job(
            self.sweep_cache_job,
            trigger="interval",
            minutes=self.sweep_minutes,
            id=CACHE_SWEEP_JOB_ID,
            name="Cache Sweeper",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(f"Refresh scheduler started: sweeping cache every {self.sweep_minutes} minutes")

    def stop(self) -> None:
        if not self._is_running:
            logger.warning("Refresh scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        self._resolution = None
        logger.info("Refresh scheduler stopped")

    def enable_auto_sync(self, resolution: str = DEFAULT_RESOLUTION) -> None:
        """(Re)start the auto-sync job at the resolution's update interval."""
        config = RESOLUTION_CONFIG.get(resolution)
        if config is None:
            raise ValueError(f"Unknown resolution '{resolution}'")

        self._resolution = resolution
        self._ticks = 0
        self.scheduler.add_job(
            self.auto_sync_job,
            trigger="interval",
            seconds=config["update_interval"],
            id=AUTO_SYNC_JOB_ID,
            name=f"Auto-sync ({resolution})",
            replace_existing=True,
        )
        logger.info(
            f"Auto-sync enabled for {resolution}: every {config['update_interval']}s"
        )

    def disable_auto_sync(self) -> None:
        if self._resolution is None:
            return

        if self.scheduler.get_job(AUTO_SYNC_JOB_ID):
            self.scheduler.remove_job(AUTO_SYNC_JOB_ID)
        logger.info(f"Auto-sync disabled for {self._resolution}")
        self._resolution = None

    async def auto_sync_job(self) -> bool:
        """
        Recompute the chart window and hand it to on_update.

        Returns:
            True if on_update was called on this tick
        """
        resolution = self._resolution
        if resolution is None:
            return False

        self._ticks += 1
        if resolution == FAST_RESOLUTION and self._ticks % FAST_RESOLUTION_TICKS != 0:
            return False

        return await self.sync_now(resolution)

    async def sync_now(self, resolution: str | None = None) -> bool:
        """Run one refresh immediately (manual trigger)."""
        resolution = resolution or self._resolution or DEFAULT_RESOLUTION
        if self.on_update is None:
            return False

        start, end = time_range_for(resolution, self._clock())
        logger.debug(f"Auto-sync refresh {resolution}: {start} -> {end}")
        try:
            await self.on_update(start, end, resolution)
        except Exception as e:
            logger.error(f"Error in auto-sync update: {e}")
            return False
        return True

    async def sweep_cache_job(self) -> dict[str, int]:
        """Drop expired durable entries and stale memory entries."""
        try:
            durable = await self.cache.clear_expired()
        except Exception as e:
            logger.error(f"Error in scheduled cache sweep: {e}")
            durable = 0
        memory = self.cache.clear_memory_expired()

        if durable or memory:
            logger.info(f"Cache sweep removed {durable} durable and {memory} memory entries")
        return {"durable": durable, "memory": memory}
