from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from marketfeed.constants import STORE_SYMBOLS
from marketfeed.services.scheduler import AUTO_SYNC_JOB_ID, RefreshScheduler


@pytest.fixture
def make_scheduler(cache, clock):
    def factory(on_update=None) -> RefreshScheduler:
        return RefreshScheduler(cache, on_update=on_update, clock=clock)

    return factory


class TestAutoSync:
    @pytest.mark.asyncio
    async def test_fast_resolution_refreshes_every_fourth_tick(self, make_scheduler, clock):
        on_update = AsyncMock()
        scheduler = make_scheduler(on_update)
        scheduler.enable_auto_sync("1min")

        fired = [await scheduler.auto_sync_job() for _ in range(8)]

        assert fired == [False, False, False, True] * 2
        assert on_update.await_count == 2
        end = int(clock())
        on_update.assert_awaited_with(end - 4 * 3600, end, "1min")

    @pytest.mark.asyncio
    async def test_other_resolutions_refresh_every_tick(self, make_scheduler):
        on_update = AsyncMock()
        scheduler = make_scheduler(on_update)
        scheduler.enable_auto_sync("15min")

        for _ in range(3):
            assert await scheduler.auto_sync_job() is True

        assert on_update.await_count == 3
        assert scheduler.scheduler.get_job(AUTO_SYNC_JOB_ID) is not None

    @pytest.mark.asyncio
    async def test_disabled_auto_sync_does_nothing(self, make_scheduler):
        on_update = AsyncMock()
        scheduler = make_scheduler(on_update)
        scheduler.enable_auto_sync("1d")
        scheduler.disable_auto_sync()

        assert await scheduler.auto_sync_job() is False
        assert scheduler.scheduler.get_job(AUTO_SYNC_JOB_ID) is None
        on_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_resolution_rejected(self, make_scheduler):
        with pytest.raises(ValueError):
            make_scheduler().enable_auto_sync("7min")

    @pytest.mark.asyncio
    async def test_update_failure_is_contained(self, make_scheduler):
        scheduler = make_scheduler(AsyncMock(side_effect=RuntimeError("chart gone")))

        assert await scheduler.sync_now("1d") is False


class TestCacheSweep:
    @pytest.mark.asyncio
    async def test_sweep_clears_both_tiers(self, make_scheduler, cache, clock):
        await cache.set_with_expiry(STORE_SYMBOLS, "old", 1, timedelta(minutes=1))
        cache.set_memory("token", 1, timedelta(minutes=1))
        clock.advance(120)

        result = await make_scheduler().sweep_cache_job()

        assert result == {"durable": 1, "memory": 1}

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_scheduler):
        scheduler = make_scheduler()

        scheduler.start()
        assert scheduler.is_running() is True

        scheduler.stop()
        assert scheduler.is_running() is False
