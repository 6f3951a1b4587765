from datetime import timedelta

import pytest
from sqlalchemy import update

from marketfeed.constants import (
    SCHEMA_VERSION,
    STORE_HISTORICAL,
    STORE_LOGOS,
    STORE_SYMBOLS,
    SYMBOLS_TTL,
)
from marketfeed.datastore import CacheRepository, Database
from marketfeed.datastore.models import SchemaInfoDB
from marketfeed.services.cache import CacheStore
from marketfeed.services.errors import CacheError


class TestDurableTier:
    @pytest.mark.asyncio
    async def test_fresh_entry_is_returned(self, cache):
        await cache.set_with_expiry(STORE_SYMBOLS, "Aggregate", {"symbol": ["A.B"]}, SYMBOLS_TTL)

        assert await cache.is_expired(STORE_SYMBOLS, "Aggregate") is False
        assert await cache.get(STORE_SYMBOLS, "Aggregate") == {"symbol": ["A.B"]}

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache, clock):
        await cache.set_with_expiry(STORE_SYMBOLS, "Aggregate", {"x": 1}, timedelta(minutes=30))

        clock.advance(29 * 60)
        assert await cache.is_expired(STORE_SYMBOLS, "Aggregate") is False

        clock.advance(2 * 60)
        assert await cache.is_expired(STORE_SYMBOLS, "Aggregate") is True

    @pytest.mark.asyncio
    async def test_never_written_key_reads_as_expired(self, cache):
        assert await cache.is_expired(STORE_SYMBOLS, "missing") is True
        assert await cache.get(STORE_SYMBOLS, "missing") is None

    @pytest.mark.asyncio
    async def test_set_without_expiry_stays_expired(self, cache):
        await cache.set(STORE_SYMBOLS, "raw", [1, 2, 3])

        assert await cache.get(STORE_SYMBOLS, "raw") == [1, 2, 3]
        assert await cache.is_expired(STORE_SYMBOLS, "raw") is True

    @pytest.mark.asyncio
    async def test_bytes_are_stored_verbatim(self, cache):
        logo = b"\x89PNG\r\n\x1a\n\x00\x01"
        await cache.set_with_expiry(STORE_LOGOS, "policyasset", logo, timedelta(hours=24))

        assert await cache.get(STORE_LOGOS, "policyasset") == logo

    @pytest.mark.asyncio
    async def test_historical_store_uses_its_own_table(self, cache, database):
        await cache.set_with_expiry(STORE_HISTORICAL, "SNEK_1d_0_60", {"t": [1]}, timedelta(minutes=5))

        async with database.session() as session:
            row = await CacheRepository(session).get_entry(STORE_HISTORICAL, "SNEK_1d_0_60")
        assert row.__tablename__ == "historical_series"
        assert await cache.get(STORE_HISTORICAL, "SNEK_1d_0_60") == {"t": [1]}

    @pytest.mark.asyncio
    async def test_unknown_store_reads_none_and_rejects_writes(self, cache):
        assert await cache.get("nope", "key") is None

        with pytest.raises(CacheError):
            await cache.set_with_expiry("nope", "key", 1, timedelta(minutes=1))

    @pytest.mark.asyncio
    async def test_negative_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            await cache.set_with_expiry(STORE_SYMBOLS, "key", 1, timedelta(seconds=-1))

    @pytest.mark.asyncio
    async def test_corrupt_payload_reads_as_none(self, cache, database, clock):
        async with database.session() as session:
            await CacheRepository(session).put_entry(
                STORE_SYMBOLS, "broken", b"\xff{not json", "json", clock()
            )

        assert await cache.get(STORE_SYMBOLS, "broken") is None
        assert cache.get_stats().corrupt == 1

    @pytest.mark.asyncio
    async def test_overwrite_is_last_write_wins(self, cache):
        await cache.set_with_expiry(STORE_SYMBOLS, "k", "first", SYMBOLS_TTL)
        await cache.set_with_expiry(STORE_SYMBOLS, "k", "second", SYMBOLS_TTL)

        assert await cache.get(STORE_SYMBOLS, "k") == "second"


class TestClearExpired:
    @pytest.mark.asyncio
    async def test_removes_only_expired_pairs(self, cache, clock):
        await cache.set_with_expiry(STORE_SYMBOLS, "short", 1, timedelta(minutes=1))
        await cache.set_with_expiry(STORE_SYMBOLS, "long", 2, timedelta(hours=1))
        clock.advance(5 * 60)

        assert await cache.clear_expired() == 1
        assert await cache.get(STORE_SYMBOLS, "short") is None
        assert await cache.get(STORE_SYMBOLS, "long") == 2

    @pytest.mark.asyncio
    async def test_second_sweep_removes_nothing(self, cache, clock):
        await cache.set_with_expiry(STORE_HISTORICAL, "h", [1], timedelta(minutes=5))
        clock.advance(600)

        assert await cache.clear_expired() == 1
        assert await cache.clear_expired() == 0

    @pytest.mark.asyncio
    async def test_clear_all_empties_both_tiers(self, cache):
        await cache.set_with_expiry(STORE_SYMBOLS, "a", 1, SYMBOLS_TTL)
        cache.set_memory("token", {"p": 1})

        await cache.clear_all()

        assert await cache.get(STORE_SYMBOLS, "a") is None
        assert cache.get_memory("token") is None


class TestMemoryTier:
    @pytest.fixture
    def cache(self, clock):
        # The memory tier never touches the database
        return CacheStore(Database("sqlite+aiosqlite:///:memory:"), clock=clock)

    def test_live_entry_is_returned(self, cache):
        cache.set_memory("token", {"current_tvl": 10})

        assert cache.get_memory("token") == {"current_tvl": 10}

    def test_stale_entry_is_evicted_on_read(self, cache, clock):
        cache.set_memory("token", {"current_tvl": 10}, timedelta(minutes=10))
        clock.advance(11 * 60)

        assert cache.get_memory("token") is None
        assert cache.get_stats().memory_size == 0

    def test_clear_memory_expired_counts(self, cache, clock):
        cache.set_memory("a", 1, timedelta(seconds=10))
        cache.set_memory("b", 2, timedelta(seconds=10))
        cache.set_memory("c", 3, timedelta(minutes=10))
        clock.advance(60)

        assert cache.clear_memory_expired() == 2
        assert cache.get_memory("c") == 3


class TestSchemaVersion:
    @pytest.mark.asyncio
    async def test_older_schema_drops_cache_tables(self, tmp_path, clock):
        url = f"sqlite+aiosqlite:///{tmp_path}/upgrade.db"
        db = Database(url)
        await db.init()
        async with db.session() as session:
            await CacheRepository(session).put_entry(STORE_SYMBOLS, "k", b"1", "json", clock())
            await session.execute(update(SchemaInfoDB).values(version=SCHEMA_VERSION - 1))
        await db.close()

        reopened = Database(url)
        await reopened.init()
        try:
            async with reopened.session() as session:
                assert await CacheRepository(session).get_entry(STORE_SYMBOLS, "k") is None
                info = await session.get(SchemaInfoDB, 1)
                assert info.version == SCHEMA_VERSION
        finally:
            await reopened.close()
