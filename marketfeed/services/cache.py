"""
CacheStore - two-tier cache with per-key expiry.

Tiers:
- Durable: SQLite tables (survive restarts), one metadata row per entry
  holding write time and expiry
- Memory: process-local dict with lazy eviction on read

A key with no metadata row is reported as expired, so "never written" and
"expired" both mean "refetch".
"""

import json
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from marketfeed.constants import DATA_STORES, TOKEN_DATA_TTL
from marketfeed.datastore.engine import Database
from marketfeed.datastore.repositories import CacheRepository
from marketfeed.services.errors import CacheError


@dataclass
class MemoryCacheEntry:
    """A single memory-tier entry."""

    data: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def _encode(value: Any) -> tuple[bytes, str]:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value), "bytes"
    try:
        return json.dumps(value).encode("utf-8"), "json"
    except (TypeError, ValueError) as e:
        raise CacheError(f"Value is not serialisable: {e}") from e


def _decode(payload: bytes, encoding: str) -> Any:
    if encoding == "bytes":
        return payload
    if encoding == "json":
        return json.loads(payload.decode("utf-8"))
    raise ValueError(f"Unknown payload encoding '{encoding}'")


class CacheStore:
    """
    Durable + memory cache.

    Usage:
        cache = CacheStore(database)

        if not await cache.is_expired("symbols", "Aggregate"):
            data = await cache.get("symbols", "Aggregate")

        await cache.set_with_expiry("symbols", "Aggregate", data, SYMBOLS_TTL)

        cache.set_memory("token_abc", snapshot)
        snapshot = cache.get_memory("token_abc")
    """

    def __init__(
        self,
        database: Database,
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._db = database
        self._clock = clock
        self._debug = debug
        self._memory: dict[str, MemoryCacheEntry] = {}
        self._stats = CacheStats()

    # Durable tier

    async def get(self, store: str, key: str) -> Any | None:
        """
        Read a value from a durable store.

        Never raises: returns None if the store is unknown, the key is
        missing, the payload is corrupt, or the database fails.
        """
        if store not in DATA_STORES:
            logger.warning(f"[CacheStore] Unknown store '{store}'")
            return None

        try:
            async with self._db.session() as session:
                row = await CacheRepository(session).get_entry(store, key)
                if row is None:
                    self._stats.misses += 1
                    self._log(f"MISS: {store}/{key[:50]}")
                    return None
                payload, encoding = row.payload, row.encoding
        except SQLAlchemyError as e:
            logger.warning(f"[CacheStore] Read failed for {store}/{key[:50]}: {e}")
            return None

        try:
            value = _decode(payload, encoding)
        except (ValueError, UnicodeDecodeError) as e:
            self._stats.corrupt += 1
            logger.warning(f"[CacheStore] Corrupt entry {store}/{key[:50]}: {e}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {store}/{key[:50]}")
        return value

    async def set(self, store: str, key: str, value: Any) -> None:
        """Write a value without expiry metadata (is_expired stays True)."""
        self._check_store(store)
        payload, encoding = _encode(value)

        async with self._db.session() as session:
            await CacheRepository(session).put_entry(
                store, key, payload, encoding, self._clock()
            )
        self._log(f"SET: {store}/{key[:50]}")

    async def set_with_expiry(
        self, store: str, key: str, value: Any, ttl: timedelta
    ) -> None:
        """
        Write a value and its metadata record in one transaction.

        Args:
            store: Durable store name
            key: Entry key
            value: JSON-serialisable value or bytes
            ttl: Time to live
        """
        self._check_store(store)
        if ttl.total_seconds() < 0:
            raise ValueError("ttl must not be negative")

        payload, encoding = _encode(value)
        now = self._clock()

        async with self._db.session() as session:
            repo = CacheRepository(session)
            await repo.put_entry(store, key, payload, encoding, now)
            await repo.put_metadata(store, key, now, now + ttl.total_seconds())

        self._stats.writes += 1
        self._log(f"SET: {store}/{key[:50]} (TTL: {ttl.total_seconds()}s)")

    async def is_expired(self, store: str, key: str) -> bool:
        """True if there is no metadata record or it is past its expiry."""
        try:
            async with self._db.session() as session:
                metadata = await CacheRepository(session).get_metadata(store, key)
                expiry = metadata.expiry if metadata else None
        except SQLAlchemyError as e:
            logger.warning(f"[CacheStore] Metadata read failed for {store}/{key}: {e}")
            return True

        if expiry is None:
            return True
        return self._clock() > expiry

    async def clear_expired(self) -> int:
        """
        Remove every durable entry past its expiry.

        Each data row is deleted together with its metadata row inside the
        same transaction, so readers see either the old pair or nothing.

        Returns:
            Number of entries removed
        """
        now = self._clock()

        async with self._db.session() as session:
            repo = CacheRepository(session)
            expired = await repo.list_expired_metadata(now)
            for metadata in expired:
                await repo.delete_pair(metadata.store, metadata.key)

        if expired:
            self._stats.expired += len(expired)
        logger.debug(f"[CacheStore] Cleared {len(expired)} expired cache entries")
        return len(expired)

    async def clear_all(self) -> None:
        """Drop every durable store and the memory tier."""
        async with self._db.session() as session:
            await CacheRepository(session).clear_all()

        count = len(self._memory)
        self._memory.clear()
        logger.info(f"[CacheStore] All caches cleared ({count} memory entries)")

    # Memory tier

    def set_memory(
        self, key: str, value: Any, ttl: timedelta = TOKEN_DATA_TTL
    ) -> None:
        self._memory[key] = MemoryCacheEntry(
            data=value,
            expires_at=self._clock() + ttl.total_seconds(),
        )
        self._log(f"MEMORY SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    def get_memory(self, key: str) -> Any | None:
        """Return a live memory entry, evicting it if it has gone stale."""
        entry = self._memory.get(key)
        if entry is None:
            self._stats.memory_misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._memory[key]
            self._stats.memory_misses += 1
            self._log(f"MEMORY EXPIRED: {key[:50]}")
            return None

        self._stats.memory_hits += 1
        return entry.data

    def clear_memory_expired(self) -> int:
        now = self._clock()
        expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._log(f"MEMORY CLEANUP: {len(expired_keys)} expired entries removed")
        return len(expired_keys)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.memory_size = len(self._memory)
        return self._stats

    def _check_store(self, store: str) -> None:
        if store not in DATA_STORES:
            raise CacheError(f"Unknown cache store '{store}'")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheStore] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    corrupt: int = 0
    writes: int = 0
    expired: int = 0
    memory_hits: int = 0
    memory_misses: int = 0
    memory_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate durable cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "corrupt": self.corrupt,
            "writes": self.writes,
            "expired": self.expired,
            "memory_hits": self.memory_hits,
            "memory_misses": self.memory_misses,
            "memory_size": self.memory_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
