"""
Repository layer - wraps data access for the cache and local settings.
"""

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketfeed.constants import STORE_HISTORICAL
from marketfeed.datastore.models import (
    CacheEntryDB,
    CacheMetadataDB,
    HistoricalSeriesDB,
    LocalSettingDB,
)


def metadata_key(store: str, key: str) -> str:
    return f"{store}_{key}"


def model_for_store(store: str) -> type[CacheEntryDB] | type[HistoricalSeriesDB]:
    """Historical series live in their own table, everything else shares one."""
    if store == STORE_HISTORICAL:
        return HistoricalSeriesDB
    return CacheEntryDB


class CacheRepository:
    """Cache payload and expiry metadata repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_entry(
        self, store: str, key: str
    ) -> CacheEntryDB | HistoricalSeriesDB | None:
        model = model_for_store(store)
        return await self.session.get(model, (store, key))

    async def put_entry(
        self,
        store: str,
        key: str,
        payload: bytes,
        encoding: str,
        written_at: float,
    ) -> None:
        model = model_for_store(store)
        await self.session.merge(
            model(
                store=store,
                key=key,
                payload=payload,
                encoding=encoding,
                written_at=written_at,
            )
        )

    async def get_metadata(self, store: str, key: str) -> CacheMetadataDB | None:
        return await self.session.get(CacheMetadataDB, metadata_key(store, key))

    async def put_metadata(
        self, store: str, key: str, timestamp: float, expiry: float
    ) -> None:
        await self.session.merge(
            CacheMetadataDB(
                meta_key=metadata_key(store, key),
                store=store,
                key=key,
                timestamp=timestamp,
                expiry=expiry,
            )
        )

    async def list_expired_metadata(self, now: float) -> list[CacheMetadataDB]:
        result = await self.session.execute(
            select(CacheMetadataDB).where(CacheMetadataDB.expiry < now)
        )
        return list(result.scalars().all())

    async def delete_pair(self, store: str, key: str) -> None:
        """Delete a data entry and its metadata record together."""
        model = model_for_store(store)
        await self.session.execute(
            delete(model).where(model.store == store, model.key == key)
        )
        await self.session.execute(
            delete(CacheMetadataDB).where(
                CacheMetadataDB.meta_key == metadata_key(store, key)
            )
        )

    async def clear_all(self) -> None:
        for model in (CacheEntryDB, HistoricalSeriesDB, CacheMetadataDB):
            await self.session.execute(delete(model))
        await self.session.flush()
        logger.debug("Cleared all durable cache tables")


class SettingsRepository:
    """Persisted local settings repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_all(self) -> dict[str, str]:
        result = await self.session.execute(select(LocalSettingDB))
        return {row.name: row.value for row in result.scalars().all()}

    async def set(self, name: str, value: str) -> None:
        existing = await self.session.get(LocalSettingDB, name)
        if existing:
            existing.value = value
        else:
            self.session.add(LocalSettingDB(name=name, value=value))
        logger.debug(f"Saved local setting: {name}")

    async def delete(self, name: str) -> bool:
        existing = await self.session.get(LocalSettingDB, name)
        if existing is None:
            return False
        await self.session.delete(existing)
        return True
