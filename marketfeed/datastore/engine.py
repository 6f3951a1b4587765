"""
Database engine configuration and management.
Uses the SQLAlchemy async engine against a local SQLite database.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from marketfeed.constants import SCHEMA_VERSION
from marketfeed.datastore.models import CACHE_TABLES, Base, SchemaInfoDB


class Database:
    """
    Owns the async engine and session factory for one database URL.

    Usage:
        db = Database("sqlite+aiosqlite:///./marketfeed.db")
        await db.init()

        async with db.session() as session:
            ...

        await db.close()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        """Create the engine, tables, and migrate the schema version."""
        kwargs = {}
        if ":memory:" in self.url:
            # Every connection must see the same in-memory database
            kwargs["poolclass"] = StaticPool

        self.engine = create_async_engine(self.url, echo=self.echo, **kwargs)
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

            result = await conn.execute(select(SchemaInfoDB.version))
            current = result.scalar_one_or_none()

            if current is None:
                await conn.execute(
                    SchemaInfoDB.__table__.insert().values(id=1, version=SCHEMA_VERSION)
                )
            elif current < SCHEMA_VERSION:
                logger.info(
                    f"Upgrading cache schema from v{current} to v{SCHEMA_VERSION}"
                )
                await conn.run_sync(
                    lambda sync_conn: Base.metadata.drop_all(
                        sync_conn, tables=list(CACHE_TABLES)
                    )
                )
                await conn.run_sync(
                    lambda sync_conn: Base.metadata.create_all(
                        sync_conn, tables=list(CACHE_TABLES)
                    )
                )
                await conn.execute(
                    SchemaInfoDB.__table__.update().values(version=SCHEMA_VERSION)
                )

        logger.debug(f"Database initialized: {self.url}")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
