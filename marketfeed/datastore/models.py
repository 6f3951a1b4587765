"""
Database models for the durable cache tier.
Uses SQLAlchemy 2.0+ declarative mapping.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, LargeBinary, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models"""

    pass


class PayloadMixin:
    """Columns shared by every data store table."""

    store: Mapped[str] = mapped_column(String(50), primary_key=True)
    key: Mapped[str] = mapped_column(String(500), primary_key=True)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    # 'json' | 'bytes'
    encoding: Mapped[str] = mapped_column(String(10), default="json", nullable=False)
    written_at: Mapped[float] = mapped_column(Float, nullable=False)


class CacheEntryDB(PayloadMixin, Base):
    """Raw cached payloads (symbols, token snapshots, logos)"""

    __tablename__ = "cache_entries"

    def __repr__(self) -> str:
        return f"<CacheEntry(store={self.store}, key={self.key[:50]})>"


class HistoricalSeriesDB(PayloadMixin, Base):
    """Historical OHLCV series snapshots"""

    __tablename__ = "historical_series"

    def __repr__(self) -> str:
        return f"<HistoricalSeries(key={self.key[:50]})>"


class CacheMetadataDB(Base):
    """Expiry metadata, keyed by '{store}_{key}'"""

    __tablename__ = "cache_metadata"

    meta_key: Mapped[str] = mapped_column(String(600), primary_key=True)
    store: Mapped[str] = mapped_column(String(50), nullable=False)
    key: Mapped[str] = mapped_column(String(500), nullable=False)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False)
    expiry: Mapped[float] = mapped_column(Float, nullable=False, index=True)

    __table_args__ = (Index("idx_metadata_store_key", "store", "key"),)

    def __repr__(self) -> str:
        return f"<CacheMetadata(meta_key={self.meta_key[:50]}, expiry={self.expiry})>"


class LocalSettingDB(Base):
    """Persisted user settings (API base URL, bearer token, ...)"""

    __tablename__ = "local_settings"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<LocalSetting(name={self.name})>"


class SchemaInfoDB(Base):
    """Single-row table holding the schema version"""

    __tablename__ = "schema_info"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)


# Tables dropped and recreated when the schema version changes
CACHE_TABLES = (
    CacheEntryDB.__table__,
    HistoricalSeriesDB.__table__,
    CacheMetadataDB.__table__,
)
