"""
Local SQLite persistence for the durable cache tier and settings.
"""

from marketfeed.datastore.engine import Database
from marketfeed.datastore.repositories import CacheRepository, SettingsRepository

__all__ = ["Database", "CacheRepository", "SettingsRepository"]
