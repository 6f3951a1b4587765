"""
Service layer - data freshness and resilience for the market data API.

Provides:
- CacheStore: Durable + memory cache with per-key expiry
- RequestDispatcher: Bounded-concurrency FIFO queue for outbound calls
- classify: Maps HTTP failures to auth/addon/network categories
- ApiClient: Authenticated HTTP client (JSON, images, streams)
- StreamSessionManager: Token stream with reconnection and a watchdog
- TokenService: Cached facade over the API
- RefreshScheduler: Auto-sync and cache sweep jobs
"""

from marketfeed.services.errors import (
    ServiceError,
    CacheError,
    ApiError,
    NotConfiguredError,
    RequestTimeoutError,
    InvalidResponseError,
)
from marketfeed.services.classifier import ClassifiedError, ErrorCategory, classify
from marketfeed.services.cache import CacheStore, CacheStats, MemoryCacheEntry
from marketfeed.services.dispatcher import RequestDispatcher, DispatcherStats
from marketfeed.services.client import ApiClient, ApiCallLog
from marketfeed.services.stream import (
    StreamListener,
    StreamPolicy,
    StreamSession,
    StreamSessionManager,
    StreamState,
)
from marketfeed.services.token_service import TokenService
from marketfeed.services.scheduler import RefreshScheduler

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "ApiError",
    "NotConfiguredError",
    "RequestTimeoutError",
    "InvalidResponseError",
    # Classifier
    "ClassifiedError",
    "ErrorCategory",
    "classify",
    # Cache
    "CacheStore",
    "CacheStats",
    "MemoryCacheEntry",
    # Dispatcher
    "RequestDispatcher",
    "DispatcherStats",
    # Client
    "ApiClient",
    "ApiCallLog",
    # Stream
    "StreamListener",
    "StreamPolicy",
    "StreamSession",
    "StreamSessionManager",
    "StreamState",
    # Facade
    "TokenService",
    "RefreshScheduler",
]
