"""
Service layer exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from marketfeed.services.classifier import ClassifiedError


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class NotConfiguredError(ServiceError):
    """API base URL or bearer token is missing."""

    def __init__(self, service_id: str | None = None):
        super().__init__(
            "API configuration is missing. "
            "Please configure your API key and base URL.",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class ApiError(ServiceError):
    """Remote API answered with an error status."""

    def __init__(self, error: ClassifiedError, service_id: str | None = None):
        self.error = error
        super().__init__(error.message, service_id=service_id)

    @property
    def status_code(self) -> int:
        return self.error.status_code


class InvalidResponseError(ServiceError):
    """Response body had an unexpected content type or an error payload."""

    pass
