"""
Maps HTTP error responses to semantic categories.

The category decides what callers do next:
- AUTH: credentials are wrong, never retried automatically
- ADDON: the plan lacks a paid capability (e.g. streaming)
- NETWORK: transient, retried with backoff
- UNKNOWN: treated like NETWORK
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Semantic error categories."""

    AUTH = "auth"
    ADDON = "addon"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying a failed response."""

    status_code: int
    message: str
    is_addon_error: bool
    category: ErrorCategory

    @property
    def is_retryable(self) -> bool:
        return self.category in (ErrorCategory.NETWORK, ErrorCategory.UNKNOWN)


_STREAM_401_MARKERS = ("addon", "subscription", "stream", "plan")
_ADDON_403_MARKERS = ("addon", "subscription", "plan")

ADDON_STREAMING_MESSAGE = (
    "No addons detected. If you want to have access to the stream endpoint, "
    "make sure to get access to a Token Price SSE Stream available on Hobby "
    "and Developer plans."
)
ADDON_API_MESSAGE = (
    "This feature requires a paid addon. Please check your subscription plan."
)


def _is_stream_url(url: str) -> bool:
    return "/stream" in url


def _mentions(body: str, markers: tuple[str, ...]) -> bool:
    return any(marker in body for marker in markers)


def classify(status: int, body: str, url: str) -> ClassifiedError:
    """
    Classify an error response. First matching rule wins.

    Args:
        status: HTTP status code
        body: Response body text
        url: Requested URL

    Returns:
        ClassifiedError with category, addon flag and a display message
    """
    body = body or ""
    lowered = body.lower()

    if status == 401:
        if _is_stream_url(url) and _mentions(lowered, _STREAM_401_MARKERS):
            return ClassifiedError(
                status_code=status,
                message=(
                    "Stream access requires a paid addon. Your API key is valid "
                    "but lacks streaming permissions."
                ),
                is_addon_error=True,
                category=ErrorCategory.ADDON,
            )
        return ClassifiedError(
            status_code=status,
            message="Invalid API key. Please check your authentication token.",
            is_addon_error=False,
            category=ErrorCategory.AUTH,
        )

    if status == 403:
        if _is_stream_url(url) or _mentions(lowered, _ADDON_403_MARKERS):
            return ClassifiedError(
                status_code=status,
                message=(
                    "This feature requires a paid addon. Please upgrade your plan "
                    "to access streaming data."
                ),
                is_addon_error=True,
                category=ErrorCategory.ADDON,
            )
        return ClassifiedError(
            status_code=status,
            message="Access denied. Please check your API key permissions.",
            is_addon_error=False,
            category=ErrorCategory.AUTH,
        )

    if status == 429:
        message = "Rate limit exceeded. Please wait before making more requests."
    elif status >= 500:
        message = "Server error. Please try again later."
    elif status >= 400:
        message = f"Request failed with status {status}: {body}"
    else:
        return ClassifiedError(
            status_code=status,
            message=body or "Unknown error occurred",
            is_addon_error=False,
            category=ErrorCategory.UNKNOWN,
        )

    return ClassifiedError(
        status_code=status,
        message=message,
        is_addon_error=False,
        category=ErrorCategory.NETWORK,
    )


def addon_message(feature: str = "streaming") -> str:
    """User-facing notice for a missing addon."""
    if feature == "streaming":
        return ADDON_STREAMING_MESSAGE
    return ADDON_API_MESSAGE
