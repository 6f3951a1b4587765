"""
ApiClient - async HTTP client for the market data API.

Handles:
- Bearer authentication from ApiConfig
- JSON / image response validation
- Error classification (auth, addon, network)
- A log of every outbound call for debugging rate-limit usage
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from marketfeed.services.classifier import ErrorCategory, addon_message, classify
from marketfeed.services.errors import (
    ApiError,
    InvalidResponseError,
    NotConfiguredError,
    RequestTimeoutError,
    ServiceError,
)
from marketfeed.settings import ApiConfig


@dataclass
class ApiCall:
    """One recorded outbound call."""

    id: int
    url: str
    timestamp: float


@dataclass
class ApiCallLog:
    """Counts outbound calls, grouped by endpoint."""

    calls: list[ApiCall] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.calls)

    def record(self, url: str) -> ApiCall:
        call = ApiCall(id=len(self.calls) + 1, url=url, timestamp=time.time())
        self.calls.append(call)
        return call

    def count(self, endpoint: str) -> int:
        """Number of calls whose path (without query) ends with endpoint."""
        return sum(1 for c in self.calls if c.url.split("?")[0].endswith(endpoint))

    def reset(self) -> None:
        self.calls.clear()

    def summary(self) -> dict[str, Any]:
        by_endpoint: dict[str, int] = {}
        for call in self.calls:
            endpoint = call.url.split("?")[0]
            by_endpoint[endpoint] = by_endpoint.get(endpoint, 0) + 1

        return {
            "total_calls": self.total,
            "calls_by_endpoint": by_endpoint,
            "recent_calls": [
                {"id": c.id, "url": c.url, "timestamp": c.timestamp}
                for c in self.calls[-10:]
            ],
        }


class ApiClient:
    """
    HTTP client bound to one API configuration.

    Usage:
        async with ApiClient(api_config) as client:
            groups = await client.get_json("/api/v1/groups")
            logo = await client.get_blob("/api/v1/tokens/logo/abc")

            async with client.open_stream("/api/v1/tokens/stream", ["pool"]) as resp:
                async for line in resp.aiter_lines():
                    ...
    """

    SERVICE_ID = "charli3"

    def __init__(
        self,
        config: ApiConfig,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        debug: bool = False,
    ):
        self.config = config
        self._timeout = timeout
        self._http_client = http_client
        self._debug = debug
        self.call_log = ApiCallLog()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    def build_url(self, path: str) -> str:
        return f"{self.config.api_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.bearer_token}"}

    def _record(self, url: str) -> None:
        call = self.call_log.record(url)
        logger.debug(f"[API-{call.id}] {url} (total calls: {self.call_log.total})")

    async def get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        GET a JSON document.

        Raises:
            NotConfiguredError: If base URL or token is missing
            ApiError: For HTTP error statuses (classified)
            InvalidResponseError: For non-JSON or error payloads
            RequestTimeoutError: If the request times out
            ServiceError: For other transport errors
        """
        response = await self._execute(path, params)

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.error(
                f"API returned non-JSON response with content-type: "
                f"{content_type or 'none'}, body: {response.text[:200]}"
            )
            raise InvalidResponseError(
                "API returned non-JSON response", service_id=self.SERVICE_ID
            )

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"API returned malformed JSON: {e}", service_id=self.SERVICE_ID
            ) from e

        if data is None or (isinstance(data, dict) and data.get("s") == "error"):
            errmsg = data.get("errmsg") if isinstance(data, dict) else None
            logger.error(f"API response is an error: {errmsg or 'Unknown error'}")
            raise InvalidResponseError(
                "API response is an error", service_id=self.SERVICE_ID
            )

        self._log(f"OK {response.status_code}: {path}")
        return data

    async def get_blob(self, path: str) -> bytes:
        """GET an image and return its raw bytes."""
        response = await self._execute(path, None)

        content_type = response.headers.get("content-type", "")
        if "image" not in content_type:
            logger.error(
                f"API returned non-image response with content-type: "
                f"{content_type or 'none'}"
            )
            raise InvalidResponseError(
                "API returned non-image response", service_id=self.SERVICE_ID
            )

        self._log(f"OK {response.status_code}: {path} ({len(response.content)} bytes)")
        return response.content

    async def _execute(
        self, path: str, params: dict[str, Any] | None
    ) -> httpx.Response:
        """Execute the actual HTTP request."""
        url = self.build_url(path)
        self._record(url)

        if not self.config.is_configured():
            raise NotConfiguredError(service_id=self.SERVICE_ID)

        client = await self._get_http_client()

        try:
            response = await client.get(
                url,
                params=params,
                headers=self._auth_headers(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.SERVICE_ID, self._timeout) from e
        except httpx.RequestError as e:
            raise ServiceError(str(e), service_id=self.SERVICE_ID) from e

        if response.is_error:
            raise self._to_api_error(response.status_code, response.text, str(response.url))

        return response

    def _to_api_error(self, status: int, body: str, url: str) -> ApiError:
        """Classify an error response and log it for the user."""
        error = classify(status, body, url)
        logger.error(f"API request failed with status {status}: {body[:200]}")

        if error.is_addon_error:
            logger.warning(f"Addon error: {addon_message('api')}")
        elif error.category == ErrorCategory.AUTH:
            logger.error(
                "Invalid API key. Please check your configuration and try again."
            )
        else:
            logger.error(error.message)

        return ApiError(error, service_id=self.SERVICE_ID)

    @asynccontextmanager
    async def open_stream(
        self, path: str, payload: Any
    ) -> AsyncIterator[httpx.Response]:
        """
        POST to a streaming endpoint and yield the un-read response.

        Only the connect phase is bounded by the timeout; reads wait
        indefinitely (liveness is watched by the caller).
        """
        url = self.build_url(path)
        self._record(url)

        if not self.config.is_configured():
            raise NotConfiguredError(service_id=self.SERVICE_ID)

        client = await self._get_http_client()
        async with client.stream(
            "POST",
            url,
            json=payload,
            headers=self._auth_headers(),
            timeout=httpx.Timeout(self._timeout, read=None),
        ) as response:
            yield response

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ApiClient closed")

    async def __aenter__(self) -> "ApiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ApiClient] {message}")
