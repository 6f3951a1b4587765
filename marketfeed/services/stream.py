"""
StreamSessionManager - one long-lived token stream per subscription key.

States:
- IDLE: no session
- CONNECTING: request in flight
- CONNECTED: response accepted, reading NDJSON records
- ERROR: connection failed or went silent (may retry)
- ADDON_BLOCKED: plan lacks the streaming addon; no retries until reset

Transitions:
- IDLE/ERROR → CONNECTING: start(), scheduled retry, manual reconnect()
- CONNECTING → CONNECTED: successful response
- CONNECTING → ADDON_BLOCKED: second addon rejection for the key
- CONNECTING/CONNECTED → ERROR: rejection, transport failure, end of body,
  or watchdog silence timeout
- any → IDLE: stop()

Retries use capped exponential backoff and stop after a fixed number of
attempts. Auth failures are never retried.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx
from loguru import logger
from pydantic import ValidationError

from marketfeed.datasource.charli3 import STREAM_PATH, TradeUpdate
from marketfeed.services.classifier import (
    ClassifiedError,
    ErrorCategory,
    addon_message,
    classify,
)
from marketfeed.services.client import ApiClient


class StreamState(str, Enum):
    """Stream session states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    ADDON_BLOCKED = "addon_blocked"


@dataclass
class StreamPolicy:
    """Reconnection and liveness settings."""

    max_reconnect_attempts: int = 5
    base_delay: float = 1.0  # seconds, doubled per attempt
    max_delay: float = 30.0
    health_check_interval: float = 30.0
    silence_timeout: float = 90.0
    watchdog_reconnect_delay: float = 5.0
    max_addon_attempts: int = 2

    def backoff_delay(self, attempts: int) -> float:
        return min(self.base_delay * (2**attempts), self.max_delay)


@dataclass
class StreamSession:
    """State for one subscription key."""

    subscription_key: str
    state: StreamState = StreamState.IDLE
    connected: bool = False
    last_data_at: float = 0.0
    reconnect_attempts: int = 0
    addon_error_detected: bool = False
    addon_error_attempts: int = 0
    stopped: bool = False
    task: asyncio.Task | None = None
    retry_handle: asyncio.TimerHandle | None = None


class StreamListener:
    """
    Receives stream notifications. Subclass and override what you need.

    Hooks run on the event loop; exceptions they raise are logged and
    never interrupt the stream.
    """

    def on_status(
        self, key: str, state: StreamState, message: str | None = None
    ) -> None:
        pass

    def on_trade(self, update: TradeUpdate) -> None:
        pass

    def on_health(self, key: str) -> None:
        pass


class StreamSessionManager:
    """
    Owns the token stream connection.

    Usage:
        manager = StreamSessionManager(api_client)
        manager.subscribe(my_listener)

        await manager.start("pool_id")
        ...
        await manager.close()
    """

    def __init__(
        self,
        client: ApiClient,
        policy: StreamPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._client = client
        self.policy = policy or StreamPolicy()
        self._clock = clock
        self._debug = debug

        self._sessions: dict[str, StreamSession] = {}
        self._current: StreamSession | None = None
        self._listeners: list[StreamListener] = []
        self._watchdog: asyncio.Task | None = None
        # start() and stop() run one at a time
        self._lock = asyncio.Lock()

    # Listeners

    def subscribe(self, listener: StreamListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StreamListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Introspection

    @property
    def session(self) -> StreamSession | None:
        """The active session, if any."""
        return self._current

    @property
    def state(self) -> StreamState:
        return self._current.state if self._current else StreamState.IDLE

    def get_session(self, key: str) -> StreamSession | None:
        return self._sessions.get(key)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        session = self._current
        if session is None:
            return {"state": StreamState.IDLE.value, "subscription_key": None}
        return {
            "state": session.state.value,
            "subscription_key": session.subscription_key,
            "connected": session.connected,
            "reconnect_attempts": session.reconnect_attempts,
            "addon_blocked": session.addon_error_detected,
            "seconds_since_data": (
                self._clock() - session.last_data_at if session.last_data_at else None
            ),
        }

    # Public control

    async def start(self, key: str) -> StreamState:
        """
        Start streaming for a subscription key.

        No-op when already connected on the same key. Any other session is
        torn down first. Returns the resulting state: CONNECTING, or
        ADDON_BLOCKED without any network call for a blocked key.
        """
        async with self._lock:
            return await self._start(key)

    async def _start(self, key: str) -> StreamState:
        current = self._current
        if current and current.subscription_key == key and current.connected:
            return current.state

        self._ensure_watchdog()

        same_key = current is not None and current.subscription_key == key
        if current is not None:
            await self._teardown(current)
            if not same_key:
                self._set_state(current, StreamState.IDLE)

        session = self._sessions.setdefault(key, StreamSession(subscription_key=key))
        if not same_key:
            session.reconnect_attempts = 0
        session.stopped = False
        self._current = session

        if session.addon_error_detected:
            logger.info(f"Skipping stream connection for {key} due to addon error")
            self._set_state(session, StreamState.ADDON_BLOCKED, addon_message("streaming"))
            return session.state

        self._connect(session)
        return session.state

    async def stop(self, key: str | None = None) -> None:
        """Stop the active session (only if it matches key, when given)."""
        async with self._lock:
            await self._stop(key)

    async def _stop(self, key: str | None) -> None:
        session = self._current
        if session is None:
            return
        if key is not None and session.subscription_key != key:
            return

        session.stopped = True
        self._current = None
        await self._teardown(session)
        session.reconnect_attempts = 0
        session.last_data_at = 0.0
        self._set_state(session, StreamState.IDLE)
        logger.info(f"Stream stopped for {session.subscription_key}")

    async def reconnect(self) -> StreamState:
        """Manual reconnect of the current key with a fresh retry budget."""
        session = self._current
        if session is None:
            return StreamState.IDLE

        logger.info(f"Manual reconnection requested for {session.subscription_key}")
        session.reconnect_attempts = 0
        return await self.start(session.subscription_key)

    def reset_addon_block(self, key: str | None = None) -> None:
        """Allow previously addon-blocked keys to connect again."""
        if key is None:
            sessions = list(self._sessions.values())
        else:
            sessions = [s for k, s in self._sessions.items() if k == key]

        for session in sessions:
            session.addon_error_detected = False
            session.addon_error_attempts = 0
        logger.info("Stream addon error state reset")

    async def close(self) -> None:
        """Stop streaming and the health watchdog."""
        await self.stop()
        if self._watchdog is not None:
            self._watchdog.cancel()
            await asyncio.gather(self._watchdog, return_exceptions=True)
            self._watchdog = None

    # Health watchdog

    def check_health(self) -> bool:
        """
        Force a reconnect when a 'connected' stream has gone silent.

        Returns:
            True if the session was declared dead
        """
        session = self._current
        if session is None or not session.connected:
            return False

        silence = self._clock() - session.last_data_at
        if silence <= self.policy.silence_timeout:
            return False

        logger.warning(
            f"Stream for {session.subscription_key} silent for {silence:.0f}s, "
            "reconnecting..."
        )
        session.connected = False
        self._cancel_task(session)
        self._set_state(session, StreamState.ERROR, "Stream connection appears to be dead")

        self._cancel_retry(session)
        session.retry_handle = asyncio.get_running_loop().call_later(
            self.policy.watchdog_reconnect_delay, self._retry, session
        )
        return True

    def _ensure_watchdog(self) -> None:
        if self._watchdog is None or self._watchdog.done():
            self._watchdog = asyncio.create_task(self._watchdog_loop())

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.policy.health_check_interval)
            try:
                self.check_health()
            except Exception as e:
                logger.error(f"Stream health check failed: {e}")

    # Connection lifecycle

    def _connect(self, session: StreamSession) -> None:
        self._set_state(session, StreamState.CONNECTING)
        session.task = asyncio.create_task(self._run(session))

    async def _run(self, session: StreamSession) -> None:
        key = session.subscription_key
        self._log(f"Starting stream connection for {key}")

        try:
            async with self._client.open_stream(STREAM_PATH, [key]) as response:
                if response.is_error:
                    await response.aread()
                    error = classify(
                        response.status_code, response.text, str(response.url)
                    )
                    logger.error(
                        f"Stream request failed with status {response.status_code}: "
                        f"{response.text[:200]}"
                    )
                    if not self._on_rejected(session, error):
                        return
                    message = error.message
                else:
                    self._on_connected(session)
                    await self._read_loop(session, response)
                    logger.info(f"Stream ended for {key}")
                    message = "Stream ended"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Stream error for {key}: {e}")
            message = str(e) or type(e).__name__

        self._on_failure(session, message)

    def _on_connected(self, session: StreamSession) -> None:
        session.connected = True
        session.reconnect_attempts = 0
        session.addon_error_attempts = 0
        session.last_data_at = self._clock()
        self._set_state(session, StreamState.CONNECTED)

    def _on_rejected(self, session: StreamSession, error: ClassifiedError) -> bool:
        """
        Apply the classification of a rejected stream request.

        Returns:
            True if the reconnection policy should run
        """
        if error.is_addon_error:
            session.addon_error_attempts += 1
            if session.addon_error_attempts >= self.policy.max_addon_attempts:
                session.addon_error_detected = True
                logger.warning(
                    f"Addon error for {session.subscription_key} after "
                    f"{session.addon_error_attempts} attempts, disabling retries"
                )
                self._set_state(
                    session, StreamState.ADDON_BLOCKED, addon_message("streaming")
                )
                return False
            return True

        if error.category == ErrorCategory.AUTH:
            self._set_state(
                session,
                StreamState.ERROR,
                "Invalid API key. Please check your configuration.",
            )
            return False

        return True

    def _on_failure(self, session: StreamSession, message: str) -> None:
        """Connection attempt or read loop ended without an explicit stop."""
        if self._current is not session or session.stopped:
            return

        session.connected = False
        session.task = None
        self._set_state(session, StreamState.ERROR, message)
        self._schedule_reconnect(session)

    def _schedule_reconnect(self, session: StreamSession) -> None:
        if session.reconnect_attempts >= self.policy.max_reconnect_attempts:
            logger.error(
                f"Max reconnection attempts reached for {session.subscription_key}"
            )
            return

        delay = self.policy.backoff_delay(session.reconnect_attempts)
        session.reconnect_attempts += 1
        logger.info(
            f"Reconnecting {session.subscription_key} in {delay:.1f}s "
            f"(attempt {session.reconnect_attempts}/"
            f"{self.policy.max_reconnect_attempts})"
        )
        self._cancel_retry(session)
        session.retry_handle = asyncio.get_running_loop().call_later(
            delay, self._retry, session
        )

    def _retry(self, session: StreamSession) -> None:
        session.retry_handle = None
        # A newer start() or a stop() supersedes the pending retry
        if self._current is not session or session.stopped:
            self._log(f"Dropping stale retry for {session.subscription_key}")
            return
        self._connect(session)

    async def _teardown(self, session: StreamSession) -> None:
        self._cancel_retry(session)
        task = self._cancel_task(session)
        session.connected = False
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

    def _cancel_task(self, session: StreamSession) -> asyncio.Task | None:
        task, session.task = session.task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    def _cancel_retry(self, session: StreamSession) -> None:
        if session.retry_handle is not None:
            session.retry_handle.cancel()
            session.retry_handle = None

    # Record handling

    async def _read_loop(self, session: StreamSession, response: httpx.Response) -> None:
        async for line in response.aiter_lines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError as e:
                logger.warning(f"Stream parse error: {e}")
                continue

            session.last_data_at = self._clock()
            self._dispatch(session, record)

    def _dispatch(self, session: StreamSession, record: Any) -> None:
        if not isinstance(record, dict):
            logger.warning(f"Ignoring non-object stream record: {record!r}")
            return

        if record.get("s") == "ok":
            self._log(f"Health check received for {session.subscription_key}")
            if session.state != StreamState.CONNECTED:
                self._set_state(session, StreamState.CONNECTED)
            self._notify("on_health", session.subscription_key)
            return

        try:
            update = TradeUpdate.model_validate(record)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed stream record: {e}")
            return

        # Shared transports may deliver other pools' updates
        if update.pool_id != session.subscription_key:
            self._log(f"Pool id mismatch ({update.pool_id}), ignoring event")
            return

        self._notify("on_trade", update)

    # Notifications

    def _set_state(
        self,
        session: StreamSession,
        state: StreamState,
        message: str | None = None,
    ) -> None:
        session.state = state
        self._log(f"Stream status for {session.subscription_key}: {state.value}")
        self._notify("on_status", session.subscription_key, state, message)

    def _notify(self, hook: str, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(*args)
            except Exception as e:
                logger.error(f"Stream listener {hook} failed: {e}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[StreamManager] {message}")
