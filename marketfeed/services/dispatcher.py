"""
RequestDispatcher - Bounded-concurrency FIFO queue for outbound calls.

At most `max_concurrent` operations run at once; the rest wait in admission
order. Every completion re-triggers the drain so the queue always makes
progress, and one failing operation never blocks the others.
"""

import asyncio
import functools
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass
class QueuedTask:
    """An operation waiting for a slot, plus the future its caller awaits."""

    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future


class RequestDispatcher:
    """
    Limits the number of in-flight async operations.

    Usage:
        dispatcher = RequestDispatcher(max_concurrent=5)

        data = await dispatcher.add(lambda: client.get_json("/api/v1/groups"))

    The dispatcher adds no error semantics of its own: the awaiting caller
    receives the operation's own result or exception.
    """

    def __init__(self, max_concurrent: int = 5, debug: bool = False):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._max_concurrent = max_concurrent
        self._queue: deque[QueuedTask] = deque()
        self._active = 0
        self._draining = False
        self._running: set[asyncio.Task[None]] = set()
        self._debug = debug
        self._stats = DispatcherStats()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def add(self, operation: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """
        Queue an operation and return the future of its outcome.

        The operation is queued before add returns; admission order is call
        order.

        Args:
            operation: Zero-argument async callable

        Returns:
            Future resolved with the operation's result or exception
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append(QueuedTask(operation=operation, future=future))
        self._stats.queued += 1
        self._log(f"QUEUED: pending={len(self._queue)} active={self._active}")

        self._drain()
        return future

    def _drain(self) -> None:
        """Launch queued operations while there are free slots."""
        if self._draining:
            return

        self._draining = True
        try:
            while self._queue and self._active < self._max_concurrent:
                task = self._queue.popleft()
                if task.future.done():
                    # Caller stopped waiting before the operation was launched
                    self._stats.skipped += 1
                    continue

                self._active += 1
                self._stats.peak_active = max(self._stats.peak_active, self._active)
                runner = asyncio.create_task(self._run(task))
                self._running.add(runner)
                runner.add_done_callback(functools.partial(self._on_done, task))
        finally:
            self._draining = False

    async def _run(self, task: QueuedTask) -> None:
        try:
            result = await task.operation()
        except Exception as e:
            self._stats.failed += 1
            self._log(f"FAILED: {type(e).__name__}: {e}")
            if not task.future.done():
                task.future.set_exception(e)
        else:
            self._stats.completed += 1
            if not task.future.done():
                task.future.set_result(result)

    def _on_done(self, task: QueuedTask, runner: asyncio.Task) -> None:
        """Release the slot and pull in the next queued operation."""
        self._running.discard(runner)
        self._active -= 1
        # A runner cancelled before its first step never reaches _run's body
        if runner.cancelled() and not task.future.done():
            task.future.cancel()
        self._drain()

    async def join(self) -> None:
        """Wait until the queue is empty and nothing is in flight."""
        while self._queue or self._running:
            if self._running:
                await asyncio.gather(*list(self._running), return_exceptions=True)
            else:
                await asyncio.sleep(0)

    async def cancel_all(self) -> int:
        """Reject queued operations and cancel running ones."""
        count = len(self._queue) + len(self._running)
        while self._queue:
            task = self._queue.popleft()
            if not task.future.done():
                task.future.cancel()
        for runner in list(self._running):
            runner.cancel()
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
        if count:
            self._log(f"CANCEL_ALL: {count} operations cancelled")
        return count

    def get_stats(self) -> "DispatcherStats":
        """Get dispatcher statistics."""
        self._stats.active = self._active
        self._stats.pending = len(self._queue)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Dispatcher] {message}")


@dataclass
class DispatcherStats:
    """Statistics for the request dispatcher."""

    queued: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    active: int = 0
    pending: int = 0
    peak_active: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "queued": self.queued,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "active": self.active,
            "pending": self.pending,
            "peak_active": self.peak_active,
        }
