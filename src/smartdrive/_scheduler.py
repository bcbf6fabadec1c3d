"""Schedule-task service.

Every timer in smartdrive (reconnect backoff, heartbeat, waypoint sync,
crash countdown, GPS health checks) and every fire-and-forget coroutine
goes through a :class:`Scheduler`.  Production code uses
:class:`AsyncioScheduler`; tests drive the same state machines with
:class:`ManualScheduler` and a virtual clock.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Protocol

_logger = logging.getLogger(__name__)


class TaskHandle:
    """Cancelable handle for a scheduled callback.

    Cancelling is idempotent: cancelling twice, or cancelling a timer that
    already fired, is a no-op.
    """

    __slots__ = ("_cancel", "_cancelled")

    def __init__(self, cancel: Callable[[], object] | None = None) -> None:
        self._cancel = cancel
        self._cancelled = False

    def _rebind(self, cancel: Callable[[], object]) -> None:
        self._cancel = cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._cancel is not None:
            self._cancel()


class Scheduler(Protocol):
    """Structural scheduler interface used by all components."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle: ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> TaskHandle: ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None: ...


def _run_callback(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        _logger.warning("Scheduled callback %r failed", callback, exc_info=True)


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle:
        timer = self.loop.call_later(max(0.0, delay), _run_callback, callback)
        return TaskHandle(timer.cancel)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TaskHandle:
        handle = TaskHandle()

        def _tick() -> None:
            if handle.cancelled:
                return
            # Re-arm first so a failing callback does not stop the interval.
            handle._rebind(self.loop.call_later(interval, _tick).cancel)
            _run_callback(callback)

        handle._rebind(self.loop.call_later(interval, _tick).cancel)
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Background task %s failed", task.get_name(), exc_info=exc)

    async def aclose(self) -> None:
        """Cancel outstanding background tasks and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


@dataclass(order=True)
class _ManualTimer:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    interval: float | None = field(default=None, compare=False)
    cancelled: bool = field(default=False, compare=False)


class ManualScheduler:
    """Deterministic scheduler with a virtual clock.

    Timers only fire from :meth:`advance`.  Spawned coroutines are started
    by :meth:`run_pending`, which lets them run until they block.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: list[_ManualTimer] = []
        self._seq = itertools.count()
        self._pending: deque[Coroutine[Any, Any, Any]] = deque()
        self._tasks: set[asyncio.Task[Any]] = set()
        self.delays: list[float] = []
        """Every one-shot delay requested through :meth:`call_later`, in order."""

    def now(self) -> float:
        return self._now

    def _push(self, delay: float, callback: Callable[[], None], interval: float | None) -> TaskHandle:
        timer = _ManualTimer(self._now + max(0.0, delay), next(self._seq), callback, interval)
        heapq.heappush(self._timers, timer)

        def _cancel() -> None:
            timer.cancelled = True

        return TaskHandle(_cancel)

    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle:
        self.delays.append(delay)
        return self._push(delay, callback, None)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TaskHandle:
        return self._push(interval, callback, interval)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self._pending.append(coro)

    @property
    def active_timers(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._now + seconds
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = timer.due
            if timer.interval is not None:
                timer.due += timer.interval
                timer.seq = next(self._seq)
                heapq.heappush(self._timers, timer)
            _run_callback(timer.callback)
        self._now = target

    async def run_pending(self, rounds: int = 20) -> None:
        """Start spawned coroutines and yield to the loop until they settle."""
        loop = asyncio.get_running_loop()
        for _ in range(rounds):
            while self._pending:
                task = loop.create_task(self._pending.popleft())
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)
            await asyncio.sleep(0)
            if not self._pending and all(task.done() for task in self._tasks):
                break

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _logger.warning("Background task %s failed", task.get_name(), exc_info=task.exception())

    async def aclose(self) -> None:
        while self._pending:
            self._pending.popleft().close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
