"""Wall clock and cancellable timers used by ring and gather timeouts."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from calls.tasks import TaskRegistry

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    """Handle for a scheduled callback.

    ``cancel`` may be called any number of times, including after the
    callback already fired; callbacks re-check session state themselves.
    """

    def __init__(self, name: str, canceller: Callable[[], None] | None = None) -> None:
        self.name = name
        self._canceller = canceller
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._canceller is not None:
            self._canceller()


class Clock(ABC):
    """Source of time and timers for the state machines."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback, *, name: str) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds unless cancelled first."""


class LoopClock(Clock):
    """Clock backed by the running asyncio loop."""

    def __init__(self, tasks: TaskRegistry) -> None:
        self._tasks = tasks

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, callback: TimerCallback, *, name: str) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = TimerHandle(name)
        timer = loop.call_later(max(0.0, delay), self._fire, handle, callback)
        handle._canceller = timer.cancel
        return handle

    def _fire(self, handle: TimerHandle, callback: TimerCallback) -> None:
        if handle.cancelled:
            return
        self._tasks.register(handle.name, callback())
