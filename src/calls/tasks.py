"""Tracking for fire-and-forget background tasks.

Webhook deliveries, timer callbacks and per-event handlers all run detached
from their caller. Registering them here keeps a strong reference to every
task, logs failures with context and lets shutdown wait for stragglers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

LOGGER = logging.getLogger(__name__)


class TaskRegistry:
    """Registry of in-flight background tasks."""

    def __init__(self) -> None:
        self._tasks: dict[asyncio.Task, str] = {}
        self._failed_count = 0
        self._completed_count = 0

    def register(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Start ``coro`` as a task and track it until it finishes."""

        task = asyncio.create_task(coro, name=name)
        self._tasks[task] = name
        task.add_done_callback(self._on_task_complete)
        return task

    def _on_task_complete(self, task: asyncio.Task) -> None:
        name = self._tasks.pop(task, task.get_name())
        self._completed_count += 1
        if task.cancelled():
            LOGGER.debug("Task %s was cancelled", name)
            return
        exc = task.exception()
        if exc is not None:
            self._failed_count += 1
            LOGGER.error("Task %s failed: %s", name, exc, exc_info=exc)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def failed_count(self) -> int:
        return self._failed_count

    @property
    def completed_count(self) -> int:
        return self._completed_count

    async def drain(self) -> None:
        """Wait until every task registered so far, and any they spawn, has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel outstanding tasks and wait up to ``timeout`` seconds for them."""

        if not self._tasks:
            return

        tasks = list(self._tasks)
        LOGGER.info("Shutting down %d background tasks (timeout=%ss)", len(tasks), timeout)
        for task in tasks:
            task.cancel()
        try:
            await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=timeout)
        except asyncio.TimeoutError:
            remaining = len([task for task in tasks if not task.done()])
            LOGGER.warning("Shutdown timeout: %d tasks still running", remaining)
