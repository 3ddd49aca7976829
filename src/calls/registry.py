"""Authoritative in-memory map of tracked calls.

Every mutation of a ``CallSession`` goes through this registry. Each session
owns an ``asyncio.Lock``; holding it is the single-writer discipline for that
call, while different calls proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from calls.errors import DuplicateSession
from calls.models import CallSession

LOGGER = logging.getLogger(__name__)

SessionMutation = Callable[[CallSession], Any]


class CallSessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    def create(self, call_id: str, **fields: Any) -> CallSession:
        """Insert a new session, raising ``DuplicateSession`` if the id is tracked."""

        if call_id in self._sessions:
            raise DuplicateSession(call_id)
        session = CallSession(id=call_id, **fields)
        self._sessions[call_id] = session
        self._locks.setdefault(call_id, asyncio.Lock())
        LOGGER.debug("Tracking call %s", call_id)
        return session

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def list(self, api_key_id: int | None = None) -> list[CallSession]:
        sessions = list(self._sessions.values())
        if api_key_id is None:
            return sessions
        return [session for session in sessions if session.api_key_id == api_key_id]

    def remove(self, call_id: str) -> CallSession | None:
        """Forget a session. Safe to call for ids that are already gone."""

        session = self._sessions.pop(call_id, None)
        self._locks.pop(call_id, None)
        if session is not None:
            LOGGER.debug("Released call %s", call_id)
        return session

    def _lock_for(self, call_id: str) -> asyncio.Lock:
        lock = self._locks.get(call_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[call_id] = lock
        return lock

    @asynccontextmanager
    async def locked(self, call_id: str) -> AsyncIterator[CallSession | None]:
        """Hold the per-call lock and yield the session, or ``None`` if untracked.

        Waiters are served in arrival order, so events for one call are applied
        in the order they were received.
        """

        lock = self._lock_for(call_id)
        async with lock:
            yield self._sessions.get(call_id)
        if call_id not in self._sessions and self._locks.get(call_id) is lock and not lock.locked():
            self._locks.pop(call_id, None)

    async def mutate(
        self,
        call_id: str,
        fn: Callable[[CallSession], Any | Awaitable[Any]],
    ) -> Any:
        """Apply ``fn`` to the session under its lock. No-op when the call is unknown."""

        async with self.locked(call_id) as session:
            if session is None:
                return None
            result = fn(session)
            if asyncio.iscoroutine(result):
                result = await result
            return result
