"""DTMF digit collection with an inactivity timeout.

A gather moves ``Idle -> Collecting -> Complete | TimedOut`` and both terminal
states collapse straight back to ``Idle`` by clearing ``session.gather``.
Every method except ``on_timeout`` expects the caller to hold the session lock.
A timer callback acts only while its own handle is the armed one, so a
timeout that fired while a digit was being applied is dropped.
"""

from __future__ import annotations

import logging

from calls.clock import Clock, TimerHandle
from calls.models import CallSession, GatherState
from calls.registry import CallSessionRegistry
from integrations.webhooks import WebhookNotifier

LOGGER = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 100


class GatherStateMachine:
    def __init__(
        self,
        registry: CallSessionRegistry,
        clock: Clock,
        notifier: WebhookNotifier,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._notifier = notifier

    def start(
        self,
        session: CallSession,
        num_digits: int,
        timeout_ms: int,
        prompt: str = "",
    ) -> GatherState:
        """Install a fresh gather, replacing and disarming any gather in progress."""

        if num_digits < 1:
            raise ValueError("num_digits must be at least 1")
        if timeout_ms < 1:
            raise ValueError("timeout_ms must be positive")

        self.cancel(session)
        state = GatherState(
            num_digits=num_digits,
            timeout_ms=timeout_ms,
            started_at=self._clock.now(),
        )
        session.gather = state
        self._arm(session.id, state)
        LOGGER.info("Gather started on call %s: %d digits, %dms", session.id, num_digits, timeout_ms)
        self._notifier.notify(
            session,
            "gather.started",
            prompt=prompt[:PROMPT_PREVIEW_CHARS],
            expectedDigits=num_digits,
            timeoutMs=timeout_ms,
        )
        return state

    def on_digit(self, session: CallSession, digit: str) -> None:
        state = session.gather
        if state is None:
            return

        state.digits += digit
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        self._notifier.notify(
            session,
            "gather.progress",
            digit=digit,
            collected=state.digits,
            remaining=state.remaining,
        )

        if len(state.digits) >= state.num_digits:
            session.gather = None
            LOGGER.info("Gather complete on call %s", session.id)
            self._notifier.notify(
                session,
                "gather.complete",
                digits=state.digits,
                method="digits_complete",
            )
            return

        self._arm(session.id, state)

    async def on_timeout(self, call_id: str, state: GatherState, handle: TimerHandle) -> None:
        """Timer callback; acts only if ``state`` is installed and ``handle`` is its live timer."""

        async with self._registry.locked(call_id) as session:
            if session is None or session.gather is not state:
                return
            if handle.cancelled or state.timer is not handle:
                LOGGER.debug("Dropping superseded gather timeout on call %s", call_id)
                return
            session.gather = None
            state.timer = None
            now = self._clock.now()
            duration_ms = int((now - state.started_at).total_seconds() * 1000)
            LOGGER.info("Gather timed out on call %s with %r", call_id, state.digits)
            self._notifier.notify(
                session,
                "gather.timeout",
                digits=state.digits,
                expected=state.num_digits,
                duration=duration_ms,
                method="timeout",
            )

    def cancel(self, session: CallSession) -> None:
        state = session.gather
        if state is None:
            return
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        session.gather = None

    def _arm(self, call_id: str, state: GatherState) -> None:
        handle = self._clock.call_later(
            state.timeout_ms / 1000,
            lambda: self.on_timeout(call_id, state, handle),
            name=f"gather-timeout-{call_id}",
        )
        state.timer = handle
