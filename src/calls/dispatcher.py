"""Drives call sessions from call-control protocol events.

Each incoming event is handled in its own tracked task. Handlers take the
per-call lock from the registry before touching a session, so events for one
call are applied one at a time and in arrival order while different calls
proceed in parallel. Failures while handling an event are logged and never
propagate to the event source.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from calls.billing import BillingEngine
from calls.clock import Clock
from calls.errors import CallControlError, ProtocolError
from calls.gather import GatherStateMachine
from calls.models import (
    AMD_CONFIDENCE,
    AMD_NONE,
    AmdResult,
    BillingResult,
    CallSession,
    CallStatus,
    RecordingState,
)
from calls.registry import CallSessionRegistry
from calls.tasks import TaskRegistry
from config.settings import Settings, get_settings
from db.repository import CallLogRepository
from integrations.webhooks import WebhookNotifier
from telephony.base import CallControl
from telephony.events import CallEnded, CallStarted, DtmfReceived, ProtocolEvent, StateChanged

LOGGER = logging.getLogger(__name__)

# Q.850 cause codes reported in HANGUPCAUSE.
CAUSE_NORMAL_CLEARING = "16"
CAUSE_USER_BUSY = "17"
CAUSE_NO_USER_RESPONSE = "18"
CAUSE_NO_ANSWER = "19"
CAUSE_CALL_REJECTED = "21"


def call_duration_seconds(answered_at: datetime | None, ended_at: datetime) -> int:
    """Whole seconds of answered time, rounded up; 0 for calls never answered."""

    if answered_at is None:
        return 0
    micros = (ended_at - answered_at) // timedelta(microseconds=1)
    if micros <= 0:
        return 0
    return -(-micros // 1_000_000)


def refine_end_reason(
    hangup_cause: str | None,
    status: CallStatus,
    end_reason: str,
) -> tuple[CallStatus, str]:
    if hangup_cause == CAUSE_USER_BUSY:
        return CallStatus.NO_ANSWER, "busy"
    if hangup_cause in (CAUSE_NO_USER_RESPONSE, CAUSE_NO_ANSWER):
        return CallStatus.NO_ANSWER, "no_answer"
    if hangup_cause == CAUSE_CALL_REJECTED:
        return CallStatus.NO_ANSWER, "rejected"
    if hangup_cause == CAUSE_NORMAL_CLEARING and status is CallStatus.COMPLETED:
        return status, "normal_hangup"
    return status, end_reason


class ProtocolEventDispatcher:
    def __init__(
        self,
        *,
        registry: CallSessionRegistry,
        call_control: CallControl,
        billing: BillingEngine,
        gather: GatherStateMachine,
        notifier: WebhookNotifier,
        call_logs: CallLogRepository,
        clock: Clock,
        tasks: TaskRegistry,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._call_control = call_control
        self._billing = billing
        self._gather = gather
        self._notifier = notifier
        self._call_logs = call_logs
        self._clock = clock
        self._tasks = tasks
        self._settings = settings or get_settings()

    async def run(self, source: AsyncIterable[ProtocolEvent]) -> None:
        """Consume ``source`` until it is exhausted, one tracked task per event."""

        async for event in source:
            self.dispatch(event)

    def dispatch(self, event: ProtocolEvent) -> asyncio.Task:
        name = f"{type(event).__name__}-{event.call_id}"
        return self._tasks.register(name, self._handle_safely(event))

    async def _handle_safely(self, event: ProtocolEvent) -> None:
        try:
            await self.handle(event)
        except Exception:
            LOGGER.exception("Failed to handle %s for call %s", type(event).__name__, event.call_id)

    async def handle(self, event: ProtocolEvent) -> None:
        if isinstance(event, CallStarted):
            await self._on_call_started(event)
        elif isinstance(event, CallEnded):
            await self._on_call_ended(event)
        elif isinstance(event, StateChanged):
            await self._on_state_changed(event)
        elif isinstance(event, DtmfReceived):
            await self._on_dtmf(event)
        else:
            LOGGER.debug("Ignoring unsupported event %r", event)

    # Answer / ring timeout -------------------------------------------------

    def mark_answered(self, session: CallSession) -> bool:
        """Stamp the answer time and move the call to Answered. Returns False if already answered."""

        if session.answered_at is not None:
            return False
        session.status = CallStatus.ANSWERED
        session.answered_at = self._clock.now()
        if session.ring_timer is not None:
            session.ring_timer.cancel()
            session.ring_timer = None
        LOGGER.info("Call answered: %s", session.id)
        return True

    def arm_ring_timer(self, session: CallSession, seconds: float) -> None:
        if session.ring_timer is not None:
            session.ring_timer.cancel()
        call_id = session.id
        session.ring_timer = self._clock.call_later(
            seconds,
            lambda: self.on_ring_timeout(call_id),
            name=f"ring-timeout-{call_id}",
        )

    async def on_ring_timeout(self, call_id: str) -> None:
        async with self._registry.locked(call_id) as session:
            if session is None or session.status is not CallStatus.RINGING:
                return
            session.ring_timer = None
            LOGGER.info("Ring timeout reached for call %s; hanging up", call_id)
            try:
                await self._call_control.hangup(call_id)
            except ProtocolError as exc:
                # Still ringing; a later answer or hangup event settles the call.
                LOGGER.warning("Hangup after ring timeout failed for %s: %s", call_id, exc)
                return
            session.status = CallStatus.NO_ANSWER
            await self._call_logs.record(
                call_id,
                status=CallStatus.NO_ANSWER.value,
                api_key_id=session.api_key_id,
                number=session.number,
                caller_id=session.caller_id,
                trunk=session.trunk,
                webhook_url=session.webhook_url,
                end_reason="ring_timeout",
            )

    # Call started -----------------------------------------------------------

    async def _on_call_started(self, event: CallStarted) -> None:
        async with self._registry.locked(event.call_id) as session:
            if session is None:
                session = self._registry.create(
                    event.call_id,
                    number=event.caller_number,
                    call_start_time=self._clock.now(),
                )
                LOGGER.info("Call started: %s", event.call_id)
            else:
                if session.number is None:
                    session.number = event.caller_number
                LOGGER.info("Call started: %s (tracked since origination)", event.call_id)

            conduit = asyncio.create_task(self._setup_conduit(session))
            amd = asyncio.create_task(self._probe_amd(session))
            await self._answer(session)
            await asyncio.gather(conduit, amd, return_exceptions=True)

    async def _answer(self, session: CallSession) -> None:
        try:
            await self._call_control.answer(session.id)
        except ProtocolError as exc:
            LOGGER.error("Error answering call %s: %s", session.id, exc)
            return
        self.mark_answered(session)

    async def _setup_conduit(self, session: CallSession) -> None:
        try:
            bridge_id = await self._call_control.create_bridge(f"bridge-{session.id}")
            session.bridge_id = bridge_id
            await self._call_control.add_channel_to_bridge(bridge_id, session.id)
        except ProtocolError as exc:
            LOGGER.error("Bridge setup failed for %s: %s", session.id, exc)
            return

        stamp = int(self._clock.now().timestamp() * 1000)
        recording_name = f"call-{session.id}-{stamp}"
        fmt = self._settings.recording_format
        try:
            recording_id = await self._call_control.record_bridge(
                bridge_id,
                name=recording_name,
                format=fmt,
                max_duration_seconds=self._settings.recording_max_duration_seconds,
                max_silence_seconds=self._settings.recording_max_silence_seconds,
            )
        except ProtocolError as exc:
            LOGGER.error("Bridge recording failed for %s: %s", session.id, exc)
            return

        session.recording = RecordingState(
            active=True,
            filename=f"{recording_name}.{fmt}",
            recording_id=recording_id,
        )
        self._notifier.notify(
            session,
            "recording.started",
            method="bridge",
            filename=session.recording.filename,
            recordingId=recording_id,
        )

    async def _probe_amd(self, session: CallSession) -> None:
        try:
            status = await self._call_control.get_variable(session.id, "AMDSTATUS")
            cause = await self._call_control.get_variable(session.id, "AMDCAUSE")
        except ProtocolError as exc:
            LOGGER.debug("AMD probe failed for %s: %s", session.id, exc)
            session.amd = AmdResult(status=AMD_NONE)
            return

        confidence = AMD_CONFIDENCE.get(status or "")
        if confidence is None:
            session.amd = AmdResult(status=AMD_NONE, cause=cause)
        else:
            session.amd = AmdResult(status=status, cause=cause, confidence=confidence)

    # State change / DTMF ----------------------------------------------------

    async def _on_state_changed(self, event: StateChanged) -> None:
        async with self._registry.locked(event.call_id) as session:
            if session is None:
                return
            LOGGER.debug("Channel state changed: %s -> %s", event.call_id, event.state)
            if event.is_connected:
                self.mark_answered(session)

    async def _on_dtmf(self, event: DtmfReceived) -> None:
        async with self._registry.locked(event.call_id) as session:
            if session is None:
                return
            self._notifier.notify(
                session,
                "dtmf.received",
                digit=event.digit,
                timestamp=int(self._clock.now().timestamp() * 1000),
            )
            self._gather.on_digit(session, event.digit)

    # Call ended -------------------------------------------------------------

    async def _on_call_ended(self, event: CallEnded) -> None:
        async with self._registry.locked(event.call_id) as session:
            if session is None:
                LOGGER.debug("Call ended for untracked call %s", event.call_id)
                return
            try:
                await self._finish(session, event)
            finally:
                self._registry.remove(session.id)

    async def _finish(self, session: CallSession, event: CallEnded) -> None:
        if session.ring_timer is not None:
            session.ring_timer.cancel()
            session.ring_timer = None
        self._gather.cancel(session)

        ended_at = self._clock.now()
        duration = call_duration_seconds(session.answered_at, ended_at)
        status = CallStatus.COMPLETED if duration > 0 else CallStatus.NO_ANSWER
        end_reason = "answered_then_ended" if duration > 0 else "no_answer"

        cause = event.hangup_cause or await self._probe_hangup_cause(session.id)
        if duration == 0 and session.status is CallStatus.NO_ANSWER:
            # Hung up by the ring timer.
            end_reason = "ring_timeout"
        else:
            status, end_reason = refine_end_reason(cause, status, end_reason)
        LOGGER.info(
            "Call ended: %s status=%s reason=%s cause=%s duration=%ss",
            session.id,
            status.value,
            end_reason,
            cause,
            duration,
        )

        await self._teardown_conduit(session)

        result: BillingResult | None = None
        billing = {
            "billableSeconds": duration,
            "ratePerSecond": str(session.rate_per_second),
            "cost": "0",
        }
        if duration > 0 and session.api_key_id is not None and not session.credit_deducted:
            try:
                result = await self._billing.bill_call(
                    session.api_key_id,
                    session.id,
                    duration,
                    session.rate_per_second,
                )
            except (CallControlError, SQLAlchemyError) as exc:
                LOGGER.error("Billing failed for %s: %s", session.id, exc)
                end_reason = "billing_failed"
            else:
                session.credit_deducted = True
                billing = result.to_dict()

        session.status = status
        await self._call_logs.record(
            session.id,
            status=status.value,
            api_key_id=session.api_key_id,
            number=session.number,
            caller_id=session.caller_id,
            amd_status=session.amd.status,
            end_reason=end_reason,
            hangup_cause=cause,
            trunk=session.trunk,
            recording_filename=session.recording.filename,
            webhook_url=session.webhook_url,
            answered_at=session.answered_at,
            ended_at=ended_at,
            duration=duration,
            bill_seconds=result.billable_seconds if result else None,
            bill_cost=result.cost if result else None,
        )

        self._notifier.notify(
            session,
            "call.ended",
            status=status.value,
            endReason=end_reason,
            hangupCause=cause or "normal",
            wasAnswered=duration > 0,
            amd=session.amd.to_dict(),
            recording=session.recording.to_dict() if session.recording.filename else None,
            callDuration=duration,
            billing=billing,
        )

    async def _probe_hangup_cause(self, call_id: str) -> str | None:
        try:
            return await self._call_control.get_variable(call_id, "HANGUPCAUSE")
        except ProtocolError:
            return None

    async def _teardown_conduit(self, session: CallSession) -> None:
        bridge_id = session.bridge_id
        if bridge_id is None:
            return
        try:
            await self._call_control.destroy_bridge(bridge_id)
        except ProtocolError as exc:
            LOGGER.error("Bridge destroy error for %s: %s", session.id, exc)
        session.bridge_id = None
        session.recording.active = False
