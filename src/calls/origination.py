"""Outbound call origination with trunk failover."""

from __future__ import annotations

import logging
import re
import time

from calls.clock import Clock
from calls.dispatcher import ProtocolEventDispatcher
from calls.errors import (
    InsufficientCredits,
    NoTrunksAvailable,
    OriginationFailed,
    ProtocolError,
)
from calls.models import CallSession, CallStatus, OriginationRequest, OriginationResult, Principal
from calls.registry import CallSessionRegistry
from calls.trunks import TrunkPool
from config.settings import Settings, get_settings
from db.repository import CallLogRepository
from integrations.webhooks import WebhookNotifier
from telephony.base import CallControl

LOGGER = logging.getLogger(__name__)

DIALABLE_NUMBER = re.compile(r"^\+?[0-9*#]{1,32}$")


def endpoint_for(number: str, trunk: str) -> str:
    return f"PJSIP/{number}@{trunk}"


class OriginationOrchestrator:
    """Allocates a trunk, places the call and starts tracking it."""

    def __init__(
        self,
        *,
        trunks: TrunkPool,
        registry: CallSessionRegistry,
        call_control: CallControl,
        dispatcher: ProtocolEventDispatcher,
        notifier: WebhookNotifier,
        call_logs: CallLogRepository,
        clock: Clock,
        settings: Settings | None = None,
    ) -> None:
        self._trunks = trunks
        self._registry = registry
        self._call_control = call_control
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._call_logs = call_logs
        self._clock = clock
        self._settings = settings or get_settings()

    async def originate(self, request: OriginationRequest, principal: Principal) -> OriginationResult:
        """Place ``request`` on the first trunk that accepts it.

        Raises ``InsufficientCredits`` or ``NoTrunksAvailable`` before any
        protocol request is made, and ``OriginationFailed`` with every
        attempted trunk once the failover sequence is exhausted.
        """

        number = (request.number or "").strip()
        if not DIALABLE_NUMBER.match(number):
            raise ValueError(f"Invalid destination number: {request.number!r}")
        if principal.credits <= 0:
            raise InsufficientCredits(
                "Insufficient credits. Please top up your account.",
                credits=principal.credits,
            )

        if request.failover:
            sequence = self._trunks.failover_sequence()
        else:
            trunk = self._trunks.next_round_robin()
            sequence = [trunk] if trunk else []
        if not sequence:
            raise NoTrunksAvailable()

        ring_timeout = request.ring_timeout_seconds or self._settings.default_ring_timeout_seconds
        caller_id = request.caller_id or self._settings.default_caller_id
        context = (
            self._settings.outbound_amd_context if request.use_amd else self._settings.outbound_context
        )
        variables = {
            "WEBHOOK_URL": request.webhook_url or "",
            "USE_AMD": "1" if request.use_amd else "0",
        }

        attempted: list[str] = []
        call_id: str | None = None
        trunk_used: str | None = None
        last_error: ProtocolError | None = None
        for trunk in sequence:
            attempted.append(trunk)
            started = time.monotonic()
            try:
                call_id = await self._call_control.originate(
                    endpoint=endpoint_for(number, trunk),
                    extension=number,
                    context=context,
                    caller_id=caller_id,
                    app=self._settings.asterisk_stasis_app,
                    variables=variables,
                )
            except ProtocolError as exc:
                self._trunks.record_outcome(trunk, False)
                last_error = exc
                LOGGER.warning("Originate via trunk %s failed: %s", trunk, exc)
                continue
            self._trunks.record_outcome(trunk, True, (time.monotonic() - started) * 1000)
            trunk_used = trunk
            break

        total = len(self._trunks)
        if call_id is None or trunk_used is None:
            LOGGER.error("All %d trunk attempts failed for %s", len(attempted), number)
            await self._call_logs.record(
                None,
                status=CallStatus.FAILED.value,
                api_key_id=principal.id,
                number=number,
                caller_id=caller_id,
                webhook_url=request.webhook_url,
                end_reason="all_trunks_failed",
            )
            detail = "All trunk originate attempts failed"
            if last_error is not None:
                detail = f"{detail}: {last_error.detail}"
            raise OriginationFailed(detail, attempted_trunks=attempted, total_trunks=total)

        async with self._registry.locked(call_id) as existing:
            session = self._register(
                existing,
                call_id,
                request,
                principal,
                number=number,
                caller_id=caller_id,
                trunk=trunk_used,
                attempts=len(attempted),
            )
            if session.status is CallStatus.RINGING:
                self._dispatcher.arm_ring_timer(session, ring_timeout)
            LOGGER.info(
                "Call %s ringing via %s after %d attempt(s)", call_id, trunk_used, len(attempted)
            )
            await self._call_logs.record(
                call_id,
                status=session.status.value,
                api_key_id=principal.id,
                number=number,
                caller_id=caller_id,
                trunk=trunk_used,
                webhook_url=request.webhook_url,
            )

        self._notifier.notify(
            session,
            "call.initiated",
            status=CallStatus.RINGING.value,
            number=number,
            useAmd=request.use_amd,
            ringTimeoutSeconds=ring_timeout,
            trunk=trunk_used,
            trunkAttempts=len(attempted),
            totalTrunks=total,
        )
        return OriginationResult(
            call_id=call_id,
            trunk_used=trunk_used,
            attempts=len(attempted),
            total_trunks=total,
            attempted_trunks=attempted,
            ring_timeout_seconds=ring_timeout,
            use_amd=request.use_amd,
            voice=request.voice,
        )

    def _register(
        self,
        existing: CallSession | None,
        call_id: str,
        request: OriginationRequest,
        principal: Principal,
        *,
        number: str,
        caller_id: str,
        trunk: str,
        attempts: int,
    ) -> CallSession:
        fields = {
            "number": number,
            "caller_id": caller_id,
            "trunk": trunk,
            "trunk_attempts": attempts,
            "api_key_id": principal.id,
            "rate_per_second": principal.rate_per_second,
            "webhook_url": request.webhook_url,
            "use_amd": request.use_amd,
            "voice": request.voice,
        }
        if existing is None:
            return self._registry.create(call_id, call_start_time=self._clock.now(), **fields)

        # The call-started event won the race; fold origination details in.
        LOGGER.info("Merging origination details into tracked call %s", call_id)
        for name, value in fields.items():
            setattr(existing, name, value)
        if existing.call_start_time is None:
            existing.call_start_time = self._clock.now()
        return existing
