"""In-memory call state and the value objects exchanged by the core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from calls.clock import TimerHandle


class CallStatus(str, Enum):
    RINGING = "ringing"
    ANSWERED = "answered"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no-answer"

    @property
    def is_terminal(self) -> bool:
        return self in {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.NO_ANSWER}


AMD_UNKNOWN = "UNKNOWN"
AMD_NONE = "NOAMD"
AMD_CONFIDENCE = {"MACHINE": 0.85, "HUMAN": 0.9}


@dataclass
class AmdResult:
    """Answering-machine detection outcome for one call."""

    status: str = AMD_UNKNOWN
    cause: str | None = None
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "cause": self.cause, "confidence": self.confidence}


@dataclass
class RecordingState:
    active: bool = False
    filename: str | None = None
    recording_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "filename": self.filename,
            "recordingId": self.recording_id,
        }


@dataclass(eq=False)
class GatherState:
    """Digits collected so far by an active gather.

    Compared by identity so a timer can tell whether the gather it was armed
    for is still the one installed on the session.
    """

    num_digits: int
    timeout_ms: int
    started_at: datetime
    digits: str = ""
    timer: TimerHandle | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.num_digits - len(self.digits))

    def time_remaining_ms(self, now: datetime) -> int:
        elapsed_ms = int((now - self.started_at).total_seconds() * 1000)
        return max(0, self.timeout_ms - elapsed_ms)


@dataclass
class CallSession:
    """One tracked call and its billing, recording and gather state."""

    id: str
    status: CallStatus = CallStatus.RINGING
    number: str | None = None
    caller_id: str | None = None
    trunk: str | None = None
    trunk_attempts: int = 0
    api_key_id: int | None = None
    rate_per_second: Decimal = Decimal("0")
    call_start_time: datetime | None = None
    answered_at: datetime | None = None
    credit_deducted: bool = False
    amd: AmdResult = field(default_factory=AmdResult)
    recording: RecordingState = field(default_factory=RecordingState)
    gather: GatherState | None = None
    webhook_url: str | None = None
    use_amd: bool = False
    voice: str | None = None
    bridge_id: str | None = None
    ring_timer: TimerHandle | None = None

    def to_status(self, now: datetime) -> dict[str, Any]:
        gather = None
        if self.gather is not None:
            gather = {
                "collected": self.gather.digits,
                "expected": self.gather.num_digits,
                "remaining": self.gather.remaining,
                "time_remaining_ms": self.gather.time_remaining_ms(now),
            }
        return {
            "call_id": self.id,
            "status": self.status.value,
            "number": self.number,
            "caller_id": self.caller_id,
            "trunk": self.trunk,
            "answered_at": self.answered_at.isoformat() if self.answered_at else None,
            "call_start_time": self.call_start_time.isoformat() if self.call_start_time else None,
            "amd": self.amd.to_dict(),
            "gather": gather,
            "recording": self.recording.to_dict(),
            "voice": self.voice,
            "has_bridge": self.bridge_id is not None,
        }


@dataclass(frozen=True)
class Principal:
    """Billing principal resolved from an API key."""

    id: int
    credits: Decimal
    rate_per_second: Decimal = Decimal("0")
    name: str | None = None


@dataclass(frozen=True)
class BillingResult:
    billable_seconds: int
    rate_per_second: Decimal
    cost: Decimal
    balance_after: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "billableSeconds": self.billable_seconds,
            "ratePerSecond": str(self.rate_per_second),
            "cost": str(self.cost),
            "balanceAfter": None if self.balance_after is None else str(self.balance_after),
        }


@dataclass(frozen=True)
class BillingTransaction:
    """Immutable ledger entry produced once per billed call."""

    api_key_id: int
    call_id: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str


@dataclass(frozen=True)
class OriginationRequest:
    number: str
    caller_id: str | None = None
    webhook_url: str | None = None
    use_amd: bool = False
    ring_timeout_seconds: int | None = None
    voice: str | None = None
    failover: bool = True


@dataclass(frozen=True)
class OriginationResult:
    call_id: str
    trunk_used: str
    attempts: int
    total_trunks: int
    attempted_trunks: list[str]
    ring_timeout_seconds: int
    use_amd: bool
    voice: str | None
    status: CallStatus = CallStatus.RINGING


@dataclass(frozen=True)
class PlaybackResult:
    playback_id: str
    media: str
    method: str
