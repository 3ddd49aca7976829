"""Typed failures raised by the call orchestration core.

Every error carries a machine-readable ``kind`` so callers can branch on the
failure without string matching, plus the fields needed to report it. These
exceptions are safe to import from API layers without pulling in the engine.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NO_TRUNKS_AVAILABLE = "no_trunks_available"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    ORIGINATION_FAILED = "origination_failed"
    DUPLICATE_SESSION = "duplicate_session"
    BILLING_FAILED = "billing_failed"
    PROTOCOL_ERROR = "protocol_error"
    CALL_NOT_FOUND = "call_not_found"
    SPEECH_SYNTHESIS_FAILED = "speech_synthesis_failed"


class CallControlError(Exception):
    kind: ErrorKind
    status_code: int = 500
    default_detail: str = "Call control error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail

    def fields(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.detail, "code": self.kind.value}
        payload.update(self.fields())
        return payload


class NoTrunksAvailable(CallControlError):
    kind = ErrorKind.NO_TRUNKS_AVAILABLE
    status_code = 503
    default_detail = "No trunks assigned. Please assign at least one trunk."


class InsufficientCredits(CallControlError):
    kind = ErrorKind.INSUFFICIENT_CREDITS
    status_code = 402
    default_detail = "Insufficient credits"

    def __init__(
        self,
        detail: str | None = None,
        *,
        credits: Decimal | None = None,
        required: Decimal | None = None,
    ) -> None:
        super().__init__(detail)
        self.credits = credits
        self.required = required

    def fields(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.credits is not None:
            out["credits"] = str(self.credits)
        if self.required is not None:
            out["required"] = str(self.required)
        return out


class OriginationFailed(CallControlError):
    kind = ErrorKind.ORIGINATION_FAILED
    status_code = 502
    default_detail = "All trunk originate attempts failed"

    def __init__(
        self,
        detail: str | None = None,
        *,
        attempted_trunks: list[str] | None = None,
        total_trunks: int = 0,
    ) -> None:
        super().__init__(detail)
        self.attempted_trunks = list(attempted_trunks or [])
        self.total_trunks = total_trunks

    def fields(self) -> dict[str, Any]:
        return {"attempted_trunks": self.attempted_trunks, "total_trunks": self.total_trunks}


class DuplicateSession(CallControlError):
    kind = ErrorKind.DUPLICATE_SESSION
    status_code = 409
    default_detail = "Call session already tracked"

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Call session already tracked: {call_id}")
        self.call_id = call_id

    def fields(self) -> dict[str, Any]:
        return {"call_id": self.call_id}


class BillingFailed(CallControlError):
    kind = ErrorKind.BILLING_FAILED
    status_code = 500
    default_detail = "Billing failed"

    def __init__(self, detail: str | None = None, *, call_id: str | None = None) -> None:
        super().__init__(detail)
        self.call_id = call_id

    def fields(self) -> dict[str, Any]:
        return {"call_id": self.call_id} if self.call_id else {}


class ProtocolError(CallControlError):
    kind = ErrorKind.PROTOCOL_ERROR
    status_code = 502
    default_detail = "Call-control request failed"


class CallNotFound(CallControlError):
    kind = ErrorKind.CALL_NOT_FOUND
    status_code = 404
    default_detail = "Call not found"

    def __init__(self, call_id: str, detail: str | None = None) -> None:
        super().__init__(detail)
        self.call_id = call_id

    def fields(self) -> dict[str, Any]:
        return {"call_id": self.call_id}


class SpeechSynthesisFailed(CallControlError):
    kind = ErrorKind.SPEECH_SYNTHESIS_FAILED
    status_code = 502
    default_detail = "TTS playback failed"
