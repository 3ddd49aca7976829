"""API-facing Pydantic models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

PlayTo = Literal["bridge", "channel"]


class OriginateCallRequest(BaseModel):
    number: str = Field(min_length=1, max_length=32, description="Destination number.")
    caller_id: str | None = Field(default=None, max_length=64)
    webhook_url: str | None = Field(default=None, description="Callback URL for call events.")
    use_amd: bool = False
    ring_timeout_seconds: int | None = Field(default=None, ge=1, le=600)
    voice: str | None = Field(default=None, description="TTS voice name, e.g. en-US-Neural2-A.")
    failover: bool = Field(
        default=True,
        description="Try every trunk in turn; when false a single round-robin trunk is used.",
    )


class OriginateCallResponse(BaseModel):
    call_id: str
    status: str
    trunk_used: str
    attempts: int
    total_trunks: int
    attempted_trunks: list[str]
    ring_timeout_seconds: int
    use_amd: bool
    voice: str | None = None


class VoiceRequest(BaseModel):
    text: str = Field(min_length=1, max_length=5000)
    play_to: PlayTo = "bridge"


class PlayRequest(BaseModel):
    file: str = Field(min_length=1, max_length=255)
    play_to: PlayTo = "bridge"


class PlaybackResponse(BaseModel):
    call_id: str
    playback_id: str
    media: str
    method: str


class GatherRequest(BaseModel):
    text: str = Field(min_length=1, max_length=5000)
    num_digits: int = Field(default=1, ge=1, le=64)
    timeout_ms: int | None = Field(default=None, ge=1, le=600_000)
    play_to: PlayTo = "bridge"


class GatherResponse(BaseModel):
    call_id: str
    expected_digits: int
    timeout_ms: int


class DtmfRequest(BaseModel):
    digits: str = Field(min_length=1, max_length=64)


class CallActionResponse(BaseModel):
    call_id: str
    status: str = "ok"


class RecordingResponse(BaseModel):
    call_id: str
    active: bool
    filename: str | None = None
    recording_id: str | None = None


class CallStatusResponse(BaseModel):
    call_id: str
    status: str
    number: str | None = None
    caller_id: str | None = None
    trunk: str | None = None
    answered_at: str | None = None
    call_start_time: str | None = None
    amd: dict[str, Any]
    gather: dict[str, Any] | None = None
    recording: dict[str, Any]
    voice: str | None = None
    has_bridge: bool


class CallListResponse(BaseModel):
    total_calls: int
    calls: list[CallStatusResponse]


class TrunkStatsResponse(BaseModel):
    trunks: list[str]
    stats: dict[str, dict[str, Any]]
    round_robin_index: int


class HealthResponse(BaseModel):
    status: str = "healthy"
    active_calls: int
    trunks: int
    ari_events_enabled: bool
