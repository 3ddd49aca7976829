"""FastAPI routes for originating and controlling calls."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_engine, get_principal
from api.schemas import (
    CallActionResponse,
    CallListResponse,
    CallStatusResponse,
    DtmfRequest,
    GatherRequest,
    GatherResponse,
    HealthResponse,
    OriginateCallRequest,
    OriginateCallResponse,
    PlaybackResponse,
    PlayRequest,
    RecordingResponse,
    TrunkStatsResponse,
    VoiceRequest,
)
from calls.engine import CallEngine
from calls.models import OriginationRequest, Principal

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(engine: CallEngine = Depends(get_engine)) -> HealthResponse:
    return HealthResponse(
        active_calls=len(engine.registry),
        trunks=len(engine.trunks),
        ari_events_enabled=engine.settings.ari_events_enabled,
    )


@router.post("/calls", response_model=OriginateCallResponse)
async def originate_call(
    body: OriginateCallRequest,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> OriginateCallResponse:
    result = await engine.origination.originate(
        OriginationRequest(
            number=body.number,
            caller_id=body.caller_id,
            webhook_url=body.webhook_url,
            use_amd=body.use_amd,
            ring_timeout_seconds=body.ring_timeout_seconds,
            voice=body.voice,
            failover=body.failover,
        ),
        principal,
    )
    return OriginateCallResponse(
        call_id=result.call_id,
        status=result.status.value,
        trunk_used=result.trunk_used,
        attempts=result.attempts,
        total_trunks=result.total_trunks,
        attempted_trunks=result.attempted_trunks,
        ring_timeout_seconds=result.ring_timeout_seconds,
        use_amd=result.use_amd,
        voice=result.voice,
    )


@router.get("/calls", response_model=CallListResponse)
async def list_calls(
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> CallListResponse:
    calls = [CallStatusResponse(**status) for status in engine.controller.list_calls(principal)]
    return CallListResponse(total_calls=len(calls), calls=calls)


@router.get("/calls/{call_id}", response_model=CallStatusResponse)
async def get_call(
    call_id: str,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> CallStatusResponse:
    return CallStatusResponse(**engine.controller.get_call(call_id, principal))


@router.post("/calls/{call_id}/hangup", response_model=CallActionResponse)
async def hangup_call(
    call_id: str,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> CallActionResponse:
    await engine.controller.hangup(call_id, principal)
    return CallActionResponse(call_id=call_id, status="terminating")


@router.post("/calls/{call_id}/voice", response_model=PlaybackResponse)
async def play_voice(
    call_id: str,
    body: VoiceRequest,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> PlaybackResponse:
    result = await engine.controller.play_text(call_id, principal, body.text, body.play_to)
    return PlaybackResponse(
        call_id=call_id,
        playback_id=result.playback_id,
        media=result.media,
        method=result.method,
    )


@router.post("/calls/{call_id}/play", response_model=PlaybackResponse)
async def play_file(
    call_id: str,
    body: PlayRequest,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> PlaybackResponse:
    result = await engine.controller.play_file(call_id, principal, body.file, body.play_to)
    return PlaybackResponse(
        call_id=call_id,
        playback_id=result.playback_id,
        media=result.media,
        method=result.method,
    )


@router.post("/calls/{call_id}/gather", response_model=GatherResponse)
async def gather_digits(
    call_id: str,
    body: GatherRequest,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> GatherResponse:
    result = await engine.controller.start_gather(
        call_id,
        principal,
        body.text,
        num_digits=body.num_digits,
        timeout_ms=body.timeout_ms,
        play_to=body.play_to,
    )
    return GatherResponse(**result)


@router.post("/calls/{call_id}/dtmf", response_model=CallActionResponse)
async def send_dtmf(
    call_id: str,
    body: DtmfRequest,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> CallActionResponse:
    await engine.controller.send_digits(call_id, principal, body.digits)
    return CallActionResponse(call_id=call_id)


@router.post("/calls/{call_id}/recording/stop", response_model=RecordingResponse)
async def stop_recording(
    call_id: str,
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> RecordingResponse:
    recording = await engine.controller.stop_recording(call_id, principal)
    return RecordingResponse(
        call_id=call_id,
        active=recording.active,
        filename=recording.filename,
        recording_id=recording.recording_id,
    )


@router.get("/trunks/stats", response_model=TrunkStatsResponse)
async def trunk_stats(
    principal: Principal = Depends(get_principal),
    engine: CallEngine = Depends(get_engine),
) -> TrunkStatsResponse:
    return TrunkStatsResponse(**engine.trunks.snapshot())
