"""Operations on tracked calls exposed to the HTTP layer."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from calls.clock import Clock
from calls.errors import CallNotFound, SpeechSynthesisFailed
from calls.gather import PROMPT_PREVIEW_CHARS, GatherStateMachine
from calls.models import CallSession, PlaybackResult, Principal, RecordingState
from calls.registry import CallSessionRegistry
from config.settings import Settings, get_settings
from integrations.webhooks import WebhookNotifier
from telephony.base import CallControl

LOGGER = logging.getLogger(__name__)

PLAY_TO_BRIDGE = "bridge"
PLAY_TO_CHANNEL = "channel"


class Renderer(Protocol):
    async def render(self, call_id: str, text: str, voice: str | None = None, suffix: str = "") -> str:
        ...


def _validate_sound_file(file: str) -> str:
    name = (file or "").strip()
    if not name or ".." in name or name.startswith("/"):
        raise ValueError(f"Invalid sound file: {file!r}")
    return name


class CallController:
    """Hangup, playback, gather, status and recording control for one principal's calls.

    A call that does not exist or belongs to another principal is reported as
    ``CallNotFound`` so callers cannot probe for foreign call ids.
    """

    def __init__(
        self,
        *,
        registry: CallSessionRegistry,
        call_control: CallControl,
        gather: GatherStateMachine,
        notifier: WebhookNotifier,
        clock: Clock,
        renderer: Renderer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._call_control = call_control
        self._gather = gather
        self._notifier = notifier
        self._clock = clock
        self._renderer = renderer
        self._settings = settings or get_settings()

    def _owned(self, session: CallSession | None, call_id: str, principal: Principal) -> CallSession:
        if session is None or session.api_key_id != principal.id:
            raise CallNotFound(call_id)
        return session

    def _stamp(self) -> int:
        return int(self._clock.now().timestamp() * 1000)

    async def _render(self, session: CallSession, text: str, suffix: str = "") -> str:
        if self._renderer is None:
            raise SpeechSynthesisFailed("Text-to-speech is not configured")
        return await self._renderer.render(session.id, text, session.voice, suffix)

    async def _play(self, session: CallSession, media: str, playback_id: str, play_to: str) -> str:
        if play_to == PLAY_TO_BRIDGE and session.bridge_id:
            return await self._call_control.play(
                session.bridge_id, media, playback_id=playback_id, on_bridge=True
            )
        return await self._call_control.play(session.id, media, playback_id=playback_id)

    async def hangup(self, call_id: str, principal: Principal) -> None:
        async with self._registry.locked(call_id) as session:
            self._owned(session, call_id, principal)
            await self._call_control.hangup(call_id)
        LOGGER.info("Hangup requested for call %s", call_id)

    async def play_text(
        self,
        call_id: str,
        principal: Principal,
        text: str,
        play_to: str = PLAY_TO_BRIDGE,
    ) -> PlaybackResult:
        if not text or not text.strip():
            raise ValueError("Text is required")

        # Synthesis can take seconds; keep it outside the call lock.
        media = await self._render(self._owned(self._registry.get(call_id), call_id, principal), text)

        async with self._registry.locked(call_id) as session:
            session = self._owned(session, call_id, principal)
            playback_id = await self._play(session, media, f"tts-{call_id}-{self._stamp()}", play_to)
            self._notifier.notify(
                session,
                "tts.played",
                text=text[:PROMPT_PREVIEW_CHARS],
                method=play_to,
                playbackId=playback_id,
            )
        return PlaybackResult(playback_id=playback_id, media=media, method=play_to)

    async def play_file(
        self,
        call_id: str,
        principal: Principal,
        file: str,
        play_to: str = PLAY_TO_BRIDGE,
    ) -> PlaybackResult:
        media = f"sound:{_validate_sound_file(file)}"
        async with self._registry.locked(call_id) as session:
            session = self._owned(session, call_id, principal)
            playback_id = await self._play(session, media, f"play-{call_id}-{self._stamp()}", play_to)
        return PlaybackResult(playback_id=playback_id, media=media, method=play_to)

    async def start_gather(
        self,
        call_id: str,
        principal: Principal,
        text: str,
        num_digits: int = 1,
        timeout_ms: int | None = None,
        play_to: str = PLAY_TO_BRIDGE,
    ) -> dict[str, Any]:
        timeout_ms = timeout_ms or self._settings.gather_default_timeout_ms
        if num_digits < 1:
            raise ValueError("num_digits must be at least 1")

        media = await self._render(
            self._owned(self._registry.get(call_id), call_id, principal), text, "-gather"
        )

        async with self._registry.locked(call_id) as session:
            session = self._owned(session, call_id, principal)
            state = self._gather.start(session, num_digits, timeout_ms, prompt=text)
            try:
                await self._play(session, media, f"gather-{call_id}-{self._stamp()}", play_to)
            except Exception:
                if session.gather is state:
                    self._gather.cancel(session)
                raise
        return {"call_id": call_id, "expected_digits": num_digits, "timeout_ms": timeout_ms}

    def get_call(self, call_id: str, principal: Principal) -> dict[str, Any]:
        session = self._owned(self._registry.get(call_id), call_id, principal)
        return session.to_status(self._clock.now())

    def list_calls(self, principal: Principal) -> list[dict[str, Any]]:
        now = self._clock.now()
        return [session.to_status(now) for session in self._registry.list(principal.id)]

    async def stop_recording(self, call_id: str, principal: Principal) -> RecordingState:
        async with self._registry.locked(call_id) as session:
            session = self._owned(session, call_id, principal)
            recording = session.recording
            if not recording.active or not recording.recording_id:
                raise CallNotFound(call_id, "No active recording found")
            await self._call_control.stop_recording(recording.recording_id)
            recording.active = False
            self._notifier.notify(
                session,
                "recording.stopped",
                filename=recording.filename,
                recordingId=recording.recording_id,
            )
            return RecordingState(
                active=recording.active,
                filename=recording.filename,
                recording_id=recording.recording_id,
            )

    async def send_digits(self, call_id: str, principal: Principal, digits: str) -> None:
        if not digits or any(ch not in "0123456789*#ABCDabcd" for ch in digits):
            raise ValueError(f"Invalid DTMF digits: {digits!r}")
        async with self._registry.locked(call_id) as session:
            self._owned(session, call_id, principal)
            await self._call_control.send_dtmf(call_id, digits)
