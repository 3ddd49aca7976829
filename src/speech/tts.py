"""Text-to-speech rendering into media the switch can play."""

from __future__ import annotations

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from calls.errors import SpeechSynthesisFailed
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

GOOGLE_TTS_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"
TELEPHONY_SAMPLE_RATE = 8000


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers."""

    @abstractmethod
    async def synthesize(self, text: str, voice: str) -> bytes:
        """Synthesize ``text`` with ``voice`` and return WAV bytes."""


class GoogleCloudSynthesizer(BaseSynthesizer):
    """Google Cloud Text-to-Speech REST API, 8 kHz mono LINEAR16."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_key = api_key or get_settings().google_tts_api_key
        if not api_key:
            raise ValueError("GOOGLE_TTS_API_KEY must be configured.")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @staticmethod
    def language_code(voice: str) -> str:
        return "-".join(voice.split("-")[:2])

    async def synthesize(self, text: str, voice: str) -> bytes:
        body = {
            "input": {"text": text},
            "voice": {"languageCode": self.language_code(voice), "name": voice},
            "audioConfig": {
                "audioEncoding": "LINEAR16",
                "sampleRateHertz": TELEPHONY_SAMPLE_RATE,
            },
        }
        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "X-Goog-Api-Key": self._api_key,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(GOOGLE_TTS_URL, json=body, headers=headers)
        response.raise_for_status()

        audio = response.json().get("audioContent")
        if not audio:
            raise RuntimeError("No audioContent returned from Google TTS")
        return base64.b64decode(audio)


class SpeechRenderer:
    """Writes synthesized prompts into the switch's sounds directory.

    ``render`` returns a ``sound:`` media reference for the written file.
    """

    def __init__(
        self,
        synthesizer: BaseSynthesizer,
        *,
        sounds_dir: Path,
        default_voice: str,
    ) -> None:
        self._synthesizer = synthesizer
        self._sounds_dir = sounds_dir
        self._default_voice = default_voice

    async def render(
        self,
        call_id: str,
        text: str,
        voice: str | None = None,
        suffix: str = "",
    ) -> str:
        if not text or not text.strip():
            raise SpeechSynthesisFailed("TTS text is empty")

        voice_name = voice or self._default_voice
        try:
            audio = await self._synthesizer.synthesize(text, voice_name)
        except (httpx.HTTPError, RuntimeError, ValueError, binascii.Error) as exc:
            LOGGER.error("TTS failed for call %s: %s", call_id, exc)
            raise SpeechSynthesisFailed(f"TTS failed: {exc}") from exc

        stem = f"{call_id}{suffix}"
        target = self._sounds_dir / f"{stem}.wav"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(audio)
        except OSError as exc:
            LOGGER.error("Could not write TTS audio to %s: %s", target, exc)
            raise SpeechSynthesisFailed(f"TTS failed: {exc}") from exc

        LOGGER.debug("Rendered %d bytes of speech to %s", len(audio), target)
        return f"sound:{stem}"


def build_synthesizer(settings: Settings | None = None) -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    settings = settings or get_settings()
    if settings.tts_provider == "google":
        return GoogleCloudSynthesizer(settings.google_tts_api_key)
    raise ValueError(f"Unsupported TTS provider: {settings.tts_provider}")


def build_renderer(settings: Settings | None = None) -> SpeechRenderer:
    settings = settings or get_settings()
    return SpeechRenderer(
        build_synthesizer(settings),
        sounds_dir=settings.sounds_dir,
        default_voice=settings.default_voice,
    )
