"""Reconnecting ARI websocket event stream."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from urllib.parse import urlencode

import websockets

from config.settings import Settings, get_settings
from telephony.ari_client import ari_auth
from telephony.events import ProtocolEvent, parse_ari_event

LOGGER = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0


def events_ws_url(base_url: str, app: str, username: str, password: str) -> str:
    # ARI events WS endpoint: /ari/events?app=<app>&api_key=<user>:<pass>
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        scheme = "wss://"
        rest = base.removeprefix("https://")
    elif base.startswith("http://"):
        scheme = "ws://"
        rest = base.removeprefix("http://")
    else:
        scheme = "ws://"
        rest = base

    query = urlencode({"app": app, "api_key": f"{username}:{password}"})
    return f"{scheme}{rest}/events?{query}"


class AriEventStream:
    """Async iterator of typed protocol events from the Stasis application.

    The websocket is reopened after any disconnect; events missed while the
    connection is down are not replayed.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        settings = settings or get_settings()
        auth = ari_auth(settings)
        self._url = events_ws_url(
            settings.asterisk_ari_url,
            settings.asterisk_stasis_app,
            auth.username,
            auth.password,
        )
        self._app = settings.asterisk_stasis_app
        self._reconnect_delay = reconnect_delay

    def __aiter__(self) -> AsyncIterator[ProtocolEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[ProtocolEvent]:
        LOGGER.info("Connecting to ARI events for app %s", self._app)
        while True:
            try:
                async with websockets.connect(self._url, ping_interval=20, ping_timeout=20) as ws:
                    LOGGER.info("Connected to ARI events")
                    async for message in ws:
                        event = decode_message(message)
                        if event is not None:
                            yield event
                LOGGER.warning("ARI websocket closed; reconnecting")
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("ARI websocket failed; retrying")
            await asyncio.sleep(self._reconnect_delay)


def decode_message(message: str | bytes) -> ProtocolEvent | None:
    try:
        payload = json.loads(message)
    except json.JSONDecodeError:
        LOGGER.debug("Discarding non-JSON ARI message")
        return None
    if not isinstance(payload, dict):
        return None
    return parse_ari_event(payload)
