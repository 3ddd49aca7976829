"""Asterisk REST Interface client."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from calls.errors import ProtocolError
from config.settings import Settings, get_settings
from telephony.base import CallControl

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AriAuth:
    username: str
    password: str


def ari_auth(settings: Settings) -> AriAuth:
    if not settings.asterisk_ari_username or not settings.asterisk_ari_password:
        raise RuntimeError("ASTERISK_ARI_USERNAME/PASSWORD not configured")
    return AriAuth(settings.asterisk_ari_username, settings.asterisk_ari_password)


class AriClient(CallControl):
    """``CallControl`` over the ARI HTTP API.

    Every transport failure and non-2xx response is raised as
    ``ProtocolError`` carrying the ARI method and path.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._auth = ari_auth(settings)
        self._app = settings.asterisk_stasis_app
        self._client = httpx.AsyncClient(
            base_url=settings.asterisk_ari_url.rstrip("/"),
            auth=(self._auth.username, self._auth.password),
            timeout=settings.ari_request_timeout_seconds,
            transport=transport,
        )

    @property
    def app(self) -> str:
        return self._app

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            resp = await self._client.request(method, path, params=params, json=json)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.warning(
                "ARI %s %s failed with %s: %s",
                method,
                path,
                exc.response.status_code,
                exc.response.text,
            )
            raise ProtocolError(
                f"ARI {method} {path} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            LOGGER.warning("ARI %s %s failed: %s", method, path, exc)
            raise ProtocolError(f"ARI {method} {path} failed: {exc}") from exc

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ProtocolError(f"ARI {method} {path} returned invalid JSON") from exc

    async def originate(
        self,
        *,
        endpoint: str,
        context: str,
        caller_id: str,
        app: str,
        extension: str = "s",
        variables: Mapping[str, str] | None = None,
    ) -> str:
        params = {
            "endpoint": endpoint,
            "extension": extension,
            "context": context,
            "callerId": caller_id,
            "app": app,
        }
        data = await self._request(
            "POST",
            "/channels",
            params=params,
            json={"variables": dict(variables or {})},
        )
        if not data or not data.get("id"):
            raise ProtocolError("ARI originate returned no channel id")
        return str(data["id"])

    async def create_bridge(self, bridge_id: str) -> str:
        data = await self._request(
            "POST", "/bridges", params={"type": "mixing", "bridgeId": bridge_id}
        )
        return str((data or {}).get("id") or bridge_id)

    async def add_channel_to_bridge(self, bridge_id: str, channel_id: str) -> None:
        await self._request("POST", f"/bridges/{bridge_id}/addChannel", params={"channel": channel_id})

    async def record_bridge(
        self,
        bridge_id: str,
        *,
        name: str,
        format: str,
        max_duration_seconds: int,
        max_silence_seconds: int,
    ) -> str:
        params = {
            "name": name,
            "format": format,
            "ifExists": "overwrite",
            "maxDurationSeconds": max_duration_seconds,
            "maxSilenceSeconds": max_silence_seconds,
        }
        data = await self._request("POST", f"/bridges/{bridge_id}/record", params=params)
        return str((data or {}).get("name") or name)

    async def destroy_bridge(self, bridge_id: str) -> None:
        await self._request("DELETE", f"/bridges/{bridge_id}")

    async def answer(self, channel_id: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/answer")

    async def hangup(self, channel_id: str) -> None:
        await self._request("DELETE", f"/channels/{channel_id}")

    async def get_variable(self, channel_id: str, name: str) -> str | None:
        data = await self._request(
            "GET", f"/channels/{channel_id}/variable", params={"variable": name}
        )
        value = (data or {}).get("value")
        return str(value) if value not in (None, "") else None

    async def send_dtmf(self, channel_id: str, digits: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/dtmf", params={"dtmf": digits})

    async def play(self, target_id: str, media: str, *, playback_id: str, on_bridge: bool = False) -> str:
        resource = "bridges" if on_bridge else "channels"
        data = await self._request(
            "POST",
            f"/{resource}/{target_id}/play",
            params={"media": media, "playbackId": playback_id},
        )
        return str((data or {}).get("id") or playback_id)

    async def stop_recording(self, recording_name: str) -> None:
        await self._request("POST", f"/recordings/live/{recording_name}/stop")
