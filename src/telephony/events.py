"""Typed call-control events and their translation from ARI JSON."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CallStarted:
    call_id: str
    caller_number: str | None = None
    state: str | None = None


@dataclass(frozen=True, slots=True)
class CallEnded:
    call_id: str
    hangup_cause: str | None = None


@dataclass(frozen=True, slots=True)
class StateChanged:
    call_id: str
    state: str

    @property
    def is_connected(self) -> bool:
        return self.state == "Up"


@dataclass(frozen=True, slots=True)
class DtmfReceived:
    call_id: str
    digit: str


ProtocolEvent = Union[CallStarted, CallEnded, StateChanged, DtmfReceived]


def parse_ari_event(payload: dict[str, Any]) -> ProtocolEvent | None:
    """Map one ARI websocket message to a typed event.

    Returns ``None`` for event types the core does not consume and for
    messages without a channel id.
    """

    event_type = str(payload.get("type") or "")
    channel = payload.get("channel") or {}
    channel_id = str(channel.get("id") or "")
    if not channel_id:
        return None

    if event_type == "StasisStart":
        caller = channel.get("caller") or {}
        return CallStarted(
            call_id=channel_id,
            caller_number=caller.get("number") or None,
            state=channel.get("state"),
        )
    if event_type == "StasisEnd":
        return CallEnded(call_id=channel_id)
    if event_type == "ChannelDestroyed":
        cause = payload.get("cause")
        return CallEnded(call_id=channel_id, hangup_cause=str(cause) if cause is not None else None)
    if event_type == "ChannelStateChange":
        return StateChanged(call_id=channel_id, state=str(channel.get("state") or ""))
    if event_type == "ChannelDtmfReceived":
        digit = str(payload.get("digit") or "")
        if not digit:
            return None
        return DtmfReceived(call_id=channel_id, digit=digit)

    LOGGER.debug("Ignoring ARI event %s for channel %s", event_type, channel_id)
    return None
