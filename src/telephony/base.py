"""Request/response surface of the call-control protocol."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping


class CallControl(ABC):
    """Commands the orchestration core issues to the switch.

    Implementations raise ``calls.errors.ProtocolError`` for every failed
    request so callers only ever handle one error type from this layer.
    """

    @abstractmethod
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
        """Place an outbound call and return the new channel id."""

    @abstractmethod
    async def create_bridge(self, bridge_id: str) -> str:
        """Create a mixing bridge and return its id."""

    @abstractmethod
    async def add_channel_to_bridge(self, bridge_id: str, channel_id: str) -> None:
        ...

    @abstractmethod
    async def record_bridge(
        self,
        bridge_id: str,
        *,
        name: str,
        format: str,
        max_duration_seconds: int,
        max_silence_seconds: int,
    ) -> str:
        """Start recording a bridge and return the live recording name."""

    @abstractmethod
    async def destroy_bridge(self, bridge_id: str) -> None:
        ...

    @abstractmethod
    async def answer(self, channel_id: str) -> None:
        ...

    @abstractmethod
    async def hangup(self, channel_id: str) -> None:
        ...

    @abstractmethod
    async def get_variable(self, channel_id: str, name: str) -> str | None:
        """Read a channel variable; ``None`` when it is unset."""

    @abstractmethod
    async def send_dtmf(self, channel_id: str, digits: str) -> None:
        ...

    @abstractmethod
    async def play(self, target_id: str, media: str, *, playback_id: str, on_bridge: bool = False) -> str:
        """Start playback of ``media`` on a channel or bridge and return the playback id."""

    @abstractmethod
    async def stop_recording(self, recording_name: str) -> None:
        ...

    async def close(self) -> None:
        """Release transport resources."""
