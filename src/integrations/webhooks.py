"""Best-effort delivery of call-lifecycle webhooks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from calls.models import CallSession
from calls.tasks import TaskRegistry
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


class WebhookNotifier:
    """POSTs a JSON envelope to a call's webhook URL without blocking the caller.

    Deliveries run as tracked background tasks. A failed delivery is logged
    and dropped; it is never retried and never raised to the code that fired
    the event.
    """

    def __init__(
        self,
        tasks: TaskRegistry | None = None,
        *,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._tasks = tasks or TaskRegistry()
        self._timeout = timeout if timeout is not None else settings.webhook_timeout_seconds
        self._user_agent = user_agent or settings.webhook_user_agent
        self._transport = transport

    @staticmethod
    def build_envelope(call_id: str, event: str, fields: dict[str, Any]) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            "callId": call_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
        }
        envelope.update(fields)
        return envelope

    def notify(self, session: CallSession, event: str, **fields: Any) -> None:
        """Schedule delivery of ``event`` for ``session``. No-op without a webhook URL."""

        url = session.webhook_url
        if not url:
            return
        envelope = self.build_envelope(session.id, event, fields)
        self._tasks.register(f"webhook-{event}-{session.id}", self.deliver(url, envelope))

    async def deliver(self, url: str, envelope: dict[str, Any]) -> bool:
        headers = {"Content-Type": "application/json", "User-Agent": self._user_agent}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=envelope, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error(
                "Webhook %s for call %s failed: %s",
                envelope.get("event"),
                envelope.get("callId"),
                exc,
            )
            return False
        LOGGER.debug("Webhook %s delivered to %s", envelope.get("event"), url)
        return True

    async def flush(self) -> None:
        """Wait for every scheduled delivery to finish."""

        await self._tasks.drain()
