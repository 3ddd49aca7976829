"""Assembles the orchestration core from its collaborators."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from calls.billing import BillingEngine
from calls.clock import Clock, LoopClock
from calls.control import CallController, Renderer
from calls.dispatcher import ProtocolEventDispatcher
from calls.gather import GatherStateMachine
from calls.origination import OriginationOrchestrator
from calls.registry import CallSessionRegistry
from calls.tasks import TaskRegistry
from calls.trunks import TrunkPool
from config.settings import Settings, get_settings
from db.repository import CallLogRepository, TrunkRepository
from integrations.webhooks import WebhookNotifier
from telephony.base import CallControl
from telephony.events import ProtocolEvent

LOGGER = logging.getLogger(__name__)


@dataclass
class CallEngine:
    settings: Settings
    tasks: TaskRegistry
    clock: Clock
    call_control: CallControl
    trunks: TrunkPool
    registry: CallSessionRegistry
    billing: BillingEngine
    notifier: WebhookNotifier
    gather: GatherStateMachine
    dispatcher: ProtocolEventDispatcher
    origination: OriginationOrchestrator
    controller: CallController
    call_logs: CallLogRepository
    session_factory: async_sessionmaker | None = None

    async def load_trunks(self, repository: TrunkRepository | None = None) -> list[str]:
        """Add the active rows of ``sip_trunks`` to the trunks already in the pool."""

        names = list(self.trunks.trunks)
        repository = repository or TrunkRepository(self.session_factory)
        for name in await repository.list_active_names():
            if name not in names:
                names.append(name)
        self.trunks.replace(names)
        return names

    async def run_events(self, source: AsyncIterable[ProtocolEvent]) -> None:
        await self.dispatcher.run(source)

    async def shutdown(self, timeout: float = 5.0) -> None:
        for session in self.registry.list():
            if session.ring_timer is not None:
                session.ring_timer.cancel()
            if session.gather is not None and session.gather.timer is not None:
                session.gather.timer.cancel()
        await self.tasks.shutdown(timeout)
        await self.call_control.close()


def _default_call_control(settings: Settings) -> CallControl:
    from telephony.ari_client import AriClient

    return AriClient(settings)


def _default_renderer(settings: Settings) -> Renderer | None:
    from speech.tts import build_renderer

    try:
        return build_renderer(settings)
    except ValueError as exc:
        LOGGER.warning("Text-to-speech disabled: %s", exc)
        return None


def build_engine(
    call_control: CallControl | None = None,
    *,
    clock: Clock | None = None,
    notifier: WebhookNotifier | None = None,
    session_factory: async_sessionmaker | None = None,
    renderer: Renderer | None = None,
    trunks: Iterable[str] | None = None,
    settings: Settings | None = None,
    tasks: TaskRegistry | None = None,
) -> CallEngine:
    """Wire every core component; any collaborator may be swapped for a fake."""

    settings = settings or get_settings()
    tasks = tasks or TaskRegistry()
    clock = clock or LoopClock(tasks)
    call_control = call_control or _default_call_control(settings)
    notifier = notifier or WebhookNotifier(tasks)
    if renderer is None:
        renderer = _default_renderer(settings)

    registry = CallSessionRegistry()
    pool = TrunkPool(settings.trunk_list if trunks is None else trunks)
    billing = BillingEngine(session_factory)
    call_logs = CallLogRepository(session_factory)
    gather = GatherStateMachine(registry, clock, notifier)
    dispatcher = ProtocolEventDispatcher(
        registry=registry,
        call_control=call_control,
        billing=billing,
        gather=gather,
        notifier=notifier,
        call_logs=call_logs,
        clock=clock,
        tasks=tasks,
        settings=settings,
    )
    origination = OriginationOrchestrator(
        trunks=pool,
        registry=registry,
        call_control=call_control,
        dispatcher=dispatcher,
        notifier=notifier,
        call_logs=call_logs,
        clock=clock,
        settings=settings,
    )
    controller = CallController(
        registry=registry,
        call_control=call_control,
        gather=gather,
        notifier=notifier,
        clock=clock,
        renderer=renderer,
        settings=settings,
    )
    return CallEngine(
        settings=settings,
        tasks=tasks,
        clock=clock,
        call_control=call_control,
        trunks=pool,
        registry=registry,
        billing=billing,
        notifier=notifier,
        gather=gather,
        dispatcher=dispatcher,
        origination=origination,
        controller=controller,
        call_logs=call_logs,
        session_factory=session_factory,
    )
