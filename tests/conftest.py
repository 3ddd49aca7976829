from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before importing modules that create the SQLAlchemy engine.
RUNTIME_DIR = Path(tempfile.mkdtemp(prefix="switchboard-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{(RUNTIME_DIR / 'switchboard_test.db').as_posix()}"
os.environ["DATA_DIR"] = str(RUNTIME_DIR)
os.environ["AUTO_CREATE_DB_SCHEMA"] = "true"
os.environ["ARI_EVENTS_ENABLED"] = "false"
os.environ["SOUNDS_DIR"] = str(RUNTIME_DIR / "sounds")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("ASTERISK_ARI_USERNAME", None)
os.environ.pop("ASTERISK_ARI_PASSWORD", None)

from calls.clock import Clock, TimerCallback, TimerHandle  # noqa: E402
from calls.errors import ProtocolError, SpeechSynthesisFailed  # noqa: E402
from calls.tasks import TaskRegistry  # noqa: E402
from integrations.webhooks import WebhookNotifier  # noqa: E402
from telephony.base import CallControl  # noqa: E402

DEFAULT_TRUNKS = ("trunk-a", "trunk-b", "trunk-c")


class FakeCallControl(CallControl):
    """Records every request; trunks or operations can be told to fail."""

    def __init__(self, *, failing_trunks: set[str] | None = None) -> None:
        self.requests: list[tuple[str, dict]] = []
        self.failing_trunks = set(failing_trunks or ())
        self.failing_ops: set[str] = set()
        self.variables: dict[tuple[str, str], str] = {}
        self._channels = 0

    def _record(self, op: str, **kwargs) -> None:
        self.requests.append((op, kwargs))
        if op in self.failing_ops:
            raise ProtocolError(f"{op} failed")

    def ops(self, name: str) -> list[dict]:
        return [kwargs for op, kwargs in self.requests if op == name]

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
        self._record(
            "originate",
            endpoint=endpoint,
            context=context,
            caller_id=caller_id,
            app=app,
            extension=extension,
            variables=dict(variables or {}),
        )
        trunk = endpoint.rsplit("@", 1)[-1]
        if trunk in self.failing_trunks:
            raise ProtocolError(f"trunk {trunk} rejected the call")
        self._channels += 1
        return f"chan-{self._channels}"

    async def create_bridge(self, bridge_id: str) -> str:
        self._record("create_bridge", bridge_id=bridge_id)
        return bridge_id

    async def add_channel_to_bridge(self, bridge_id: str, channel_id: str) -> None:
        self._record("add_channel_to_bridge", bridge_id=bridge_id, channel_id=channel_id)

    async def record_bridge(
        self,
        bridge_id: str,
        *,
        name: str,
        format: str,
        max_duration_seconds: int,
        max_silence_seconds: int,
    ) -> str:
        self._record(
            "record_bridge",
            bridge_id=bridge_id,
            name=name,
            format=format,
            max_duration_seconds=max_duration_seconds,
            max_silence_seconds=max_silence_seconds,
        )
        return name

    async def destroy_bridge(self, bridge_id: str) -> None:
        self._record("destroy_bridge", bridge_id=bridge_id)

    async def answer(self, channel_id: str) -> None:
        self._record("answer", channel_id=channel_id)

    async def hangup(self, channel_id: str) -> None:
        self._record("hangup", channel_id=channel_id)

    async def get_variable(self, channel_id: str, name: str) -> str | None:
        self._record("get_variable", channel_id=channel_id, name=name)
        return self.variables.get((channel_id, name))

    async def send_dtmf(self, channel_id: str, digits: str) -> None:
        self._record("send_dtmf", channel_id=channel_id, digits=digits)

    async def play(self, target_id: str, media: str, *, playback_id: str, on_bridge: bool = False) -> str:
        self._record("play", target_id=target_id, media=media, playback_id=playback_id, on_bridge=on_bridge)
        return playback_id

    async def stop_recording(self, recording_name: str) -> None:
        self._record("stop_recording", recording_name=recording_name)


class ManualClock(Clock):
    """Deterministic clock; timers fire only when ``advance`` passes their deadline."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._timers: list[tuple[datetime, int, TimerHandle, TimerCallback]] = []
        self._seq = 0

    def now(self) -> datetime:
        return self._now

    def call_later(self, delay: float, callback: TimerCallback, *, name: str) -> TimerHandle:
        self._seq += 1
        handle = TimerHandle(name)
        self._timers.append((self._now + timedelta(seconds=delay), self._seq, handle, callback))
        return handle

    @property
    def pending(self) -> list[str]:
        return [handle.name for _, _, handle, _ in self._timers if not handle.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while True:
            due = sorted(
                (timer for timer in self._timers if timer[0] <= target and not timer[2].cancelled),
                key=lambda timer: (timer[0], timer[1]),
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self._now = max(self._now, timer[0])
            await timer[3]()
        self._now = target
        self._timers = [timer for timer in self._timers if not timer[2].cancelled]


class CapturingNotifier(WebhookNotifier):
    """Keeps webhook events in memory instead of POSTing them."""

    def __init__(self) -> None:
        super().__init__(TaskRegistry())
        self.events: list[tuple[str, str, dict]] = []

    def notify(self, session, event: str, **fields) -> None:
        self.events.append((session.id, event, fields))

    def names(self, call_id: str | None = None) -> list[str]:
        return [name for cid, name, _ in self.events if call_id is None or cid == call_id]

    def of(self, event: str) -> list[dict]:
        return [fields for _, name, fields in self.events if name == event]


class FakeRenderer:
    def __init__(self) -> None:
        self.rendered: list[tuple[str, str, str | None, str]] = []
        self.fail = False

    async def render(self, call_id: str, text: str, voice: str | None = None, suffix: str = "") -> str:
        if self.fail:
            raise SpeechSynthesisFailed("TTS failed: provider unavailable")
        self.rendered.append((call_id, text, voice, suffix))
        return f"sound:{call_id}{suffix}"


@pytest.fixture()
def ledger(tmp_path: Path):
    """Session factory bound to a fresh SQLite database with every table created."""

    from db.base import build_engine, build_session_factory, init_db

    engine = build_engine(f"sqlite+aiosqlite:///{(tmp_path / 'ledger.db').as_posix()}")
    asyncio.run(init_db(engine))
    return build_session_factory(engine)


@pytest.fixture()
def call_control() -> FakeCallControl:
    return FakeCallControl()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def notifier() -> CapturingNotifier:
    return CapturingNotifier()


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def engine(ledger, call_control, clock, notifier, renderer):
    from calls.engine import build_engine

    return build_engine(
        call_control,
        clock=clock,
        notifier=notifier,
        session_factory=ledger,
        renderer=renderer,
        trunks=DEFAULT_TRUNKS,
    )


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def api_engine(call_control, clock, notifier, renderer):
    from calls.engine import build_engine

    return build_engine(
        call_control,
        clock=clock,
        notifier=notifier,
        renderer=renderer,
        trunks=DEFAULT_TRUNKS,
    )


@pytest.fixture()
def client(app, api_engine):
    # Override the engine so tests never talk to a real Asterisk.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_engine] = lambda: api_engine

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
