from __future__ import annotations

import asyncio

import pytest

from telephony.events import DtmfReceived


def _start(engine, call_id: str, num_digits: int, timeout_ms: int, prompt: str = ""):
    async def _install():
        async with engine.registry.locked(call_id) as session:
            return engine.gather.start(session, num_digits, timeout_ms, prompt=prompt)

    return _install()


def test_partial_digits_time_out_after_inactivity(engine, clock, notifier):
    session = engine.registry.create("chan-1")

    async def scenario():
        await _start(engine, "chan-1", 4, 10_000, prompt="Enter your PIN")
        await engine.dispatcher.handle(DtmfReceived("chan-1", "1"))
        await clock.advance(2)
        await engine.dispatcher.handle(DtmfReceived("chan-1", "2"))
        await clock.advance(9.999)
        assert session.gather is not None
        await clock.advance(0.001)

    asyncio.run(scenario())

    assert session.gather is None
    assert notifier.of("gather.started") == [
        {"prompt": "Enter your PIN", "expectedDigits": 4, "timeoutMs": 10_000}
    ]
    assert [event["collected"] for event in notifier.of("gather.progress")] == ["1", "12"]
    assert notifier.of("gather.timeout") == [
        {"digits": "12", "expected": 4, "duration": 12_000, "method": "timeout"}
    ]
    assert notifier.of("gather.complete") == []


def test_completed_gather_disarms_its_timer(engine, clock, notifier):
    session = engine.registry.create("chan-1")

    async def scenario():
        await _start(engine, "chan-1", 3, 5_000)
        for digit in "123":
            await engine.dispatcher.handle(DtmfReceived("chan-1", digit))
        await clock.advance(60)

    asyncio.run(scenario())

    assert session.gather is None
    assert notifier.of("gather.complete") == [{"digits": "123", "method": "digits_complete"}]
    assert notifier.of("gather.timeout") == []
    assert clock.pending == []


def test_restarting_gather_supersedes_previous_timer(engine, clock, notifier):
    session = engine.registry.create("chan-1")

    async def scenario():
        first = await _start(engine, "chan-1", 4, 5_000)
        await clock.advance(3)
        second = await _start(engine, "chan-1", 2, 5_000)
        assert first is not second
        await clock.advance(2.5)
        assert session.gather is second
        await clock.advance(2.5)

    asyncio.run(scenario())

    timeouts = notifier.of("gather.timeout")
    assert len(timeouts) == 1
    assert timeouts[0]["expected"] == 2
    assert timeouts[0]["duration"] == 5_000


def test_digit_without_gather_only_reports_dtmf(engine, notifier):
    engine.registry.create("chan-1")

    asyncio.run(engine.dispatcher.handle(DtmfReceived("chan-1", "5")))

    assert notifier.names("chan-1") == ["dtmf.received"]
    assert notifier.of("dtmf.received")[0]["digit"] == "5"


def test_stale_timeout_is_ignored(engine, clock, notifier):
    session = engine.registry.create("chan-1")

    async def scenario():
        state = await _start(engine, "chan-1", 2, 1_000)
        handle = state.timer
        engine.gather.cancel(session)
        await engine.gather.on_timeout("chan-1", state, handle)

    asyncio.run(scenario())
    assert notifier.of("gather.timeout") == []


def test_timeout_queued_behind_a_digit_is_dropped(engine, clock, notifier):
    session = engine.registry.create("chan-1")

    async def scenario():
        state = await _start(engine, "chan-1", 4, 10_000)
        fired = state.timer
        async with engine.registry.locked("chan-1") as locked:
            # The timer fires while a DTMF handler holds the call.
            pending = asyncio.create_task(engine.gather.on_timeout("chan-1", state, fired))
            await asyncio.sleep(0)
            engine.gather.on_digit(locked, "1")
        await pending

        assert session.gather is state
        assert state.digits == "1"
        assert state.timer is not fired
        assert notifier.of("gather.timeout") == []

        await clock.advance(10)

    asyncio.run(scenario())

    assert session.gather is None
    assert notifier.of("gather.timeout") == [
        {"digits": "1", "expected": 4, "duration": 10_000, "method": "timeout"}
    ]


def test_start_rejects_invalid_arguments(engine):
    session = engine.registry.create("chan-1")
    with pytest.raises(ValueError):
        engine.gather.start(session, 0, 1_000)
    with pytest.raises(ValueError):
        engine.gather.start(session, 1, 0)
    assert session.gather is None
