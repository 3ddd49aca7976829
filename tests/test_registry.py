from __future__ import annotations

import asyncio

import pytest

from calls.errors import DuplicateSession
from calls.registry import CallSessionRegistry


def test_create_rejects_duplicate_ids():
    registry = CallSessionRegistry()
    registry.create("c1", number="100")

    with pytest.raises(DuplicateSession) as excinfo:
        registry.create("c1")
    assert excinfo.value.call_id == "c1"
    assert registry.get("c1").number == "100"


def test_remove_is_idempotent():
    registry = CallSessionRegistry()
    registry.create("c1")

    assert registry.remove("c1") is not None
    assert registry.remove("c1") is None
    assert "c1" not in registry
    assert len(registry) == 0


def test_list_filters_by_api_key():
    registry = CallSessionRegistry()
    registry.create("c1", api_key_id=1)
    registry.create("c2", api_key_id=2)
    registry.create("c3", api_key_id=1)

    assert sorted(session.id for session in registry.list(1)) == ["c1", "c3"]
    assert len(registry.list()) == 3


def test_mutate_applies_under_lock_and_ignores_unknown_calls():
    registry = CallSessionRegistry()
    registry.create("c1")

    async def scenario():
        def set_trunk(session):
            session.trunk = "trunk-a"
            return "sync"

        async def set_voice(session):
            session.voice = "en-US-Neural2-A"
            return "async"

        assert await registry.mutate("c1", set_trunk) == "sync"
        assert await registry.mutate("c1", set_voice) == "async"
        assert await registry.mutate("missing", set_trunk) is None

    asyncio.run(scenario())
    session = registry.get("c1")
    assert session.trunk == "trunk-a"
    assert session.voice == "en-US-Neural2-A"


def test_locked_serializes_holders_in_arrival_order():
    registry = CallSessionRegistry()
    registry.create("c1")
    order: list[str] = []

    async def worker(tag: str, delay: float):
        async with registry.locked("c1") as session:
            assert session is not None
            order.append(f"{tag}-start")
            await asyncio.sleep(delay)
            order.append(f"{tag}-end")

    async def scenario():
        await asyncio.gather(worker("a", 0.01), worker("b", 0), worker("c", 0))

    asyncio.run(scenario())
    assert order == ["a-start", "a-end", "b-start", "b-end", "c-start", "c-end"]


def test_locked_yields_none_for_untracked_call():
    registry = CallSessionRegistry()

    async def scenario():
        async with registry.locked("ghost") as session:
            return session

    assert asyncio.run(scenario()) is None
