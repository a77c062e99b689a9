"""Tests for cascade.events: the engine event emitter."""

from __future__ import annotations

import logging

import pytest

from cascade.events import EngineEvent, EngineEventEmitter, EventType, emit_if


@pytest.mark.asyncio()
async def test_sync_and_async_listeners_receive_event():
    emitter = EngineEventEmitter()
    received: list[EngineEvent] = []

    async def async_listener(event: EngineEvent) -> None:
        received.append(event)

    emitter.add_listener(received.append)
    emitter.add_listener(async_listener)
    await emitter.emit(EventType.TIER_ADVANCED, from_tier=1, to_tier=2)

    assert len(received) == 2
    assert received[0].type == EventType.TIER_ADVANCED
    assert received[0].data == {"from_tier": 1, "to_tier": 2}


@pytest.mark.asyncio()
async def test_listener_error_is_logged_not_raised(caplog):
    emitter = EngineEventEmitter()
    received: list[EngineEvent] = []

    def broken(event: EngineEvent) -> None:
        raise RuntimeError("listener down")

    emitter.add_listener(broken)
    emitter.add_listener(received.append)
    with caplog.at_level(logging.ERROR, logger="cascade.events"):
        await emitter.emit(EventType.EXECUTION_SUCCEEDED)

    assert len(received) == 1
    assert "Event listener error" in caplog.text


@pytest.mark.asyncio()
async def test_remove_listener():
    emitter = EngineEventEmitter()
    received: list[EngineEvent] = []

    def listener(event: EngineEvent) -> None:
        received.append(event)

    emitter.add_listener(listener)
    emitter.remove_listener(listener)
    await emitter.emit(EventType.EXECUTION_SUCCEEDED)
    assert received == []


@pytest.mark.asyncio()
async def test_history_is_bounded():
    emitter = EngineEventEmitter(history_limit=3)
    for i in range(5):
        await emitter.emit(EventType.ATTEMPT_RECORDED, n=i)
    assert [e.data["n"] for e in emitter.history] == [2, 3, 4]


@pytest.mark.asyncio()
async def test_emit_if_without_emitter_is_noop():
    await emit_if(None, EventType.EXECUTION_SUCCEEDED, execution_id="x")

    emitter = EngineEventEmitter()
    await emit_if(emitter, EventType.EXECUTION_SUCCEEDED, execution_id="x")
    assert emitter.history[0].data == {"execution_id": "x"}
