"""EventChannel terminal guarantees."""

import asyncio
import json

import pytest

from promopipe.orchestrator.events import (
    EventChannel,
    GenerationEvent,
    error_event,
    status_event,
)

from conftest import drain


@pytest.mark.asyncio
async def test_events_delivered_in_order_then_complete():
    channel = EventChannel()
    await channel.emit(status_event("scraping", "Analyzing"))
    await channel.emit(GenerationEvent(type="productData", data={"name": "Notely"}))
    await channel.finish(True, "done")

    events = await drain(channel)
    assert [e.type for e in events] == ["status", "productData", "complete"]
    assert events[-1].data == {"success": True, "message": "done"}
    assert channel.closed
    assert channel.completed


@pytest.mark.asyncio
async def test_emit_after_close_is_dropped():
    channel = EventChannel()
    channel.close()

    assert await channel.emit(status_event("rendering", "Rendering", attempts=1)) is False
    assert await drain(channel) == []


@pytest.mark.asyncio
async def test_close_twice_is_a_no_op():
    channel = EventChannel()
    await channel.emit(error_event(["boom"]))
    channel.close()
    channel.close()

    events = await drain(channel)
    assert [e.type for e in events] == ["error"]


@pytest.mark.asyncio
async def test_complete_emitted_once():
    channel = EventChannel()
    assert await channel.finish(False) is True
    assert await channel.finish(True) is False

    events = await drain(channel)
    assert [e.type for e in events] == ["complete"]
    assert events[0].data == {"success": False}


@pytest.mark.asyncio
async def test_finish_after_disconnect_emits_nothing():
    channel = EventChannel()
    channel.close()

    assert await channel.finish(True) is False
    assert channel.completed
    assert await drain(channel) == []


@pytest.mark.asyncio
async def test_complete_cannot_be_emitted_directly():
    channel = EventChannel()
    with pytest.raises(ValueError):
        await channel.emit(GenerationEvent(type="complete", data={"success": True}))


@pytest.mark.asyncio
async def test_lines_are_ndjson_and_close_on_consumer_exit():
    channel = EventChannel()
    await channel.emit(status_event("rendering", "Rendering", attempts=2))
    await channel.emit(GenerationEvent(type="videoUrl", data="https://cdn.example.com/v.mp4"))

    lines = channel.lines()
    first = await lines.__anext__()
    await lines.aclose()

    assert first.endswith("\n")
    assert json.loads(first) == {
        "type": "status",
        "data": {"step": "rendering", "message": "Rendering", "attempts": 2},
    }
    assert channel.closed
    assert await channel.emit(error_event(["late"])) is False


@pytest.mark.asyncio
async def test_producer_finishes_after_consumer_disconnects():
    channel = EventChannel()
    await channel.emit(status_event("scraping", "Analyzing"))
    lines = channel.lines()
    await lines.__anext__()

    async def produce():
        for n in range(500):
            await channel.emit(status_event("rendering", "Rendering", attempts=n))
        return await channel.finish(True)

    await lines.aclose()

    assert await asyncio.wait_for(produce(), timeout=1) is False
    assert channel.completed


@pytest.mark.asyncio
async def test_emit_never_waits_for_a_reader():
    channel = EventChannel()

    async def produce():
        for n in range(1000):
            await channel.emit(status_event("rendering", "Rendering", attempts=n))
        await channel.finish(False)

    await asyncio.wait_for(produce(), timeout=1)

    events = await drain(channel)
    assert len(events) == 1001
    assert events[-1].type == "complete"
