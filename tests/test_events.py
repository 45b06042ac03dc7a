"""Tests for event streams and cancellation tokens."""

import asyncio

import pytest

from pitwall.cancellation import CancellationCoordinator, CancellationToken
from pitwall.errors import RunCancelled
from pitwall.events import EventKind, EventStream


@pytest.mark.asyncio
async def test_subscriber_receives_events_in_order():
    stream = EventStream("t1")
    received = []

    async def consume():
        async for event in stream.subscribe():
            received.append(event)

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)
    stream.publish(EventKind.THINKING, model="m")
    stream.publish(EventKind.STREAMING_DELTA, text="hi")
    stream.publish(EventKind.DONE, interrupted=False)
    stream.close()
    await consumer

    assert [e.kind for e in received] == [EventKind.THINKING, EventKind.STREAMING_DELTA, EventKind.DONE]
    assert [e.seq for e in received] == [0, 1, 2]
    assert all(e.thread_id == "t1" for e in received)


@pytest.mark.asyncio
async def test_late_subscriber_replays_history():
    stream = EventStream("t1")
    stream.publish(EventKind.THINKING, model="m")
    stream.close()

    events = [e async for e in stream.subscribe()]

    assert [e.kind for e in events] == [EventKind.THINKING]
    assert stream.publish(EventKind.DONE) is None


def test_event_data_is_read_only():
    stream = EventStream("t1")
    event = stream.publish(EventKind.ERROR, error="boom", type="X")

    with pytest.raises(TypeError):
        event.data["error"] = "changed"
    assert event.to_dict()["data"] == {"error": "boom", "type": "X"}
    assert event.to_dict()["kind"] == "error"


def test_child_tokens_follow_parent():
    parent = CancellationToken()
    child = parent.child()

    parent.cancel()

    assert child.cancelled
    assert parent.child().cancelled
    with pytest.raises(RunCancelled):
        child.raise_if_cancelled()


def test_child_cancel_leaves_parent():
    parent = CancellationToken()
    child = parent.child()

    child.cancel()

    assert not parent.cancelled


def test_coordinator_cancel_and_abort():
    coordinator = CancellationCoordinator()
    assert not coordinator.cancel("t1")

    run = coordinator.mint("t1")
    tools = coordinator.tool_scope("t1")

    assert coordinator.abort_tool("t1")
    assert tools.cancelled
    assert not run.cancelled

    assert coordinator.cancel("t1")
    assert run.cancelled
    assert not coordinator.cancel("t1")


def test_coordinator_release_ignores_stale_token():
    coordinator = CancellationCoordinator()
    old = coordinator.mint("t1")
    coordinator.mint("t1")

    coordinator.release("t1", old)
    assert coordinator.active("t1")

    coordinator.release("t1")
    assert not coordinator.active("t1")
