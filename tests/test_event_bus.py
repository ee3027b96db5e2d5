from __future__ import annotations

import asyncio

import pytest

from conftest import wait_for
from pycrush.events.bus import EventBus
from pycrush.events.models import Event, EventType


def test_publish_without_subscribers_is_a_noop():
    bus = EventBus()
    ev = bus.emit(EventType.TURN_STARTED, "s")
    assert bus.published == 1
    assert bus.dropped == 0
    assert ev.seq > 0


def test_subscription_filters_by_session_and_type():
    bus = EventBus()
    sub = bus.subscribe(session_id="s1", types=[EventType.TEXT_DELTA])
    bus.emit(EventType.TEXT_DELTA, "s1", text="a")
    bus.emit(EventType.TEXT_DELTA, "s2", text="x")
    bus.emit(EventType.TURN_STARTED, "s1")
    bus.emit(EventType.TEXT_DELTA, "s1", text="b")
    assert [e.data["text"] for e in sub.drain()] == ["a", "b"]


def test_overflow_drops_oldest_and_counts():
    bus = EventBus()
    slow = bus.subscribe(buffer=2)
    fast = bus.subscribe(buffer=10)
    for i in range(5):
        bus.emit(EventType.TEXT_DELTA, "s", text=str(i))

    assert [e.data["text"] for e in slow.drain()] == ["3", "4"]
    assert slow.dropped == 3
    assert bus.dropped == 3
    assert len(fast.drain()) == 5
    assert fast.dropped == 0


@pytest.mark.asyncio
async def test_async_iteration_preserves_order_and_ends_on_close():
    bus = EventBus()
    sub = bus.subscribe()
    seen: list[str] = []

    async def consume():
        async for ev in sub:
            seen.append(ev.data["n"])

    task = asyncio.create_task(consume())
    for n in "abc":
        bus.emit(EventType.TEXT_DELTA, "s", n=n)
        await asyncio.sleep(0)
    await wait_for(lambda: len(seen) == 3)
    sub.close()
    await asyncio.wait_for(task, 1)

    assert seen == ["a", "b", "c"]
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_attached_sinks_are_isolated_from_failures():
    bus = EventBus()
    got_sync: list[Event] = []
    got_async: list[Event] = []

    def broken(ev: Event) -> None:
        raise RuntimeError("sink failed")

    async def async_sink(ev: Event) -> None:
        got_async.append(ev)

    bus.attach(broken)
    bus.attach(got_sync.append)
    bus.attach(async_sink, types=[EventType.TURN_COMPLETED])

    bus.emit(EventType.TURN_STARTED, "s")
    bus.emit(EventType.TURN_COMPLETED, "s")
    await wait_for(lambda: len(got_sync) == 2 and len(got_async) == 1)
    await bus.aclose()

    assert [e.type for e in got_sync] == [EventType.TURN_STARTED, EventType.TURN_COMPLETED]


def test_event_to_dict_is_json_friendly():
    ev = Event(type=EventType.TURN_FAILED, session_id="s", turn_id="t", data={"kind": "error"})
    d = ev.to_dict()
    assert d["type"] == "turn.failed"
    assert d["data"] == {"kind": "error"}
