"""Tests for the event bus."""

import asyncio

import pytest

from yieldrouter.core.bus import EventBus
from yieldrouter.core.types import Event, EventType


def _event(n: int) -> Event:
    return Event(event_type=EventType.ALLOCATED, data={"n": n})


async def test_flush_delivers_in_publish_order() -> None:
    bus = EventBus()
    seen: list[int] = []

    async def handler(event: Event) -> None:
        seen.append(event.data["n"])

    bus.subscribe(EventType.ALLOCATED, handler)
    await bus.publish_many(_event(i) for i in range(5))
    assert await bus.flush() == 5
    assert seen == [0, 1, 2, 3, 4]


async def test_sync_handlers_run_in_executor() -> None:
    bus = EventBus()
    seen: list[Event] = []
    bus.subscribe(EventType.ALLOCATED, seen.append)
    await bus.publish(_event(1))
    await bus.flush()
    assert len(seen) == 1


async def test_handler_errors_do_not_stop_delivery() -> None:
    bus = EventBus()
    seen: list[int] = []

    async def broken(event: Event) -> None:
        raise ValueError("handler bug")

    async def ok(event: Event) -> None:
        seen.append(event.data["n"])

    bus.subscribe(EventType.ALLOCATED, broken)
    bus.subscribe(EventType.ALLOCATED, ok)
    await bus.publish(_event(7))
    await bus.flush()
    assert seen == [7]


async def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[Event] = []

    async def handler(event: Event) -> None:
        seen.append(event)

    bus.subscribe(EventType.ALLOCATED, handler)
    bus.unsubscribe(EventType.ALLOCATED, handler)
    await bus.publish(_event(1))
    await bus.flush()
    assert seen == []


async def test_full_queue_raises() -> None:
    bus = EventBus(max_queue_size=1)
    await bus.publish(_event(1))
    with pytest.raises(RuntimeError):
        await bus.publish(_event(2))


async def test_stop_delivers_queued_events() -> None:
    bus = EventBus()
    seen: list[int] = []

    async def handler(event: Event) -> None:
        seen.append(event.data["n"])

    bus.subscribe(EventType.ALLOCATED, handler)
    await bus.start()
    await bus.publish_many([_event(1), _event(2)])
    await bus.stop()
    assert seen == [1, 2]


async def test_background_processing() -> None:
    bus = EventBus()
    received = asyncio.Event()

    async def handler(event: Event) -> None:
        received.set()

    bus.subscribe(EventType.REBALANCED, handler)
    await bus.start()
    assert bus.is_running
    try:
        await bus.publish(Event(event_type=EventType.REBALANCED))
        await asyncio.wait_for(received.wait(), timeout=2.0)
    finally:
        await bus.stop()
    assert not bus.is_running
