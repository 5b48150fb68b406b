"""In-process event bus for manager events.

The manager publishes the events of an operation only after it commits.
Subscribers are called one event at a time in publish order, either by the
background task started with :meth:`EventBus.start` or on demand via
:meth:`EventBus.flush`.
"""

import asyncio
import concurrent.futures
import inspect
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from yieldrouter.core.types import Event, EventType
from yieldrouter.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Event], Any]


class EventBus:
    """Queue-backed pub/sub keyed by event type."""

    def __init__(self, max_queue_size: int = 10000) -> None:
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._task: asyncio.Task[None] | None = None
        # Sync handlers run off the event loop
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="yieldrouter-bus"
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(f"{handler.__name__} subscribed to {event_type.value}")

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    async def publish(self, event: Event) -> None:
        """Queue an event; raises RuntimeError instead of dropping it when full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            raise RuntimeError(
                f"event queue full ({self._queue.maxsize}), {event.event_type.value} not queued"
            ) from None

    async def publish_many(self, events: Iterable[Event]) -> None:
        for event in events:
            await self.publish(event)

    async def flush(self) -> int:
        """Deliver everything queued right now; returns the number delivered."""
        delivered = 0
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            delivered += 1
        return delivered

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Cancel the delivery task; events still queued are delivered first."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        remaining = await self.flush()
        self._executor.shutdown(wait=True)
        logger.info(f"Event bus stopped ({remaining} events delivered on shutdown)")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            await self._deliver(event)

    async def _deliver(self, event: Event) -> None:
        for handler in list(self._handlers.get(event.event_type, [])):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    loop = asyncio.get_running_loop()
                    await loop.run_in_executor(self._executor, handler, event)
            except Exception as e:
                logger.error(
                    f"Handler {handler.__name__} failed on {event.event_type.value}: {e}", exc_info=True
                )
