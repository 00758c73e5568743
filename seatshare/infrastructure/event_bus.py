"""
Event delivery for lifecycle events.

Services hand events to an ``EventPublisher`` only after their unit of work
committed.  Publishing is fire-and-forget: a failing subscriber or a Redis
outage is logged and never propagates back into the lifecycle operation.

* ``EventBus``             -- in-process pub/sub, subscribers keyed by kind.
* ``RedisEventPublisher``  -- JSON on a Redis pub/sub channel for other
  processes (notification / chat layers).
* ``DeduplicatingHandler`` -- wraps a subscriber so redelivered events
  (same ``event_id``) are handled once.
"""

from __future__ import annotations

import inspect
import logging
from collections import OrderedDict, defaultdict
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

import redis.asyncio as aioredis

from seatshare.domain.events import EventKind, LifecycleEvent

logger = logging.getLogger(__name__)

Handler = Callable[[LifecycleEvent], Union[None, Awaitable[None]]]


class EventPublisher(Protocol):
    async def publish(self, events: Iterable[LifecycleEvent]) -> None: ...


async def _call(handler: Handler, event: LifecycleEvent) -> None:
    result = handler(event)
    if inspect.isawaitable(result):
        await result


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[Optional[EventKind], list[Handler]] = defaultdict(list)

    def subscribe(self, kind: Optional[EventKind], handler: Handler) -> None:
        """Register *handler* for *kind*; ``None`` subscribes to every kind."""
        self._handlers[kind].append(handler)

    def unsubscribe(self, kind: Optional[EventKind], handler: Handler) -> None:
        if handler in self._handlers.get(kind, []):
            self._handlers[kind].remove(handler)

    async def publish(self, events: Iterable[LifecycleEvent]) -> None:
        for event in events:
            for handler in [*self._handlers.get(event.kind, []), *self._handlers.get(None, [])]:
                try:
                    await _call(handler, event)
                except Exception:
                    logger.exception(
                        "Subscriber failed on %s (event %s)", event.kind.value, event.event_id
                    )


class RedisEventPublisher:
    def __init__(self, client: aioredis.Redis, channel: str = "seatshare:events"):
        self.redis = client
        self.channel = channel

    async def publish(self, events: Iterable[LifecycleEvent]) -> None:
        for event in events:
            try:
                await self.redis.publish(self.channel, event.model_dump_json())
            except Exception:
                logger.exception("Could not publish %s (event %s)", event.kind.value, event.event_id)


class CompositePublisher:
    """Fan one batch of events out to several publishers."""

    def __init__(self, *publishers: EventPublisher):
        self.publishers = publishers

    async def publish(self, events: Iterable[LifecycleEvent]) -> None:
        batch = list(events)
        for publisher in self.publishers:
            await publisher.publish(batch)


class DeduplicatingHandler:
    """
    Hand each ``event_id`` to *handler* once.

    An id counts as taken from the moment its first delivery starts, so a
    copy arriving while that delivery is still awaited is dropped too.  A
    delivery that raises frees the id again for the next redelivery.
    """

    def __init__(self, handler: Handler, capacity: int = 10_000):
        self.handler = handler
        self.capacity = capacity
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._in_flight: set[str] = set()

    async def __call__(self, event: LifecycleEvent) -> Any:
        if event.event_id in self._seen or event.event_id in self._in_flight:
            logger.debug("Dropping duplicate event %s", event.event_id)
            return None
        self._in_flight.add(event.event_id)
        try:
            await _call(self.handler, event)
        finally:
            self._in_flight.discard(event.event_id)
        self._seen[event.event_id] = None
        if len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
        return None
