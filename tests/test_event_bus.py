"""Unit tests for in-process and Redis event delivery."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from seatshare.domain.events import EventKind, LifecycleEvent
from seatshare.infrastructure.event_bus import (
    CompositePublisher,
    DeduplicatingHandler,
    EventBus,
    RedisEventPublisher,
)
from tests.conftest import EventRecorder


def _event(kind=EventKind.BOOKING_CONFIRMED, **kw) -> LifecycleEvent:
    return LifecycleEvent(kind=kind, ride_id="r-1", booking_id="b-1", **kw)


class TestEventBus:
    @pytest.mark.asyncio
    async def test_routes_by_kind(self):
        bus = EventBus()
        confirmed, everything = EventRecorder(), EventRecorder()
        bus.subscribe(EventKind.BOOKING_CONFIRMED, confirmed)
        bus.subscribe(None, everything)

        await bus.publish([_event(), _event(EventKind.BOOKING_REJECTED)])

        assert [e.kind for e in confirmed.events] == [EventKind.BOOKING_CONFIRMED]
        assert len(everything.events) == 2

    @pytest.mark.asyncio
    async def test_async_handlers_awaited(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(EventKind.OTP_ISSUED, handler)

        event = _event(EventKind.OTP_ISSUED)
        await bus.publish([event])

        handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_delivery(self, caplog):
        bus = EventBus()
        recorder = EventRecorder()

        def broken(event):
            raise RuntimeError("mailer down")

        bus.subscribe(None, broken)
        bus.subscribe(None, recorder)

        await bus.publish([_event()])

        assert len(recorder.events) == 1
        assert "Subscriber failed" in caplog.text

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        recorder = EventRecorder()
        bus.subscribe(None, recorder)
        bus.unsubscribe(None, recorder)
        bus.unsubscribe(EventKind.NEW_BOOKING, recorder)

        await bus.publish([_event()])
        assert recorder.events == []


class TestDeduplicatingHandler:
    @pytest.mark.asyncio
    async def test_redelivery_handled_once(self):
        recorder = EventRecorder()
        handler = DeduplicatingHandler(recorder)
        event = _event()

        await handler(event)
        await handler(event)
        await handler(_event())

        assert len(recorder.events) == 2

    @pytest.mark.asyncio
    async def test_concurrent_redelivery_handled_once(self):
        handled = []

        async def slow(event):
            await asyncio.sleep(0.01)
            handled.append(event.event_id)

        handler = DeduplicatingHandler(slow)
        event = _event()
        await asyncio.gather(handler(event), handler(event), handler(event))

        assert handled == [event.event_id]

    @pytest.mark.asyncio
    async def test_forgets_oldest_beyond_capacity(self):
        recorder = EventRecorder()
        handler = DeduplicatingHandler(recorder, capacity=1)
        first, second = _event(), _event()

        await handler(first)
        await handler(second)
        await handler(first)

        assert len(recorder.events) == 3

    @pytest.mark.asyncio
    async def test_failed_delivery_can_be_retried(self):
        calls = []

        def flaky(event):
            calls.append(event.event_id)
            if len(calls) == 1:
                raise RuntimeError("try again")

        handler = DeduplicatingHandler(flaky)
        event = _event()
        with pytest.raises(RuntimeError):
            await handler(event)
        await handler(event)

        assert calls == [event.event_id, event.event_id]


class TestRedisEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_json_to_channel(self):
        redis = AsyncMock()
        publisher = RedisEventPublisher(redis, channel="test:events")
        event = _event(recipient_id="p-1", payload={"seats": 2})

        await publisher.publish([event])

        channel, body = redis.publish.await_args.args
        assert channel == "test:events"
        decoded = json.loads(body)
        assert decoded["event_id"] == event.event_id
        assert decoded["kind"] == "booking-confirmed"
        assert decoded["payload"] == {"seats": 2}

    @pytest.mark.asyncio
    async def test_redis_outage_is_logged(self, caplog):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("refused")

        await RedisEventPublisher(redis).publish([_event(), _event()])

        assert redis.publish.await_count == 2
        assert "Could not publish" in caplog.text


class TestCompositePublisher:
    @pytest.mark.asyncio
    async def test_fans_out_same_batch(self):
        bus = EventBus()
        recorder = EventRecorder()
        bus.subscribe(None, recorder)
        redis = AsyncMock()

        # A generator is consumed once; every publisher still sees it.
        events = (e for e in [_event(), _event()])
        await CompositePublisher(bus, RedisEventPublisher(redis)).publish(events)

        assert len(recorder.events) == 2
        assert redis.publish.await_count == 2
