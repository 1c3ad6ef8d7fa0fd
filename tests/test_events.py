"""
Tests for the event bus and the SSE stream
"""

import json

import pytest

from booking_engine.api.events import event_generator
from booking_engine.services.event_bus import InMemoryEventBus


def _payload(chunk: str) -> dict:
    assert chunk.startswith("data: ") and chunk.endswith("\n\n")
    return json.loads(chunk[len("data: "):])


class TestInMemoryEventBus:

    @pytest.mark.asyncio
    async def test_fan_out_to_every_subscriber(self):
        bus = InMemoryEventBus()
        first, second = bus.subscribe(), bus.subscribe()

        delivered = await bus.publish({"type": "new_appointment"})

        assert delivered == 2
        assert first.get_nowait() == {"type": "new_appointment"}
        assert second.get_nowait() == {"type": "new_appointment"}

    @pytest.mark.asyncio
    async def test_no_subscribers(self):
        assert await InMemoryEventBus().publish({"type": "new_appointment"}) == 0

    @pytest.mark.asyncio
    async def test_stalled_subscriber_is_pruned(self):
        bus = InMemoryEventBus(max_queue_size=1)
        stalled = bus.subscribe()
        await bus.publish({"n": 1})

        delivered = await bus.publish({"n": 2})

        assert delivered == 0
        assert bus.subscriber_count == 0
        assert stalled.get_nowait() == {"n": 1}

    def test_unsubscribe_is_idempotent(self):
        bus = InMemoryEventBus()
        queue = bus.subscribe()

        bus.unsubscribe(queue)
        bus.unsubscribe(queue)

        assert bus.subscriber_count == 0


class TestEventStream:

    @pytest.mark.asyncio
    async def test_handshake_events_and_heartbeat(self):
        bus = InMemoryEventBus()
        stream = event_generator(bus, heartbeat_seconds=0.01)

        first = _payload(await stream.__anext__())
        assert first == {"type": "connection_established", "message": "SSE connected successfully"}
        assert bus.subscriber_count == 1

        await bus.publish({"type": "new_appointment", "appointment": {"clientName": "Ana"}})
        event = _payload(await stream.__anext__())
        assert event["appointment"]["clientName"] == "Ana"

        assert _payload(await stream.__anext__()) == {"type": "ping"}

        await stream.aclose()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_stops_when_client_disconnects(self):
        bus = InMemoryEventBus()

        async def disconnected():
            return True

        chunks = [chunk async for chunk in event_generator(bus, 0.01, is_disconnected=disconnected)]

        assert len(chunks) == 1
        assert bus.subscriber_count == 0
