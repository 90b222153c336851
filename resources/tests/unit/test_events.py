"""
Unit tests for the host event channel.
"""

import pytest

from yat.core.events import Event, EventBus


class TestEventBus:
    """Test EventBus."""

    @pytest.mark.asyncio
    async def test_publish_to_matching_subscribers(self):
        bus = EventBus()
        specific, wildcard = [], []
        bus.subscribe("tunnel.ready", specific.append)
        bus.subscribe("*", wildcard.append)

        delivered = await bus.publish(Event(event_type="tunnel.ready", data=("t1",)))
        await bus.publish(Event(event_type="other"))

        assert delivered == 2
        assert [e.event_type for e in specific] == ["tunnel.ready"]
        assert [e.event_type for e in wildcard] == ["tunnel.ready", "other"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe("x", broken)
        bus.subscribe("x", received.append)

        assert await bus.publish(Event(event_type="x")) == 1
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_emitter_is_fire_and_forget(self):
        bus = EventBus()
        received = []
        bus.subscribe("cert.renewed", received.append)

        emit = bus.emitter_for("web", "t1")
        assert emit("cert.renewed", "example.com", 90) is None
        assert received == []

        await bus.drain()

        event = received[0]
        assert event.data == ("example.com", 90)
        assert event.to_dict()["source"] == "web"
        assert bus.get_stats()["published_events"] == 1

    def test_emit_without_loop_is_dropped(self):
        bus = EventBus()
        bus.emit_nowait("x", source="web")

        assert bus.get_stats()["pending_deliveries"] == 0

    def test_unsubscribe(self):
        bus = EventBus()
        subscription_id = bus.subscribe("x", lambda event: None)

        assert bus.unsubscribe(subscription_id) is True
        assert bus.unsubscribe(subscription_id) is False
