"""
Host event channel.

Extensions notify the host through ``AppHookContext.emit``. Delivery is
fire-and-forget and best-effort: handler failures are logged, never retried
and never reported back to the emitting hook.
"""

import asyncio
import inspect
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from yat.utils.logging import setup_logging

logger = setup_logging(__name__)

ALL_EVENTS = "*"


@dataclass
class Event:
    """Represents an event emitted by an extension."""
    event_type: str
    data: tuple[Any, ...] = ()
    source: str | None = None
    tunnel_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary."""
        return {
            'event_id': self.event_id,
            'event_type': self.event_type,
            'data': list(self.data),
            'source': self.source,
            'tunnel_id': self.tunnel_id,
            'timestamp': self.timestamp,
        }


@dataclass
class EventSubscription:
    """Represents an event subscription."""
    subscription_id: str
    event_type: str
    handler: Callable[[Event], Any]
    created_at: float = field(default_factory=time.time)

    def matches(self, event: Event) -> bool:
        return self.event_type == ALL_EVENTS or self.event_type == event.event_type

    async def handle_event(self, event: Event) -> bool:
        """Run the handler once.

        Returns:
            True if handled successfully, False otherwise
        """
        try:
            result = self.handler(event)
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            logger.error(f"Event handler {self.subscription_id} failed for {event.event_type}: {e}")
            return False


class EventBus:
    """In-process bus carrying extension events to host subscribers."""

    def __init__(self):
        self._subscriptions: dict[str, EventSubscription] = {}
        self._pending: set[asyncio.Task] = set()
        self._published_count = 0

    def subscribe(self, event_type: str, handler: Callable[[Event], Any]) -> str:
        """Subscribe to an event type (``"*"`` for every event).

        Returns:
            Subscription ID
        """
        subscription_id = str(uuid.uuid4())
        self._subscriptions[subscription_id] = EventSubscription(
            subscription_id=subscription_id,
            event_type=event_type,
            handler=handler,
        )
        logger.debug(f"Subscribed {subscription_id} to {event_type}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if it was unknown."""
        return self._subscriptions.pop(subscription_id, None) is not None

    async def publish(self, event: Event) -> int:
        """Deliver an event to every matching subscriber.

        Returns:
            Number of handlers that completed successfully
        """
        self._published_count += 1
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.matches(event) and await subscription.handle_event(event):
                delivered += 1
        return delivered

    def emit_nowait(
        self,
        event_type: str,
        *args: Any,
        source: str | None = None,
        tunnel_id: str | None = None
    ) -> None:
        """Schedule delivery of an event without waiting for it.

        Outside a running event loop the event is dropped with a warning.
        """
        event = Event(event_type=event_type, data=args, source=source, tunnel_id=tunnel_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping event {event_type} from {source}")
            return

        task = loop.create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def emitter_for(self, source: str, tunnel_id: str | None = None) -> Callable[..., None]:
        """Build the ``emit(event, *args)`` callable handed to one hook call."""
        def emit(event_type: str, *args: Any) -> None:
            self.emit_nowait(event_type, *args, source=source, tunnel_id=tunnel_id)
        return emit

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        """Get bus statistics."""
        return {
            "subscriptions": len(self._subscriptions),
            "pending_deliveries": len(self._pending),
            "published_events": self._published_count,
        }
