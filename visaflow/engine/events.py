"""
Event Bus for Engine and Watcher Events.

Publishers never wait on consumers: each subscriber owns a bounded queue
and publishing only enqueues. A subscriber that falls behind loses its
oldest events, not the publisher's time.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import logging

from visaflow.config import settings
from visaflow.engine.models import utc_now


logger = logging.getLogger(__name__)


@dataclass
class Event:
    """A single published event."""
    type: str
    source: str  # "engine" or "watcher"
    data: Dict[str, Any] = field(default_factory=dict)
    instance_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "source": self.source,
            "instance_id": self.instance_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """A subscriber's queue. Iterate it or call get()."""

    def __init__(self, bus: "EventBus", maxsize: int, types: Optional[set] = None):
        self._bus = bus
        self._types = types
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def wants(self, event: Event) -> bool:
        return self._types is None or event.type in self._types

    def offer(self, event: Event) -> None:
        """Enqueue without blocking, dropping the oldest event when full."""
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            logger.warning(
                f"Event subscriber queue full, dropped oldest event "
                f"({self.dropped} dropped so far)"
            )
        self.queue.put_nowait(event)

    async def get(self) -> Event:
        return await self.queue.get()

    def drain(self) -> List[Event]:
        """Return every queued event without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        return await self.queue.get()


Handler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """
    Publish/subscribe hub.

    Usage:
        bus = EventBus()
        sub = bus.subscribe()
        bus.publish(Event(type="started", source="engine"))
        event = await sub.get()
    """

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.EVENT_QUEUE_SIZE
        self._subscriptions: List[Subscription] = []
        self._listeners: List[asyncio.Task] = []

    def subscribe(self, types: Optional[List[str]] = None) -> Subscription:
        """Create a new subscription, optionally filtered by event type."""
        subscription = Subscription(self, self.queue_size, set(types) if types else None)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: Event) -> None:
        """Deliver an event to every interested subscriber. Never blocks."""
        logger.debug(f"[{event.source}] {event.type}: {event.data}")
        for subscription in list(self._subscriptions):
            if subscription.wants(event):
                subscription.offer(event)

    def listen(self, handler: Handler, types: Optional[List[str]] = None) -> asyncio.Task:
        """
        Run a handler for each event in a background task.

        Handler errors are logged and do not stop the listener.
        Must be called from a running event loop.
        """
        subscription = self.subscribe(types)

        async def _consume() -> None:
            try:
                async for event in subscription:
                    try:
                        result = handler(event)
                        if asyncio.iscoroutine(result):
                            await result
                    except Exception as e:
                        logger.warning(f"Event handler failed on '{event.type}': {e}")
            finally:
                subscription.close()

        task = asyncio.create_task(_consume())
        self._listeners.append(task)
        return task

    async def close(self) -> None:
        """Cancel listener tasks and drop all subscriptions."""
        for task in self._listeners:
            task.cancel()
        for task in self._listeners:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listeners.clear()
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)
