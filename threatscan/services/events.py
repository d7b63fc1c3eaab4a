"""In-process event bus for ``threat_detected`` notifications.

Each subscriber owns a bounded ``asyncio.Queue``. Publishing never blocks
and never raises: when a subscriber's queue is full the event is dropped for
that subscriber only, counted, and logged.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from threatscan.core.types import ThreatEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


class Subscription:
    """One consumer's view of the bus."""

    def __init__(self, bus: "EventBus", maxsize: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[ThreatEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: ThreatEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self) -> ThreatEvent:
        return await self._queue.get()

    def get_nowait(self) -> ThreatEvent:
        """Raises ``asyncio.QueueEmpty`` when nothing is pending."""
        return self._queue.get_nowait()

    def drain(self) -> list[ThreatEvent]:
        """Return every pending event without waiting."""
        events: list[ThreatEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)


class EventBus:
    """Fan-out of threat events to any number of subscribers."""

    def __init__(self, default_maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._default_maxsize = default_maxsize
        self._lock = threading.Lock()
        self._subscriptions: tuple[Subscription, ...] = ()

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(self, maxsize or self._default_maxsize)
        with self._lock:
            self._subscriptions = (*self._subscriptions, subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions = tuple(s for s in self._subscriptions if s is not subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ThreatEvent) -> int:
        """Deliver ``event`` to every subscriber; returns how many accepted it."""
        delivered = 0
        for subscription in self._subscriptions:
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(
                    "Subscriber queue full, dropping %s event for finding %s",
                    event.event, event.finding_id,
                    extra={"scan_id": event.scan_id, "pattern_id": event.pattern_id},
                )
        return delivered
