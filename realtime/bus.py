from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

QUEUE_SIZE = 200


@dataclass(frozen=True)
class Event:
    type: str
    data: dict


@dataclass(eq=False)
class Subscription:
    """One listener's queue. ``types`` of None means every event type."""

    queue: asyncio.Queue[Event] = field(
        default_factory=lambda: asyncio.Queue(maxsize=QUEUE_SIZE)
    )
    types: frozenset[str] | None = None
    dropped: int = 0

    def wants(self, event: Event) -> bool:
        return self.types is None or event.type in self.types

    async def get(self) -> Event:
        return await self.queue.get()


class EventBus:
    """Fan-out of pipeline events to live listeners.

    A slow listener loses its oldest queued events rather than blocking the
    publisher.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._subscriptions: set[Subscription] = set()

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def subscribe(self, types: Iterable[str] | None = None) -> Subscription:
        subscription = Subscription(
            types=frozenset(types) if types is not None else None
        )
        async with self._lock:
            self._subscriptions.add(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            self._subscriptions.discard(subscription)
        if subscription.dropped:
            logger.info("Listener left after dropping %d events", subscription.dropped)

    async def publish(self, event: Event) -> None:
        async with self._lock:
            subscriptions = list(self._subscriptions)
        self._deliver(subscriptions, event)

    def publish_nowait(self, event: Event) -> None:
        """Deliver from synchronous code running on the bus's event loop."""
        self._deliver(list(self._subscriptions), event)

    @staticmethod
    def _deliver(subscriptions: list[Subscription], event: Event) -> None:
        for subscription in subscriptions:
            if not subscription.wants(event):
                continue
            queue = subscription.queue
            if queue.full():
                queue.get_nowait()
                subscription.dropped += 1
            queue.put_nowait(event)
