"""In-memory event bus for auction domain events.

Publishing happens after the originating transaction commits. Subscribers
are awaited in subscription order; a failing subscriber is logged and does
not stop delivery to the others or reach the publisher.
"""

import logging
from collections import defaultdict
from typing import Awaitable, Callable

from auction_service.schemas.events import DomainEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """Async publish/subscribe keyed by event type."""

    def __init__(self):
        self._subs: dict[type[DomainEvent], list[Subscriber]] = defaultdict(list)

    def subscribe(self, etype: type[DomainEvent], fn: Subscriber) -> None:
        """Subscribe a coroutine function to events of a specific type.

        Args:
            etype: The domain event type to subscribe to
            fn: Async handler called with each published event
        """
        self._subs[etype].append(fn)

    async def publish(self, event: DomainEvent) -> None:
        """Publish an event to all subscribers of its type.

        Args:
            event: The domain event to publish
        """
        for fn in list(self._subs[type(event)]):
            try:
                await fn(event)
            except Exception as e:
                logger.error(
                    f"Subscriber {getattr(fn, '__qualname__', fn)} failed for "
                    f"{type(event).__name__} {event.event_id}: {e}"
                )
