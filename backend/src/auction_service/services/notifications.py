"""Notification fan-out for auction events.

Event handlers only enqueue deliveries; background workers persist and push
them, retrying failures with exponential backoff. Each delivery is keyed by
``{event_id}:{kind}:{user_id}`` so redelivered events notify each party once.
"""

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import UUID

from auction_service.core.config import settings
from auction_service.middleware.metrics import record_notification
from auction_service.models.auction import AuctionState
from auction_service.models.base import utcnow
from auction_service.models.notification import Notification
from auction_service.schemas.events import AuctionClosed, BidPlaced, DomainEvent
from auction_service.services.event_bus import EventBus
from auction_service.stores.base import AuctionStore

logger = logging.getLogger(__name__)

Pusher = Callable[[Notification], Awaitable[Any]]


class NotificationKind(str, enum.Enum):
    BID_PLACED = "BID_PLACED"
    OUTBID = "OUTBID"
    AUCTION_WON = "AUCTION_WON"
    ITEM_SOLD = "ITEM_SOLD"


@dataclass
class Delivery:
    event_id: UUID
    user_id: UUID
    kind: NotificationKind
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    saved: Notification | None = None

    @property
    def dedupe_key(self) -> str:
        return f"{self.event_id}:{self.kind.value}:{self.user_id}"


def deliveries_for(event: DomainEvent) -> list[Delivery]:
    """Map a domain event to the notifications it owes each party."""
    if isinstance(event, BidPlaced):
        data = {
            "auction_id": str(event.auction_id),
            "bid_id": str(event.bid_id),
            "amount": str(event.amount),
        }
        deliveries = [
            Delivery(
                event_id=event.event_id,
                user_id=event.seller_id,
                kind=NotificationKind.BID_PLACED,
                title="New Bid on Your Item",
                message=f"Someone placed a bid of ${event.amount} on {event.title}",
                data={**data, "bidder_id": str(event.bidder_id)},
            )
        ]
        displaced = event.displaced_bidder_id
        if displaced is not None:
            deliveries.append(
                Delivery(
                    event_id=event.event_id,
                    user_id=displaced,
                    kind=NotificationKind.OUTBID,
                    title="You've Been Outbid!",
                    message=f"Someone placed a higher bid of ${event.amount} on {event.title}",
                    data=data,
                )
            )
        return deliveries

    if isinstance(event, AuctionClosed):
        if event.outcome != AuctionState.CLOSED_SOLD or event.winner_id is None:
            return []
        data = {"auction_id": str(event.auction_id), "final_price": str(event.final_price)}
        return [
            Delivery(
                event_id=event.event_id,
                user_id=event.winner_id,
                kind=NotificationKind.AUCTION_WON,
                title="Congratulations! You Won the Auction",
                message=f"You won the auction for {event.title}",
                data=data,
            ),
            Delivery(
                event_id=event.event_id,
                user_id=event.seller_id,
                kind=NotificationKind.ITEM_SOLD,
                title="Your Item Has Sold!",
                message=f"Congratulations! {event.title} has been sold",
                data={**data, "winner_id": str(event.winner_id)},
            ),
        ]

    return []


class NotificationFanout:
    """Queue-backed notification delivery workers."""

    def __init__(
        self,
        store: AuctionStore,
        pusher: Pusher | None = None,
        max_attempts: int | None = None,
        backoff: float | None = None,
        workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.pusher = pusher
        self.max_attempts = settings.NOTIFY_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.backoff = settings.NOTIFY_BACKOFF_SECONDS if backoff is None else backoff
        self.workers = workers
        self.clock = clock
        self.queue: asyncio.Queue[Delivery] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    def subscribe(self, event_bus: EventBus) -> None:
        event_bus.subscribe(BidPlaced, self.enqueue)
        event_bus.subscribe(AuctionClosed, self.enqueue)

    async def enqueue(self, event: DomainEvent) -> None:
        for delivery in deliveries_for(event):
            self.queue.put_nowait(delivery)

    async def deliver(self, delivery: Delivery) -> bool:
        """Persist one notification and push it to the recipient.

        A retried delivery that was already persisted only repeats the push.

        Returns:
            False if the same notification was already delivered
        """
        if delivery.saved is None:
            notification = Notification(
                notification_id=uuid.uuid4(),
                user_id=delivery.user_id,
                kind=delivery.kind.value,
                title=delivery.title,
                message=delivery.message,
                data=delivery.data,
                dedupe_key=delivery.dedupe_key,
                is_read=False,
                created_at=self.clock(),
            )
            if not await self.store.save_notification(notification):
                record_notification(delivery.kind.value, "duplicate")
                return False
            delivery.saved = notification

        if self.pusher is not None:
            await self.pusher(delivery.saved)
        record_notification(delivery.kind.value, "delivered")
        return True

    async def _deliver_with_retry(self, delivery: Delivery) -> None:
        while True:
            try:
                await self.deliver(delivery)
                return
            except Exception as e:
                delivery.attempts += 1
                if delivery.attempts >= self.max_attempts:
                    record_notification(delivery.kind.value, "dropped")
                    logger.error(
                        f"Dropping {delivery.kind.value} notification {delivery.dedupe_key} "
                        f"after {delivery.attempts} attempts: {e}"
                    )
                    return
                record_notification(delivery.kind.value, "retried")
                delay = self.backoff * (2 ** (delivery.attempts - 1))
                logger.warning(
                    f"Notification {delivery.dedupe_key} failed (attempt {delivery.attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

    async def _worker(self) -> None:
        while True:
            delivery = await self.queue.get()
            try:
                await self._deliver_with_retry(delivery)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if not self._tasks:
            self._tasks = [asyncio.create_task(self._worker()) for _ in range(self.workers)]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def drain(self) -> None:
        """Wait until every queued delivery has been handled."""
        await self.queue.join()

    async def get_notifications(
        self, user_id: UUID, unread_only: bool = False, skip: int = 0, limit: int = 50
    ) -> tuple[list[Notification], int]:
        return await self.store.list_notifications(
            user_id, unread_only=unread_only, skip=skip, limit=limit
        )

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> bool:
        return await self.store.mark_notification_read(notification_id, user_id)
