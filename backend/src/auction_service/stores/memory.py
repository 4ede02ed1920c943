"""In-process store for development and tests.

Rows are kept as detached ORM instances and copied on every read, so callers
only change stored state through ``transaction``. Each auction has its own
``asyncio.Lock`` standing in for the database row lock.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, TypeVar
from uuid import UUID

from sqlalchemy import inspect

from auction_service.models.auction import Auction, AuctionState
from auction_service.models.base import utcnow
from auction_service.models.bid import Bid
from auction_service.models.finalization import FinalizationJob
from auction_service.models.notification import Notification
from auction_service.models.order import Order
from auction_service.stores.base import AuctionStore, AuctionTransaction

T = TypeVar("T")


def _copy(instance: T) -> T:
    """Detached copy of an ORM instance's column values."""
    mapper = inspect(type(instance))
    values = {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}
    return type(instance)(**values)


def _top(bids: list[Bid]) -> Bid | None:
    # Highest amount wins; on equal amounts the earlier sequence does
    if not bids:
        return None
    return max(bids, key=lambda b: (b.amount, -b.sequence))


class MemoryAuctionTransaction(AuctionTransaction):
    def __init__(self, store: "MemoryAuctionStore", auction: Auction | None):
        self.store = store
        self.auction = auction
        self.staged_bids: list[Bid] = []
        self.staged_jobs: list[FinalizationJob] = []

    def _ledger(self) -> list[Bid]:
        if self.auction is None:
            return list(self.staged_bids)
        return self.store._ledger.get(self.auction.auction_id, []) + self.staged_bids

    async def top_bid(self) -> Bid | None:
        top = _top(self._ledger())
        return _copy(top) if top is not None else None

    async def next_sequence(self) -> int:
        return len(self._ledger()) + 1

    def append_bid(self, bid: Bid) -> None:
        self.staged_bids.append(bid)

    def add_finalization_job(self, job: FinalizationJob) -> None:
        self.staged_jobs.append(job)


class MemoryAuctionStore(AuctionStore):
    def __init__(self):
        self._auctions: dict[UUID, Auction] = {}
        self._ledger: dict[UUID, list[Bid]] = {}
        self._jobs: dict[UUID, FinalizationJob] = {}
        self._orders: dict[UUID, Order] = {}
        self._notifications: dict[UUID, Notification] = {}
        self._dedupe_keys: set[str] = set()
        self._row_locks: dict[UUID, asyncio.Lock] = {}
        self._row_lock_refs: dict[UUID, int] = {}

    # ==================== Auctions ====================

    async def add_auction(self, auction: Auction) -> Auction:
        now = utcnow()
        if auction.created_at is None:
            auction.created_at = now
        if auction.updated_at is None:
            auction.updated_at = now
        self._auctions[auction.auction_id] = _copy(auction)
        return _copy(auction)

    async def get_auction(self, auction_id: UUID) -> Auction | None:
        auction = self._auctions.get(auction_id)
        return _copy(auction) if auction is not None else None

    async def list_auctions(
        self,
        state: AuctionState | None = None,
        seller_id: UUID | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Auction], int]:
        matches = [
            a
            for a in self._auctions.values()
            if (state is None or a.state == state) and (seller_id is None or a.seller_id == seller_id)
        ]
        matches.sort(key=lambda a: a.created_at, reverse=True)
        return [_copy(a) for a in matches[skip : skip + limit]], len(matches)

    @asynccontextmanager
    async def transaction(self, auction_id: UUID) -> AsyncIterator[MemoryAuctionTransaction]:
        lock = self._row_locks.setdefault(auction_id, asyncio.Lock())
        self._row_lock_refs[auction_id] = self._row_lock_refs.get(auction_id, 0) + 1
        try:
            async with lock:
                stored = self._auctions.get(auction_id)
                tx = MemoryAuctionTransaction(self, _copy(stored) if stored is not None else None)
                yield tx

                # Only reached when the body raised nothing
                if tx.auction is None:
                    return
                tx.auction.updated_at = utcnow()
                self._auctions[auction_id] = _copy(tx.auction)
                if tx.staged_bids:
                    self._ledger.setdefault(auction_id, []).extend(
                        _copy(b) for b in tx.staged_bids
                    )
                for job in tx.staged_jobs:
                    self._jobs.setdefault(job.auction_id, _copy(job))
        finally:
            self._row_lock_refs[auction_id] -= 1
            if self._row_lock_refs[auction_id] == 0:
                del self._row_lock_refs[auction_id]
                self._row_locks.pop(auction_id, None)

    async def due_to_open(self, now: datetime, limit: int) -> list[UUID]:
        due = [
            a
            for a in self._auctions.values()
            if a.state == AuctionState.SCHEDULED and a.start_time is not None and a.start_time <= now
        ]
        due.sort(key=lambda a: a.start_time)
        return [a.auction_id for a in due[:limit]]

    async def due_to_close(self, now: datetime, limit: int) -> list[UUID]:
        due = [
            a
            for a in self._auctions.values()
            if a.state == AuctionState.CLOSING
            or (a.state == AuctionState.OPEN and a.end_time <= now)
        ]
        due.sort(key=lambda a: a.end_time)
        return [a.auction_id for a in due[:limit]]

    # ==================== Bid ledger ====================

    async def list_bids(
        self, auction_id: UUID, skip: int = 0, limit: int = 100, by_amount: bool = False
    ) -> tuple[list[Bid], int]:
        bids = list(self._ledger.get(auction_id, []))
        if by_amount:
            bids.sort(key=lambda b: (b.amount, -b.sequence), reverse=True)
        return [_copy(b) for b in bids[skip : skip + limit]], len(bids)

    async def list_bidder_bids(
        self, bidder_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Bid], int]:
        bids = [b for ledger in self._ledger.values() for b in ledger if b.bidder_id == bidder_id]
        bids.sort(key=lambda b: b.created_at, reverse=True)
        return [_copy(b) for b in bids[skip : skip + limit]], len(bids)

    # ==================== Finalization jobs ====================

    async def due_finalization_jobs(
        self, now: datetime, max_attempts: int, limit: int
    ) -> list[FinalizationJob]:
        due = [
            j
            for j in self._jobs.values()
            if j.status == "pending" and j.next_attempt_at <= now and j.attempts < max_attempts
        ]
        due.sort(key=lambda j: j.next_attempt_at)
        return [_copy(j) for j in due[:limit]]

    async def complete_finalization_job(self, auction_id: UUID, now: datetime) -> None:
        job = self._jobs.get(auction_id)
        if job is not None:
            job.status = "done"
            job.completed_at = now

    async def fail_finalization_job(
        self, auction_id: UUID, error: str, next_attempt_at: datetime
    ) -> None:
        job = self._jobs.get(auction_id)
        if job is not None:
            job.attempts += 1
            job.last_error = error
            job.next_attempt_at = next_attempt_at

    async def get_finalization_job(self, auction_id: UUID) -> FinalizationJob | None:
        job = self._jobs.get(auction_id)
        return _copy(job) if job is not None else None

    # ==================== Orders ====================

    async def create_order_once(self, order: Order) -> Order:
        existing = self._orders.get(order.auction_id)
        if existing is None:
            if order.created_at is None:
                order.created_at = utcnow()
            existing = _copy(order)
            self._orders[order.auction_id] = existing
        return _copy(existing)

    async def list_buyer_orders(
        self, buyer_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Order], int]:
        orders = [o for o in self._orders.values() if o.buyer_id == buyer_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [_copy(o) for o in orders[skip : skip + limit]], len(orders)

    # ==================== Notifications ====================

    async def save_notification(self, notification: Notification) -> bool:
        if notification.dedupe_key in self._dedupe_keys:
            return False
        if notification.created_at is None:
            notification.created_at = utcnow()
        if notification.is_read is None:
            notification.is_read = False
        self._dedupe_keys.add(notification.dedupe_key)
        self._notifications[notification.notification_id] = _copy(notification)
        return True

    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, skip: int = 0, limit: int = 50
    ) -> tuple[list[Notification], int]:
        items = [
            n
            for n in self._notifications.values()
            if n.user_id == user_id and not (unread_only and n.is_read)
        ]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return [_copy(n) for n in items[skip : skip + limit]], len(items)

    async def mark_notification_read(self, notification_id: UUID, user_id: UUID) -> bool:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        notification.is_read = True
        return True
