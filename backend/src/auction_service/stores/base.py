"""Persistence interface for auctions, the bid ledger and follow-up records.

``transaction(auction_id)`` is the per-auction serialization point of the
storage layer: while it is open no other transaction can read-for-write or
modify the same auction, and everything staged in it is committed together
or not at all.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager
from uuid import UUID

from auction_service.models.auction import Auction, AuctionState
from auction_service.models.bid import Bid
from auction_service.models.finalization import FinalizationJob
from auction_service.models.notification import Notification
from auction_service.models.order import Order


class AuctionTransaction(ABC):
    """Read-modify-write scope for a single auction.

    ``auction`` is None when the auction does not exist. Changes made to
    ``auction`` are persisted when the scope exits without an exception.
    """

    auction: Auction | None

    @abstractmethod
    async def top_bid(self) -> Bid | None:
        """Highest bid in the ledger (ground truth for the cached fields)."""

    @abstractmethod
    async def next_sequence(self) -> int:
        """Ledger sequence number for the next appended bid."""

    @abstractmethod
    def append_bid(self, bid: Bid) -> None:
        """Stage a bid for insertion into the ledger."""

    @abstractmethod
    def add_finalization_job(self, job: FinalizationJob) -> None:
        """Stage a finalization job for this auction."""


class AuctionStore(ABC):
    """Durable store for Auction and Bid entities and their side records."""

    # ==================== Auctions ====================

    @abstractmethod
    async def add_auction(self, auction: Auction) -> Auction:
        ...

    @abstractmethod
    async def get_auction(self, auction_id: UUID) -> Auction | None:
        ...

    @abstractmethod
    async def list_auctions(
        self,
        state: AuctionState | None = None,
        seller_id: UUID | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Auction], int]:
        ...

    @abstractmethod
    def transaction(self, auction_id: UUID) -> AsyncContextManager[AuctionTransaction]:
        ...

    @abstractmethod
    async def due_to_open(self, now: datetime, limit: int) -> list[UUID]:
        """SCHEDULED auctions whose start time has passed."""

    @abstractmethod
    async def due_to_close(self, now: datetime, limit: int) -> list[UUID]:
        """OPEN auctions past their end time, plus any left in CLOSING."""

    # ==================== Bid ledger ====================

    @abstractmethod
    async def list_bids(
        self, auction_id: UUID, skip: int = 0, limit: int = 100, by_amount: bool = False
    ) -> tuple[list[Bid], int]:
        ...

    @abstractmethod
    async def list_bidder_bids(
        self, bidder_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Bid], int]:
        ...

    # ==================== Finalization jobs ====================

    @abstractmethod
    async def due_finalization_jobs(
        self, now: datetime, max_attempts: int, limit: int
    ) -> list[FinalizationJob]:
        ...

    @abstractmethod
    async def get_finalization_job(self, auction_id: UUID) -> FinalizationJob | None:
        ...

    @abstractmethod
    async def complete_finalization_job(self, auction_id: UUID, now: datetime) -> None:
        ...

    @abstractmethod
    async def fail_finalization_job(
        self, auction_id: UUID, error: str, next_attempt_at: datetime
    ) -> None:
        ...

    # ==================== Orders ====================

    @abstractmethod
    async def create_order_once(self, order: Order) -> Order:
        """Insert the order unless one already exists for the auction.

        Returns the stored order either way.
        """

    @abstractmethod
    async def list_buyer_orders(
        self, buyer_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Order], int]:
        ...

    # ==================== Notifications ====================

    @abstractmethod
    async def save_notification(self, notification: Notification) -> bool:
        """Persist a notification; False if its dedupe key was already stored."""

    @abstractmethod
    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, skip: int = 0, limit: int = 50
    ) -> tuple[list[Notification], int]:
        ...

    @abstractmethod
    async def mark_notification_read(self, notification_id: UUID, user_id: UUID) -> bool:
        ...

    async def close(self) -> None:
        """Release backend resources."""
