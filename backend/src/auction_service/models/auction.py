"""Auction model: one listing sold through competitive, time-bounded bidding."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_service.core.database import Base
from auction_service.models.base import TimestampMixin

if TYPE_CHECKING:
    from auction_service.models.bid import Bid


class AuctionState(str, enum.Enum):
    """Lifecycle states. Transitions only move forward in ``RANK`` order."""

    SCHEDULED = "SCHEDULED"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED_SOLD = "CLOSED_SOLD"
    CLOSED_NO_SALE = "CLOSED_NO_SALE"
    CANCELLED = "CANCELLED"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


_STATE_RANK = {
    AuctionState.SCHEDULED: 0,
    AuctionState.OPEN: 1,
    AuctionState.CLOSING: 2,
    AuctionState.CLOSED_SOLD: 3,
    AuctionState.CLOSED_NO_SALE: 3,
    AuctionState.CANCELLED: 3,
}

TERMINAL_STATES = frozenset(
    {AuctionState.CLOSED_SOLD, AuctionState.CLOSED_NO_SALE, AuctionState.CANCELLED}
)


class CloseReason(str, enum.Enum):
    EXPIRED = "EXPIRED"
    MANUAL = "MANUAL"


class Auction(Base, TimestampMixin):
    """Auction model.

    ``high_bid_amount``/``high_bidder_id`` are a projection of the bid
    ledger, only written while the auction's lock is held.
    """

    __tablename__ = "auctions"

    auction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    starting_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    reserve_price: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AuctionState.SCHEDULED.value,
    )
    high_bid_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    high_bidder_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    bid_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    winner_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    final_price: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    close_reason: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Relationships
    bids: Mapped[List["Bid"]] = relationship(
        "Bid", back_populates="auction", order_by="Bid.sequence"
    )

    __table_args__ = (
        CheckConstraint("starting_price > 0", name="chk_auction_starting_price_positive"),
        CheckConstraint(
            "reserve_price IS NULL OR reserve_price >= starting_price",
            name="chk_auction_reserve_price",
        ),
        Index("idx_auctions_state_end_time", "state", "end_time"),
        Index("idx_auctions_seller", "seller_id"),
    )

    @property
    def current_state(self) -> AuctionState:
        return AuctionState(self.state)

    @property
    def asking_floor(self) -> Decimal:
        """Amount a new bid must strictly exceed."""
        if self.high_bid_amount is not None:
            return self.high_bid_amount
        return self.starting_price
