"""Domain events emitted by the auction state machine.

Event ids are derived from the entity that caused them (the bid for
``BidPlaced``, the auction for ``AuctionClosed``), so republishing the same
transition produces the same id and downstream deduplication holds.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from auction_service.models.auction import AuctionState, CloseReason


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: UUID
    auction_id: UUID
    occurred_at: datetime


class BidPlaced(DomainEvent):
    """A bid was admitted and became the auction's high bid."""

    seller_id: UUID
    title: str
    bid_id: UUID
    bidder_id: UUID
    amount: Decimal
    sequence: int
    previous_high_bidder_id: UUID | None = None
    previous_high_amount: Decimal | None = None

    @property
    def displaced_bidder_id(self) -> UUID | None:
        """Previous high bidder, unless they just raised their own bid."""
        if self.previous_high_bidder_id == self.bidder_id:
            return None
        return self.previous_high_bidder_id


class AuctionClosed(DomainEvent):
    """An auction reached a closed terminal state."""

    seller_id: UUID
    title: str
    outcome: AuctionState
    reason: CloseReason
    winner_id: UUID | None = None
    final_price: Decimal | None = None
    bid_count: int = 0
