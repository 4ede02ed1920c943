"""WebSocket event schemas for real-time communication."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel


class BidUpdateData(BaseModel):
    """Data payload for bid update event."""

    auction_id: UUID
    bid_id: UUID
    bidder_id: UUID
    amount: Decimal
    sequence: int
    timestamp: datetime


class BidUpdateEvent(BaseModel):
    """New high bid pushed to everyone watching an auction room."""

    event: Literal["bid_update"] = "bid_update"
    data: BidUpdateData


class AuctionClosedData(BaseModel):
    """Data payload for auction closed event."""

    auction_id: UUID
    outcome: str
    winner_id: UUID | None = None
    final_price: Decimal | None = None
    bid_count: int


class AuctionClosedEvent(BaseModel):
    """Auction closed event pushed to everyone watching an auction room."""

    event: Literal["auction_closed"] = "auction_closed"
    data: AuctionClosedData


class NotificationData(BaseModel):
    """Data payload for a personal notification."""

    notification_id: UUID
    kind: str
    title: str
    message: str
    data: dict[str, Any]
    created_at: datetime


class NotificationEvent(BaseModel):
    """Notification pushed to every connection of its recipient."""

    event: Literal["notification"] = "notification"
    data: NotificationData


# Type alias for all WebSocket events
WSEvent = BidUpdateEvent | AuctionClosedEvent | NotificationEvent
