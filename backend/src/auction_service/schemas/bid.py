"""Bid schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class BidCreate(BaseModel):
    """Schema for bid creation request."""

    auction_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class BidResponse(BaseModel):
    """Schema for bid response."""

    bid_id: UUID
    auction_id: UUID
    bidder_id: UUID
    amount: Decimal
    sequence: int
    created_at: datetime

    model_config = {"from_attributes": True}


class BidHistoryResponse(BaseModel):
    """Schema for bid history response."""

    bids: list[BidResponse]
    total: int
