"""Auction schemas for request/response validation."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from auction_service.models.auction import AuctionState


class AuctionCreate(BaseModel):
    """Schema for auction creation request."""

    title: str = Field(..., min_length=1, max_length=200)
    starting_price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reserve_price: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    start_time: datetime | None = None
    end_time: datetime

    @model_validator(mode="after")
    def check_prices_and_window(self) -> "AuctionCreate":
        # Naive timestamps are taken as UTC
        if self.end_time.tzinfo is None:
            self.end_time = self.end_time.replace(tzinfo=timezone.utc)
        if self.start_time is not None and self.start_time.tzinfo is None:
            self.start_time = self.start_time.replace(tzinfo=timezone.utc)
        if self.reserve_price is not None and self.reserve_price < self.starting_price:
            raise ValueError("reserve_price must be at least starting_price")
        if self.start_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AuctionResponse(BaseModel):
    """Schema for auction response."""

    auction_id: UUID
    seller_id: UUID
    title: str
    starting_price: Decimal
    reserve_price: Decimal | None = None
    start_time: datetime | None = None
    end_time: datetime
    state: AuctionState
    high_bid_amount: Decimal | None = None
    high_bidder_id: UUID | None = None
    bid_count: int
    min_acceptable_amount: Decimal | None = None
    winner_id: UUID | None = None
    final_price: Decimal | None = None
    close_reason: str | None = None
    closed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuctionListResponse(BaseModel):
    """Schema for auction list response."""

    auctions: list[AuctionResponse]
    total: int


class CloseResultResponse(BaseModel):
    """Schema for an auction's close outcome."""

    auction_id: UUID
    outcome: AuctionState
    winner_id: UUID | None = None
    final_price: Decimal | None = None
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}
