"""Pydantic schemas for request/response validation."""

from auction_service.schemas.auction import (
    AuctionCreate,
    AuctionListResponse,
    AuctionResponse,
    CloseResultResponse,
)
from auction_service.schemas.bid import BidCreate, BidHistoryResponse, BidResponse
from auction_service.schemas.events import AuctionClosed, BidPlaced, DomainEvent
from auction_service.schemas.notification import NotificationListResponse, NotificationResponse
from auction_service.schemas.order import OrderListResponse, OrderResponse

__all__ = [
    "AuctionCreate",
    "AuctionResponse",
    "AuctionListResponse",
    "CloseResultResponse",
    "BidCreate",
    "BidResponse",
    "BidHistoryResponse",
    "DomainEvent",
    "BidPlaced",
    "AuctionClosed",
    "NotificationResponse",
    "NotificationListResponse",
    "OrderResponse",
    "OrderListResponse",
]
