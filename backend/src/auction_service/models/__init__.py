"""SQLAlchemy ORM models."""

from auction_service.models.auction import Auction, AuctionState, CloseReason, TERMINAL_STATES
from auction_service.models.base import TimestampMixin
from auction_service.models.bid import Bid
from auction_service.models.finalization import FinalizationJob
from auction_service.models.notification import Notification
from auction_service.models.order import Order

__all__ = [
    "TimestampMixin",
    "Auction",
    "AuctionState",
    "CloseReason",
    "TERMINAL_STATES",
    "Bid",
    "Order",
    "Notification",
    "FinalizationJob",
]
