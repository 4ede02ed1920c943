"""Auction persistence backends."""

from auction_service.stores.base import AuctionStore, AuctionTransaction
from auction_service.stores.memory import MemoryAuctionStore

__all__ = [
    "AuctionStore",
    "AuctionTransaction",
    "MemoryAuctionStore",
    "create_store",
]


def create_store() -> AuctionStore:
    """Build the store selected by ``AUCTION_STORE``."""
    from auction_service.core.config import settings

    if settings.AUCTION_STORE == "memory":
        return MemoryAuctionStore()

    from auction_service.core.database import get_session_maker
    from auction_service.stores.sql import SqlAuctionStore

    return SqlAuctionStore(
        get_session_maker(),
        lock_timeout_seconds=settings.AUCTION_LOCK_TIMEOUT_SECONDS,
    )
