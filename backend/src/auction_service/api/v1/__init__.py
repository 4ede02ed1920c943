"""API v1 routers."""

from auction_service.api.v1 import auctions, bids, notifications, orders, ws

__all__ = ["auctions", "bids", "notifications", "orders", "ws"]
