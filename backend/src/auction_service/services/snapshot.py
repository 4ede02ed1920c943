"""Auction snapshot cache kept in Redis for read paths."""

import logging
from typing import Any

from redis.exceptions import RedisError

from auction_service.models.auction import Auction
from auction_service.services.redis_service import RedisService

logger = logging.getLogger(__name__)


def snapshot_fields(auction: Auction) -> dict[str, Any]:
    return {
        "auction_id": auction.auction_id,
        "seller_id": auction.seller_id,
        "title": auction.title,
        "state": auction.state,
        "starting_price": auction.starting_price,
        "reserve_price": auction.reserve_price,
        "high_bid_amount": auction.high_bid_amount,
        "high_bidder_id": auction.high_bidder_id,
        "bid_count": auction.bid_count,
        "end_time": auction.end_time.isoformat(),
    }


async def refresh_snapshot(
    redis_service: RedisService | None, auction: Auction, ttl: int
) -> None:
    """Write the committed auction state to the cache.

    Cache failures are logged and never reach the caller; the database row
    stays authoritative.
    """
    if redis_service is None:
        return
    try:
        await redis_service.cache_auction(
            str(auction.auction_id), snapshot_fields(auction), auction.version, ttl
        )
    except RedisError as e:
        logger.warning(f"Failed to cache snapshot of auction {auction.auction_id}: {e}")


def snapshot_strings(auction: Auction) -> dict[str, str]:
    """Snapshot as stored in Redis: every value a string, None as ''."""
    fields = {"version": str(auction.version)}
    for name, value in snapshot_fields(auction).items():
        fields[name] = "" if value is None else str(value)
    return fields
