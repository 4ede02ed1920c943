"""Seed data script for development and testing.

Creates:
- 1 seller and N bidders (identities only; tokens are printed)
- 1 open auction ending after AUCTION_DURATION_MINUTES
- 1 scheduled auction opening in 5 minutes with a reserve price

Environment Variables:
    AUCTION_DURATION_MINUTES: Open auction duration in minutes (default: 20)
    BIDDER_COUNT: Number of bidder tokens to print (default: 3)

Usage:
    cd backend && python -m scripts.seed_data
"""

import asyncio
import os
import uuid
from datetime import timedelta
from decimal import Decimal

from auction_service.core.database import dispose_engine
from auction_service.core.redis import close_redis, get_redis
from auction_service.core.security import create_access_token
from auction_service.models.base import utcnow
from auction_service.schemas.auction import AuctionCreate
from auction_service.services.container import build_services
from auction_service.services.redis_service import RedisService
from auction_service.stores import create_store

# Configuration from environment variables
AUCTION_DURATION_MINUTES = int(os.getenv("AUCTION_DURATION_MINUTES", "20"))
BIDDER_COUNT = int(os.getenv("BIDDER_COUNT", "3"))


async def main():
    redis = await get_redis()
    services = build_services(
        create_store(),
        RedisService(redis) if redis is not None else None,
        broadcast=False,
    )

    seller_id = uuid.uuid4()
    bidder_ids = [uuid.uuid4() for _ in range(BIDDER_COUNT)]
    now = utcnow()

    print("=" * 60)
    print("Seeding auctions...")
    print("=" * 60)

    open_auction = await services.auctions.create_auction(
        seller_id,
        AuctionCreate(
            title="Vintage Mechanical Watch",
            starting_price=Decimal("100.00"),
            end_time=now + timedelta(minutes=AUCTION_DURATION_MINUTES),
        ),
    )
    print(f"  Open auction:      {open_auction.auction_id} (ends {open_auction.end_time.isoformat()})")

    scheduled_auction = await services.auctions.create_auction(
        seller_id,
        AuctionCreate(
            title="Signed First Edition",
            starting_price=Decimal("50.00"),
            reserve_price=Decimal("200.00"),
            start_time=now + timedelta(minutes=5),
            end_time=now + timedelta(minutes=5 + AUCTION_DURATION_MINUTES),
        ),
    )
    print(f"  Scheduled auction: {scheduled_auction.auction_id} (opens in 5 minutes)")

    print("\nBearer tokens:")
    print(f"  seller {seller_id}: {create_access_token(str(seller_id))}")
    for bidder_id in bidder_ids:
        print(f"  bidder {bidder_id}: {create_access_token(str(bidder_id))}")

    print("=" * 60)

    await services.store.close()
    await close_redis()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
