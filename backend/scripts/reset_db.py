"""Reset database to empty state.

Clears all data from:
- finalization_jobs
- notifications
- orders
- bids
- auctions

Also clears Redis data.

Usage:
    cd backend && python -m scripts.reset_db
"""

import asyncio

from redis.exceptions import RedisError
from sqlalchemy import text

from auction_service.core.database import dispose_engine, get_session_maker
from auction_service.core.redis import close_redis, get_redis


async def reset_database():
    """Clear all data from the database."""
    print("=" * 60)
    print("Resetting database to empty state...")
    print("=" * 60)

    async with get_session_maker()() as session:
        # Delete in correct order due to foreign key constraints
        tables = ["finalization_jobs", "notifications", "orders", "bids", "auctions"]

        for table in tables:
            result = await session.execute(text(f"DELETE FROM {table}"))
            print(f"  Deleted {result.rowcount} rows from {table}")

        await session.commit()
        print("\nDatabase cleared successfully!")


async def reset_redis():
    """Clear all Redis data."""
    print("\nResetting Redis...")

    redis = await get_redis()
    if redis is None:
        print("  Redis disabled, nothing to clear")
        return

    try:
        await redis.flushdb()
        print("  Redis flushed successfully!")
    except RedisError as e:
        print(f"  Warning: Could not clear Redis: {e}")
        print("  (This is OK if Redis is not running locally)")
    finally:
        await close_redis()


async def main():
    await reset_database()
    await reset_redis()

    print("\n" + "=" * 60)
    print("Reset complete!")
    print("=" * 60)

    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
