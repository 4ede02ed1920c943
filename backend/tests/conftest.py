"""Pytest configuration and fixtures for testing."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest

from auction_service.models.auction import Auction
from auction_service.schemas.auction import AuctionCreate
from auction_service.services.container import Services, build_services
from auction_service.stores.memory import MemoryAuctionStore


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# Mock Redis client fixture
@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client."""
    redis = AsyncMock()

    # Mock common Redis operations
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.hgetall = AsyncMock(return_value={})

    # Lua scripts: every registered script reports success
    redis.register_script = MagicMock(return_value=AsyncMock(return_value=1))

    return redis


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> MemoryAuctionStore:
    return MemoryAuctionStore()


@pytest.fixture
def services(store: MemoryAuctionStore, clock: FakeClock) -> Services:
    """Service graph on the in-memory store, without Redis or websockets."""
    return build_services(store, clock=clock, broadcast=False)


@pytest.fixture
def seller_id() -> UUID:
    return uuid4()


@pytest.fixture
def bidder_a() -> UUID:
    return uuid4()


@pytest.fixture
def bidder_b() -> UUID:
    return uuid4()


@pytest.fixture
def create_auction(services: Services, seller_id: UUID, clock: FakeClock):
    """Factory creating auctions through AuctionService.

    ``start_in`` (minutes) schedules the auction instead of opening it now;
    ``duration`` (minutes) counts from the start.
    """

    async def _create(
        starting_price: str = "100.00",
        reserve_price: str | None = None,
        duration: int = 10,
        start_in: int | None = None,
        seller: UUID | None = None,
    ) -> Auction:
        start_time = clock.now + timedelta(minutes=start_in) if start_in is not None else None
        data = AuctionCreate(
            title="Vintage Camera",
            starting_price=Decimal(starting_price),
            reserve_price=Decimal(reserve_price) if reserve_price is not None else None,
            start_time=start_time,
            end_time=(start_time or clock.now) + timedelta(minutes=duration),
        )
        return await services.auctions.create_auction(seller or seller_id, data)

    return _create


@pytest.fixture
def drain_notifications(services: Services):
    """Run the fan-out workers until every queued delivery is handled."""

    async def _drain() -> None:
        await services.bids.drain()
        services.notifications.start()
        try:
            await services.notifications.drain()
        finally:
            await services.notifications.stop()

    return _drain
