"""Tests for Redis locks, the snapshot cache and closer leadership."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from auction_service.services.closer import CloserLeadership
from auction_service.services.redis_service import RedisService
from auction_service.services.snapshot import refresh_snapshot


class TestDistributedLock:
    """Test lock acquisition, release and extension."""

    @pytest.mark.asyncio
    async def test_acquire_lock_success(self, mock_redis):
        service = RedisService(mock_redis)

        acquired, owner_id = await service.acquire_lock("auction:123", ttl=5)

        assert acquired is True
        mock_redis.set.assert_awaited_once_with("lock:auction:123", owner_id, nx=True, ex=5)

    @pytest.mark.asyncio
    async def test_acquire_lock_held_elsewhere(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)
        service = RedisService(mock_redis)

        acquired, _ = await service.acquire_lock("auction:123", owner_id="worker-1")

        assert acquired is False

    @pytest.mark.asyncio
    async def test_release_lock_only_own(self, mock_redis):
        script = AsyncMock(return_value=0)
        mock_redis.register_script = MagicMock(return_value=script)
        service = RedisService(mock_redis)

        released = await service.release_lock("auction:123", "someone-else")

        assert released is False
        script.assert_awaited_once_with(keys=["lock:auction:123"], args=["someone-else"])

    @pytest.mark.asyncio
    async def test_extend_lock(self, mock_redis):
        service = RedisService(mock_redis)

        assert await service.extend_lock("closer", "worker-1", 10) is True

        script = mock_redis.register_script.return_value
        script.assert_awaited_once_with(keys=["lock:closer"], args=["worker-1", 10])


class TestSnapshotCache:
    """Test version-guarded auction snapshots."""

    @pytest.mark.asyncio
    async def test_cache_auction_args(self, mock_redis):
        service = RedisService(mock_redis)

        written = await service.cache_auction(
            "abc", {"high_bid_amount": Decimal("110.00"), "reserve_price": None}, version=4, ttl=60
        )

        assert written is True
        script = mock_redis.register_script.return_value
        script.assert_awaited_once_with(
            keys=["auction:abc"],
            args=[4, 60, "version", "4", "high_bid_amount", "110.00", "reserve_price", ""],
        )

    @pytest.mark.asyncio
    async def test_stale_snapshot_not_written(self, mock_redis):
        mock_redis.register_script = MagicMock(return_value=AsyncMock(return_value=0))
        service = RedisService(mock_redis)

        assert await service.cache_auction("abc", {}, version=1, ttl=60) is False

    @pytest.mark.asyncio
    async def test_get_cached_auction_miss(self, mock_redis):
        service = RedisService(mock_redis)

        assert await service.get_cached_auction("abc") is None

    @pytest.mark.asyncio
    async def test_snapshot_served_from_cache(self, services, mock_redis, create_auction):
        auction = await create_auction()
        mock_redis.hgetall = AsyncMock(return_value={"auction_id": str(auction.auction_id)})
        services.auctions.redis_service = RedisService(mock_redis)

        snapshot = await services.auctions.get_snapshot(auction.auction_id)

        assert snapshot == {"auction_id": str(auction.auction_id)}
        mock_redis.register_script.return_value.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_snapshot_miss_reads_store_and_refills(
        self, services, mock_redis, create_auction, bidder_a
    ):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        services.auctions.redis_service = RedisService(mock_redis)

        snapshot = await services.auctions.get_snapshot(auction.auction_id)

        assert snapshot["high_bid_amount"] == "150"
        assert snapshot["high_bidder_id"] == str(bidder_a)
        assert snapshot["reserve_price"] == ""
        assert snapshot["version"] == "1"
        mock_redis.register_script.return_value.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_snapshot_swallows_redis_errors(
        self, mock_redis, create_auction
    ):
        auction = await create_auction()
        mock_redis.register_script = MagicMock(
            return_value=AsyncMock(side_effect=RedisConnectionError("connection refused"))
        )

        await refresh_snapshot(RedisService(mock_redis), auction, ttl=60)


class TestCloserLeadership:
    """Test the closer lease."""

    @pytest.mark.asyncio
    async def test_without_redis_always_leader(self):
        assert await CloserLeadership(None, ttl=10).is_leader() is True

    @pytest.mark.asyncio
    async def test_acquires_then_extends(self, mock_redis):
        leadership = CloserLeadership(RedisService(mock_redis), ttl=10)

        assert await leadership.is_leader() is True
        assert await leadership.is_leader() is True

        mock_redis.set.assert_awaited_once_with(
            "lock:closer", leadership.owner_id, nx=True, ex=10
        )
        extend = mock_redis.register_script.return_value
        extend.assert_awaited_once_with(keys=["lock:closer"], args=[leadership.owner_id, 10])

    @pytest.mark.asyncio
    async def test_follower_when_lease_taken(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)
        leadership = CloserLeadership(RedisService(mock_redis), ttl=10)

        assert await leadership.is_leader() is False

    @pytest.mark.asyncio
    async def test_redis_error_means_not_leader(self, mock_redis):
        mock_redis.set = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        leadership = CloserLeadership(RedisService(mock_redis), ttl=10)

        assert await leadership.is_leader() is False

    @pytest.mark.asyncio
    async def test_resign_releases_lease(self, mock_redis):
        leadership = CloserLeadership(RedisService(mock_redis), ttl=10)
        await leadership.is_leader()

        await leadership.resign()

        assert leadership.leading is False
        release = mock_redis.register_script.return_value
        release.assert_awaited_once_with(keys=["lock:closer"], args=[leadership.owner_id])
