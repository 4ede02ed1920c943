"""Concurrency tests for bid admission.

Tests verify:
- Concurrent bids on one auction are serialized and the ledger stays
  strictly increasing
- The cached high bid always equals the ledger maximum
- Lost lock races surface as TRY_AGAIN after bounded retries
- Redis outages fall back to the row lock
- Different auctions never wait on each other
- The admission timeout rolls back unstaged bids and never reports a
  committed bid as rejected
"""

import asyncio
import random
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from auction_service.schemas.events import BidPlaced
from auction_service.services.bid_service import BidAdmissionService
from auction_service.services.locks import AuctionLocks
from auction_service.services.redis_service import RedisService


def make_bid_service(services, locks, clock, max_retries=2, admission_timeout=None):
    return BidAdmissionService(
        services.store,
        services.state_machine,
        locks,
        services.event_bus,
        clock=clock,
        max_retries=max_retries,
        retry_backoff=0,
        admission_timeout=admission_timeout,
    )


class TestConcurrentBids:
    """Test serialization of simultaneous bids on one auction."""

    @pytest.mark.asyncio
    async def test_ledger_strictly_increasing(self, services, create_auction):
        auction = await create_auction(starting_price="100.00")
        amounts = [Decimal(101 + i) for i in range(20)]
        random.Random(7).shuffle(amounts)

        outcomes = await asyncio.gather(
            *(services.bids.place_bid(auction.auction_id, uuid4(), amount) for amount in amounts)
        )

        accepted = [o for o in outcomes if o.accepted]
        rejected = [o for o in outcomes if not o.accepted]
        assert accepted
        assert all(o.error_kind == "BID_TOO_LOW" for o in rejected)

        ledger, total = await services.store.list_bids(auction.auction_id)
        assert total == len(accepted)
        assert [b.sequence for b in ledger] == list(range(1, total + 1))
        for earlier, later in zip(ledger, ledger[1:]):
            assert later.amount > earlier.amount

        stored = await services.store.get_auction(auction.auction_id)
        assert stored.high_bid_amount == max(b.amount for b in ledger)
        assert stored.high_bid_amount == ledger[-1].amount
        assert stored.high_bidder_id == ledger[-1].bidder_id
        assert stored.bid_count == total

    @pytest.mark.asyncio
    async def test_identical_amounts_admit_one(self, services, create_auction):
        auction = await create_auction(starting_price="100.00")

        outcomes = await asyncio.gather(
            *(services.bids.place_bid(auction.auction_id, uuid4(), Decimal("150")) for _ in range(10))
        )

        assert sum(o.accepted for o in outcomes) == 1
        assert all(
            o.min_acceptable_amount == Decimal("150.01") for o in outcomes if not o.accepted
        )

    @pytest.mark.asyncio
    async def test_bids_racing_close_never_land_after_it(
        self, services, create_auction, clock, seller_id
    ):
        auction = await create_auction(starting_price="100.00")

        results = await asyncio.gather(
            *(services.bids.place_bid(auction.auction_id, uuid4(), Decimal(110 + i)) for i in range(5)),
            services.auctions.close_auction(auction.auction_id, seller_id),
            *(services.bids.place_bid(auction.auction_id, uuid4(), Decimal(120 + i)) for i in range(5)),
        )

        close_result = results[5]
        ledger, _ = await services.store.list_bids(auction.auction_id)
        if ledger:
            assert close_result.final_price == max(b.amount for b in ledger)
        else:
            assert close_result.final_price is None
        for outcome in results[:5] + results[6:]:
            if not outcome.accepted:
                assert outcome.error_kind in ("BID_TOO_LOW", "AUCTION_ALREADY_ENDED")


class TestLockContention:
    """Test lock timeouts and Redis fallbacks."""

    @pytest.mark.asyncio
    async def test_distributed_lock_retries_exhausted(
        self, services, create_auction, clock, mock_redis, bidder_a
    ):
        auction = await create_auction()
        mock_redis.set = AsyncMock(return_value=None)
        locks = AuctionLocks(RedisService(mock_redis), timeout=0.05, retry_delay=0.01)
        bids = make_bid_service(services, locks, clock, max_retries=2)

        outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        assert outcome.error_kind == "TRY_AGAIN"
        assert mock_redis.set.await_count >= 3
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.bid_count == 0

    @pytest.mark.asyncio
    async def test_redis_outage_falls_back_to_row_lock(
        self, services, create_auction, clock, mock_redis, bidder_a
    ):
        auction = await create_auction()
        mock_redis.set.side_effect = RedisConnectionError("connection refused")
        locks = AuctionLocks(RedisService(mock_redis), timeout=0.05)
        bids = make_bid_service(services, locks, clock)

        outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        assert outcome.accepted

    @pytest.mark.asyncio
    async def test_distributed_lock_released_after_bid(
        self, services, create_auction, clock, mock_redis, bidder_a
    ):
        auction = await create_auction()
        locks = AuctionLocks(RedisService(mock_redis), timeout=0.05)
        bids = make_bid_service(services, locks, clock)

        outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        assert outcome.accepted
        key = f"lock:auction:{auction.auction_id}"
        assert mock_redis.set.await_args.args[0] == key
        release = mock_redis.register_script.return_value
        assert release.await_args.kwargs["keys"] == [key]
        assert not locks.is_locked(auction.auction_id)

    @pytest.mark.asyncio
    async def test_local_lock_timeout(self, services, create_auction, clock, bidder_a):
        auction = await create_auction()
        locks = AuctionLocks(timeout=0.05)
        bids = make_bid_service(services, locks, clock, max_retries=1)

        async with locks.hold(auction.auction_id):
            outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        assert outcome.error_kind == "TRY_AGAIN"

    @pytest.mark.asyncio
    async def test_other_auctions_not_blocked(
        self, services, create_auction, clock, bidder_a
    ):
        held = await create_auction()
        free = await create_auction()
        locks = AuctionLocks(timeout=0.05)
        bids = make_bid_service(services, locks, clock, max_retries=0)

        async with locks.hold(held.auction_id):
            outcome = await bids.place_bid(free.auction_id, bidder_a, Decimal("150"))

        assert outcome.accepted
        assert not locks.is_locked(held.auction_id)


class TestAdmissionTimeout:
    """Test the admission time budget."""

    @pytest.mark.asyncio
    async def test_timeout_while_waiting_leaves_no_bid(
        self, services, create_auction, clock, bidder_a
    ):
        auction = await create_auction()
        locks = AuctionLocks(timeout=2.0)
        bids = make_bid_service(services, locks, clock, admission_timeout=0.05)

        async with locks.hold(auction.auction_id):
            outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        assert outcome.error_kind == "TRY_AGAIN"
        assert "timed out" in outcome.error.message
        _, total = await services.store.list_bids(auction.auction_id)
        assert total == 0
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.bid_count == 0
        assert not locks.is_locked(auction.auction_id)

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_delay_admission(
        self, services, create_auction, clock, bidder_a
    ):
        auction = await create_auction()
        bids = make_bid_service(
            services, AuctionLocks(), clock, admission_timeout=0.05
        )
        release = asyncio.Event()
        received = []

        async def slow_watcher(event):
            await release.wait()
            received.append(event)

        services.event_bus.subscribe(BidPlaced, slow_watcher)

        outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        assert outcome.accepted
        assert received == []
        _, total = await services.store.list_bids(auction.auction_id)
        assert total == 1

        release.set()
        await bids.drain()
        assert [e.bid_id for e in received] == [outcome.bid.bid_id]

    @pytest.mark.asyncio
    async def test_failing_snapshot_refresh_is_logged(
        self, services, create_auction, clock, bidder_a, mock_redis, caplog
    ):
        auction = await create_auction()
        mock_redis.register_script = MagicMock(
            return_value=AsyncMock(side_effect=RuntimeError("script crashed"))
        )
        bids = BidAdmissionService(
            services.store,
            services.state_machine,
            AuctionLocks(),
            redis_service=RedisService(mock_redis),
            clock=clock,
        )

        outcome = await bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        await bids.drain()

        assert outcome.accepted
        assert "Post-commit handling of bid" in caplog.text
