"""Tests for the auction closer and post-close finalization.

Tests verify:
- Expired auctions close exactly once with the correct outcome
- Reserve prices are enforced
- Orders and winner/seller notifications follow a sale
- Failed finalization is retried with backoff
- Scheduled auctions open when due
- Seller-only manual close and cancellation
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from auction_service.core.exceptions import (
    ConflictError,
    InvalidTransition,
    PermissionDenied,
)
from auction_service.models.auction import AuctionState, CloseReason
from auction_service.schemas.events import AuctionClosed


async def notification_kinds(services, user_id) -> set[str]:
    notifications, _ = await services.notifications.get_notifications(user_id)
    return {n.kind for n in notifications}


class TestCloseExpired:
    """Test closing auctions past their end time."""

    @pytest.mark.asyncio
    async def test_sold_to_highest_bidder(
        self, services, create_auction, clock, seller_id, bidder_a, bidder_b, drain_notifications
    ):
        """A bids 105, B outbids at 110, the auction expires and B wins."""
        auction = await create_auction(starting_price="100.00", duration=10)
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("105"))
        await services.bids.place_bid(auction.auction_id, bidder_b, Decimal("110"))

        clock.advance(minutes=10)
        closed = await services.closer.run_once()

        assert closed == 1
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.current_state == AuctionState.CLOSED_SOLD
        assert stored.winner_id == bidder_b
        assert stored.final_price == Decimal("110")
        assert stored.close_reason == CloseReason.EXPIRED.value

        orders, total = await services.store.list_buyer_orders(bidder_b)
        assert total == 1
        assert orders[0].final_price == Decimal("110")
        assert orders[0].seller_id == seller_id
        assert orders[0].status == "pending_payment"

        await drain_notifications()
        assert await notification_kinds(services, bidder_a) == {"OUTBID"}
        assert await notification_kinds(services, bidder_b) == {"AUCTION_WON"}
        assert await notification_kinds(services, seller_id) == {"BID_PLACED", "ITEM_SOLD"}

    @pytest.mark.asyncio
    async def test_reserve_not_met(
        self, services, create_auction, clock, bidder_a, drain_notifications
    ):
        """50 start, 200 reserve, single 80 bid: closes without a sale."""
        auction = await create_auction(starting_price="50.00", reserve_price="200.00")
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("80"))

        clock.advance(minutes=10)
        result = await services.closer.close_auction(auction.auction_id)

        assert result.outcome == AuctionState.CLOSED_NO_SALE
        assert result.winner_id is None
        assert result.final_price is None
        orders, total = await services.store.list_buyer_orders(bidder_a)
        assert total == 0

        await drain_notifications()
        assert "AUCTION_WON" not in await notification_kinds(services, bidder_a)

    @pytest.mark.asyncio
    async def test_no_bids_closes_without_sale(self, services, create_auction, clock):
        auction = await create_auction()
        clock.advance(minutes=10)

        result = await services.closer.close_auction(auction.auction_id)

        assert result.outcome == AuctionState.CLOSED_NO_SALE

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, services, create_auction, clock, bidder_a):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        clock.advance(minutes=10)
        published = []

        async def capture(event):
            published.append(event)

        services.event_bus.subscribe(AuctionClosed, capture)

        first = await services.closer.close_auction(auction.auction_id)
        clock.advance(minutes=1)
        second = await services.closer.close_auction(auction.auction_id)

        assert first == second
        assert len(published) == 1
        orders, total = await services.store.list_buyer_orders(bidder_a)
        assert total == 1
        assert await services.closer.run_once() == 0

    @pytest.mark.asyncio
    async def test_not_closed_before_end_time(self, services, create_auction, clock):
        auction = await create_auction(duration=10)
        clock.advance(minutes=9)

        assert await services.closer.run_once() == 0
        with pytest.raises(InvalidTransition):
            await services.closer.close_auction(auction.auction_id, CloseReason.EXPIRED)

        stored = await services.store.get_auction(auction.auction_id)
        assert stored.current_state == AuctionState.OPEN

    @pytest.mark.asyncio
    async def test_auction_left_closing_is_finished(self, services, create_auction, clock, bidder_a):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        async with services.store.transaction(auction.auction_id) as tx:
            services.state_machine.begin_closing(tx.auction, CloseReason.MANUAL, clock())

        assert await services.closer.run_once() == 1

        stored = await services.store.get_auction(auction.auction_id)
        assert stored.current_state == AuctionState.CLOSED_SOLD
        assert stored.close_reason == CloseReason.MANUAL.value

    @pytest.mark.asyncio
    async def test_cancelled_auction_cannot_close(self, services, create_auction, seller_id):
        auction = await create_auction()
        await services.auctions.cancel_auction(auction.auction_id, seller_id)

        with pytest.raises(InvalidTransition):
            await services.closer.close_auction(auction.auction_id, CloseReason.MANUAL)


class TestFinalization:
    """Test retry of post-close side effects."""

    @pytest.mark.asyncio
    async def test_failed_finalization_retried_with_backoff(
        self, services, store, create_auction, clock, bidder_a, monkeypatch
    ):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        clock.advance(minutes=10)

        flaky = AsyncMock(side_effect=RuntimeError("orders table unavailable"))
        monkeypatch.setattr(store, "create_order_once", flaky)

        result = await services.closer.close_auction(auction.auction_id)

        assert result.outcome == AuctionState.CLOSED_SOLD
        job = await store.get_finalization_job(auction.auction_id)
        assert job.status == "pending"
        assert job.attempts == 1
        assert job.last_error == "orders table unavailable"
        assert job.next_attempt_at == clock.now + timedelta(seconds=1)

        # Backoff has not elapsed yet
        assert await services.finalizer.retry_due() == 0

        monkeypatch.undo()
        clock.advance(seconds=1)
        assert await services.finalizer.retry_due() == 1

        job = await store.get_finalization_job(auction.auction_id)
        assert job.status == "done"
        orders, total = await store.list_buyer_orders(bidder_a)
        assert total == 1

    @pytest.mark.asyncio
    async def test_new_job_not_retried_before_backoff(
        self, services, store, create_auction, clock, bidder_a, monkeypatch
    ):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        clock.advance(minutes=10)

        # Close without the immediate finalization, as if the worker stopped there
        monkeypatch.setattr(services.finalizer, "finalize", AsyncMock(return_value=False))
        await services.closer.close_auction(auction.auction_id)
        monkeypatch.undo()

        job = await store.get_finalization_job(auction.auction_id)
        assert job.attempts == 0
        assert job.next_attempt_at == clock.now + timedelta(seconds=1)
        assert await services.finalizer.retry_due() == 0

        clock.advance(seconds=1)
        assert await services.finalizer.retry_due() == 1

    @pytest.mark.asyncio
    async def test_finalize_twice_creates_one_order(
        self, services, store, create_auction, clock, bidder_a
    ):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        clock.advance(minutes=10)
        await services.closer.close_auction(auction.auction_id)

        assert await services.finalizer.finalize(auction.auction_id) is True

        orders, total = await store.list_buyer_orders(bidder_a)
        assert total == 1


class TestOpenScheduled:
    """Test SCHEDULED -> OPEN."""

    @pytest.mark.asyncio
    async def test_run_once_opens_due_auctions(self, services, create_auction, clock, bidder_a):
        auction = await create_auction(start_in=5)

        await services.closer.run_once()
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.current_state == AuctionState.SCHEDULED

        clock.advance(minutes=5)
        await services.closer.run_once()
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.current_state == AuctionState.OPEN

        outcome = await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))
        assert outcome.accepted

    @pytest.mark.asyncio
    async def test_scheduled_auction_cannot_close(self, services, create_auction, seller_id):
        auction = await create_auction(start_in=5)

        with pytest.raises(InvalidTransition):
            await services.auctions.close_auction(auction.auction_id, seller_id)


class TestSellerActions:
    """Test seller-only manual close and cancellation."""

    @pytest.mark.asyncio
    async def test_manual_close_before_end(self, services, create_auction, seller_id, bidder_a):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        result = await services.auctions.close_auction(auction.auction_id, seller_id)

        assert result.outcome == AuctionState.CLOSED_SOLD
        assert result.winner_id == bidder_a
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.close_reason == CloseReason.MANUAL.value

    @pytest.mark.asyncio
    async def test_only_seller_may_close(self, services, create_auction, bidder_a):
        auction = await create_auction()

        with pytest.raises(PermissionDenied):
            await services.auctions.close_auction(auction.auction_id, bidder_a)

    @pytest.mark.asyncio
    async def test_cancel_without_bids(self, services, create_auction, seller_id):
        auction = await create_auction()

        cancelled = await services.auctions.cancel_auction(auction.auction_id, seller_id)

        assert cancelled.current_state == AuctionState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_with_bids_conflicts(self, services, create_auction, seller_id, bidder_a):
        auction = await create_auction()
        await services.bids.place_bid(auction.auction_id, bidder_a, Decimal("150"))

        with pytest.raises(ConflictError):
            await services.auctions.cancel_auction(auction.auction_id, seller_id)

    @pytest.mark.asyncio
    async def test_cancel_closed_auction_rejected(self, services, create_auction, seller_id, clock):
        auction = await create_auction()
        clock.advance(minutes=10)
        await services.closer.close_auction(auction.auction_id)

        with pytest.raises(InvalidTransition):
            await services.auctions.cancel_auction(auction.auction_id, seller_id)
