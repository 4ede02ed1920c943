"""Tests for the auction lifecycle state machine.

Tests verify:
- Forward-only transitions and terminal immutability
- Cached high bid updates and BidPlaced events
- Reserve enforcement at close
- Cancellation rules
- Repair of the cached high bid from the ledger
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from auction_service.core.exceptions import (
    AuctionAlreadyEnded,
    AuctionNotOpen,
    BidTooLow,
    ConflictError,
    InvalidTransition,
)
from auction_service.models.auction import Auction, AuctionState, CloseReason
from auction_service.models.bid import Bid
from auction_service.services.state_machine import AuctionStateMachine

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_auction(**overrides) -> Auction:
    values = dict(
        auction_id=uuid4(),
        seller_id=uuid4(),
        title="Vintage Camera",
        starting_price=Decimal("100.00"),
        reserve_price=None,
        start_time=None,
        end_time=NOW + timedelta(hours=1),
        state=AuctionState.OPEN.value,
        high_bid_amount=None,
        high_bidder_id=None,
        bid_count=0,
        version=0,
    )
    values.update(overrides)
    return Auction(**values)


def make_bid(auction: Auction, amount: str, sequence: int = 1, bidder_id=None) -> Bid:
    return Bid(
        bid_id=uuid4(),
        auction_id=auction.auction_id,
        bidder_id=bidder_id or uuid4(),
        amount=Decimal(amount),
        sequence=sequence,
        created_at=NOW,
    )


@pytest.fixture
def machine() -> AuctionStateMachine:
    return AuctionStateMachine(bid_increment=Decimal("0.01"))


class TestOpen:
    """Test SCHEDULED -> OPEN."""

    def test_open_after_start_time(self, machine):
        auction = make_auction(state=AuctionState.SCHEDULED.value, start_time=NOW)

        machine.transition_to_open(auction, NOW)

        assert auction.current_state == AuctionState.OPEN
        assert auction.version == 1

    def test_open_before_start_time_rejected(self, machine):
        auction = make_auction(
            state=AuctionState.SCHEDULED.value, start_time=NOW + timedelta(minutes=5)
        )

        with pytest.raises(InvalidTransition):
            machine.transition_to_open(auction, NOW)

        assert auction.current_state == AuctionState.SCHEDULED

    def test_open_twice_rejected(self, machine):
        auction = make_auction()

        with pytest.raises(InvalidTransition):
            machine.transition_to_open(auction, NOW)


class TestRecordBid:
    """Test cached high bid updates."""

    def test_first_bid_must_exceed_starting_price(self, machine):
        auction = make_auction()

        with pytest.raises(BidTooLow) as exc_info:
            machine.record_bid(auction, make_bid(auction, "100.00"))

        assert exc_info.value.min_acceptable_amount == Decimal("100.01")
        assert auction.bid_count == 0

    def test_record_bid_updates_cache_and_returns_event(self, machine):
        auction = make_auction()
        first = make_bid(auction, "105.00", sequence=1)
        machine.record_bid(auction, first)
        second = make_bid(auction, "110.00", sequence=2)

        event = machine.record_bid(auction, second)

        assert auction.high_bid_amount == Decimal("110.00")
        assert auction.high_bidder_id == second.bidder_id
        assert auction.bid_count == 2
        assert auction.version == 2
        assert event.event_id == second.bid_id
        assert event.previous_high_bidder_id == first.bidder_id
        assert event.previous_high_amount == Decimal("105.00")
        assert event.displaced_bidder_id == first.bidder_id

    def test_raising_own_bid_displaces_nobody(self, machine):
        auction = make_auction()
        bidder = uuid4()
        machine.record_bid(auction, make_bid(auction, "105.00", 1, bidder))

        event = machine.record_bid(auction, make_bid(auction, "110.00", 2, bidder))

        assert event.displaced_bidder_id is None

    def test_equal_amount_rejected(self, machine):
        auction = make_auction()
        machine.record_bid(auction, make_bid(auction, "105.00"))

        with pytest.raises(BidTooLow) as exc_info:
            machine.record_bid(auction, make_bid(auction, "105.00", 2))

        assert exc_info.value.min_acceptable_amount == Decimal("105.01")

    def test_closing_auction_rejects_bids(self, machine):
        auction = make_auction(state=AuctionState.CLOSING.value)

        with pytest.raises(AuctionAlreadyEnded):
            machine.record_bid(auction, make_bid(auction, "500.00"))

    @pytest.mark.parametrize("state", [AuctionState.SCHEDULED, AuctionState.CANCELLED])
    def test_not_open_auction_rejects_bids(self, machine, state):
        auction = make_auction(state=state.value)

        with pytest.raises(AuctionNotOpen):
            machine.record_bid(auction, make_bid(auction, "500.00"))


class TestClose:
    """Test closing and reserve enforcement."""

    def test_close_sold_to_top_bidder(self, machine):
        auction = make_auction(end_time=NOW)
        top = make_bid(auction, "110.00")
        machine.record_bid(auction, top)
        machine.begin_closing(auction, CloseReason.EXPIRED, NOW)

        event = machine.close(auction, top, CloseReason.EXPIRED, NOW)

        assert auction.current_state == AuctionState.CLOSED_SOLD
        assert auction.winner_id == top.bidder_id
        assert auction.final_price == Decimal("110.00")
        assert auction.closed_at == NOW
        assert event.outcome == AuctionState.CLOSED_SOLD
        assert event.event_id == auction.auction_id

    def test_reserve_unmet_is_no_sale(self, machine):
        auction = make_auction(
            starting_price=Decimal("50.00"), reserve_price=Decimal("200.00"), end_time=NOW
        )
        top = make_bid(auction, "80.00")
        machine.record_bid(auction, top)

        event = machine.close(auction, top, CloseReason.EXPIRED, NOW)

        assert auction.current_state == AuctionState.CLOSED_NO_SALE
        assert auction.winner_id is None
        assert auction.final_price is None
        assert event.winner_id is None

    def test_reserve_met_exactly_is_sold(self, machine):
        auction = make_auction(
            starting_price=Decimal("50.00"), reserve_price=Decimal("200.00"), end_time=NOW
        )
        top = make_bid(auction, "200.00")
        machine.record_bid(auction, top)

        machine.close(auction, top, CloseReason.EXPIRED, NOW)

        assert auction.current_state == AuctionState.CLOSED_SOLD

    def test_no_bids_is_no_sale(self, machine):
        auction = make_auction(end_time=NOW)

        machine.close(auction, None, CloseReason.EXPIRED, NOW)

        assert auction.current_state == AuctionState.CLOSED_NO_SALE

    def test_expiry_before_end_time_rejected(self, machine):
        auction = make_auction()

        with pytest.raises(InvalidTransition):
            machine.begin_closing(auction, CloseReason.EXPIRED, NOW)
        with pytest.raises(InvalidTransition):
            machine.close(auction, None, CloseReason.EXPIRED, NOW)

    def test_manual_close_before_end_time_allowed(self, machine):
        auction = make_auction()

        machine.begin_closing(auction, CloseReason.MANUAL, NOW)
        event = machine.close(auction, None, CloseReason.MANUAL, NOW)

        assert event.reason == CloseReason.MANUAL

    def test_closed_auction_is_immutable(self, machine):
        auction = make_auction(end_time=NOW)
        machine.close(auction, None, CloseReason.EXPIRED, NOW)
        version = auction.version

        with pytest.raises(InvalidTransition):
            machine.close(auction, None, CloseReason.EXPIRED, NOW)
        with pytest.raises(AuctionAlreadyEnded):
            machine.record_bid(auction, make_bid(auction, "500.00"))
        with pytest.raises(InvalidTransition):
            machine.cancel(auction, has_bids=False, now=NOW)

        assert auction.version == version


class TestCancel:
    """Test cancellation rules."""

    @pytest.mark.parametrize("state", [AuctionState.SCHEDULED, AuctionState.OPEN, AuctionState.CLOSING])
    def test_cancel_without_bids(self, machine, state):
        auction = make_auction(state=state.value)

        machine.cancel(auction, has_bids=False, now=NOW)

        assert auction.current_state == AuctionState.CANCELLED
        assert auction.cancelled_at == NOW

    def test_cancel_with_bids_conflicts(self, machine):
        auction = make_auction()
        machine.record_bid(auction, make_bid(auction, "105.00"))

        with pytest.raises(ConflictError):
            machine.cancel(auction, has_bids=True, now=NOW)

        assert auction.current_state == AuctionState.OPEN


class TestReconcile:
    """Test repair of the cached high bid from the ledger."""

    def test_consistent_cache_untouched(self, machine):
        auction = make_auction()
        top = make_bid(auction, "105.00")
        machine.record_bid(auction, top)
        version = auction.version

        assert machine.reconcile(auction, top) is False
        assert auction.version == version

    def test_stale_cache_repaired(self, machine):
        auction = make_auction(high_bid_amount=Decimal("101.00"), high_bidder_id=uuid4(), bid_count=1)
        top = make_bid(auction, "120.00")

        assert machine.reconcile(auction, top) is True
        assert auction.high_bid_amount == Decimal("120.00")
        assert auction.high_bidder_id == top.bidder_id
