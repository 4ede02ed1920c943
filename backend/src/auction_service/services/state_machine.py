"""Auction lifecycle state machine.

SCHEDULED -> OPEN -> CLOSING -> CLOSED_SOLD | CLOSED_NO_SALE, and any
non-terminal state -> CANCELLED while no bid has been admitted.

Methods mutate the ``Auction`` they are given and return the event the
transition produced. Callers hold the auction's lock and publish the events
only after the surrounding transaction commits.
"""

import logging
from datetime import datetime
from decimal import Decimal

from auction_service.core.exceptions import (
    AuctionAlreadyEnded,
    AuctionNotOpen,
    BidTooLow,
    ConflictError,
    InvalidTransition,
)
from auction_service.models.auction import Auction, AuctionState, CloseReason
from auction_service.models.bid import Bid
from auction_service.schemas.events import AuctionClosed, BidPlaced

logger = logging.getLogger(__name__)

ENDED_STATES = frozenset(
    {AuctionState.CLOSING, AuctionState.CLOSED_SOLD, AuctionState.CLOSED_NO_SALE}
)


class AuctionStateMachine:
    """Single authority for an auction's state and cached high bid."""

    def __init__(self, bid_increment: Decimal = Decimal("0.01")):
        self.bid_increment = bid_increment

    def min_acceptable_amount(self, auction: Auction) -> Decimal:
        return auction.asking_floor + self.bid_increment

    def _advance(self, auction: Auction, target: AuctionState) -> None:
        current = auction.current_state
        if current.is_terminal or target.rank <= current.rank:
            raise InvalidTransition(
                f"Cannot move auction from {current.value} to {target.value}",
                state=current.value,
            )
        auction.state = target.value
        auction.version += 1
        logger.info(f"Auction {auction.auction_id}: {current.value} -> {target.value}")

    def transition_to_open(self, auction: Auction, now: datetime) -> None:
        if auction.current_state != AuctionState.SCHEDULED:
            raise InvalidTransition(
                f"Only scheduled auctions can be opened (state: {auction.state})",
                state=auction.state,
            )
        if auction.start_time is not None and now < auction.start_time:
            raise InvalidTransition(
                "Auction start time has not been reached",
                state=auction.state,
            )
        self._advance(auction, AuctionState.OPEN)

    def ensure_accepting_bids(self, auction: Auction) -> None:
        state = auction.current_state
        if state in ENDED_STATES:
            raise AuctionAlreadyEnded(state=state.value)
        if state != AuctionState.OPEN:
            raise AuctionNotOpen(state=state.value)

    def record_bid(self, auction: Auction, bid: Bid, title: str | None = None) -> BidPlaced:
        """Apply a validated bid to the cached high-bid fields.

        Raises:
            AuctionAlreadyEnded: If closing has begun
            AuctionNotOpen: If the auction is not open
            BidTooLow: If the bid does not exceed the current high bid
        """
        self.ensure_accepting_bids(auction)
        if bid.amount <= auction.asking_floor:
            raise BidTooLow(self.min_acceptable_amount(auction))

        event = BidPlaced(
            event_id=bid.bid_id,
            auction_id=auction.auction_id,
            occurred_at=bid.created_at,
            seller_id=auction.seller_id,
            title=title or auction.title,
            bid_id=bid.bid_id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            sequence=bid.sequence,
            previous_high_bidder_id=auction.high_bidder_id,
            previous_high_amount=auction.high_bid_amount,
        )

        auction.high_bid_amount = bid.amount
        auction.high_bidder_id = bid.bidder_id
        auction.bid_count += 1
        auction.version += 1
        return event

    def reconcile(self, auction: Auction, top_bid: Bid | None, bid_count: int | None = None) -> bool:
        """Re-derive the cached high bid from the ledger's top bid.

        Returns:
            True if the cached fields disagreed and were repaired
        """
        expected_amount = top_bid.amount if top_bid is not None else None
        expected_bidder = top_bid.bidder_id if top_bid is not None else None
        repaired = False

        if auction.high_bid_amount != expected_amount or auction.high_bidder_id != expected_bidder:
            logger.warning(
                f"Auction {auction.auction_id} cached high bid "
                f"{auction.high_bid_amount}/{auction.high_bidder_id} disagrees with ledger "
                f"{expected_amount}/{expected_bidder}, repairing"
            )
            auction.high_bid_amount = expected_amount
            auction.high_bidder_id = expected_bidder
            repaired = True

        if bid_count is not None and auction.bid_count != bid_count:
            auction.bid_count = bid_count
            repaired = True

        if repaired:
            auction.version += 1
        return repaired

    def begin_closing(self, auction: Auction, reason: CloseReason, now: datetime) -> None:
        if auction.current_state != AuctionState.OPEN:
            raise InvalidTransition(
                f"Only open auctions can begin closing (state: {auction.state})",
                state=auction.state,
            )
        if reason == CloseReason.EXPIRED and now < auction.end_time:
            raise InvalidTransition("Auction end time has not been reached", state=auction.state)
        self._advance(auction, AuctionState.CLOSING)
        auction.close_reason = reason.value

    def close(
        self, auction: Auction, top_bid: Bid | None, reason: CloseReason, now: datetime
    ) -> AuctionClosed:
        """Move an OPEN or CLOSING auction to its terminal outcome.

        Sold when at least one bid exists and the reserve, if any, is met.
        """
        state = auction.current_state
        if state not in (AuctionState.OPEN, AuctionState.CLOSING):
            raise InvalidTransition(
                f"Only open or closing auctions can be closed (state: {state.value})",
                state=state.value,
            )
        if state == AuctionState.OPEN and reason == CloseReason.EXPIRED and now < auction.end_time:
            raise InvalidTransition("Auction end time has not been reached", state=state.value)

        reserve_met = top_bid is not None and (
            auction.reserve_price is None or top_bid.amount >= auction.reserve_price
        )
        if reserve_met:
            self._advance(auction, AuctionState.CLOSED_SOLD)
            auction.winner_id = top_bid.bidder_id
            auction.final_price = top_bid.amount
        else:
            self._advance(auction, AuctionState.CLOSED_NO_SALE)
            auction.winner_id = None
            auction.final_price = None

        auction.close_reason = auction.close_reason or reason.value
        auction.closed_at = now
        return self.closed_event(auction)

    def closed_event(self, auction: Auction) -> AuctionClosed:
        """Rebuild the AuctionClosed event of an already closed auction."""
        state = auction.current_state
        if state not in (AuctionState.CLOSED_SOLD, AuctionState.CLOSED_NO_SALE):
            raise InvalidTransition(f"Auction is not closed (state: {state.value})", state=state.value)

        return AuctionClosed(
            event_id=auction.auction_id,
            auction_id=auction.auction_id,
            occurred_at=auction.closed_at,
            seller_id=auction.seller_id,
            title=auction.title,
            outcome=state,
            reason=CloseReason(auction.close_reason or CloseReason.EXPIRED.value),
            winner_id=auction.winner_id,
            final_price=auction.final_price,
            bid_count=auction.bid_count,
        )

    def cancel(self, auction: Auction, has_bids: bool, now: datetime) -> None:
        """Cancel a non-terminal auction that has no admitted bids.

        Raises:
            InvalidTransition: If the auction is already terminal
            ConflictError: If any bid has been admitted
        """
        if auction.current_state.is_terminal:
            raise InvalidTransition(
                f"Auction is already {auction.state}",
                state=auction.state,
            )
        if has_bids or auction.bid_count > 0:
            raise ConflictError(
                "Auction with admitted bids cannot be cancelled",
                bid_count=auction.bid_count,
            )
        self._advance(auction, AuctionState.CANCELLED)
        auction.cancelled_at = now
