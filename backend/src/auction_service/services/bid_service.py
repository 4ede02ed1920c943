"""Bid admission: validates and admits bids one auction at a time."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from auction_service.core.config import settings
from auction_service.core.exceptions import (
    AuctionAlreadyEnded,
    AuctionNotFound,
    AuctionNotOpen,
    AuctionServiceError,
    BidTooLow,
    ConcurrencyConflict,
    PersistenceUnavailable,
    SelfBidRejected,
)
from auction_service.middleware.metrics import record_bid
from auction_service.models.auction import Auction, AuctionState
from auction_service.models.base import utcnow
from auction_service.models.bid import Bid
from auction_service.schemas.events import BidPlaced
from auction_service.services.event_bus import EventBus
from auction_service.services.locks import AuctionLocks
from auction_service.services.redis_service import RedisService
from auction_service.services.snapshot import refresh_snapshot
from auction_service.services.state_machine import ENDED_STATES, AuctionStateMachine
from auction_service.stores.base import AuctionStore

logger = logging.getLogger(__name__)


@dataclass
class BidOutcome:
    """Result of a bid attempt: the admitted bid, or the rejection."""

    accepted: bool
    bid: Bid | None = None
    error: AuctionServiceError | None = None

    @property
    def error_kind(self) -> str | None:
        return self.error.code if self.error is not None else None

    @property
    def min_acceptable_amount(self) -> Decimal | None:
        if isinstance(self.error, BidTooLow):
            return self.error.min_acceptable_amount
        return None


class BidAdmissionService:
    """Service class for bid admission and the bid ledger read paths."""

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine,
        locks: AuctionLocks,
        event_bus: EventBus | None = None,
        redis_service: RedisService | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
        admission_timeout: float | None = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.locks = locks
        self.event_bus = event_bus
        self.redis_service = redis_service
        self.clock = clock
        self.max_retries = settings.BID_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = (
            settings.BID_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )
        self.admission_timeout = (
            settings.BID_ADMISSION_TIMEOUT_SECONDS
            if admission_timeout is None
            else admission_timeout
        )
        self._side_effects: set[asyncio.Task] = set()

    def validate(self, auction: Auction | None, bidder_id: UUID, amount: Decimal, now: datetime) -> None:
        """Run the admission checks in order; the first failure is raised.

        Raises:
            AuctionNotOpen: Auction missing, scheduled or cancelled
            AuctionAlreadyEnded: Auction closing or closed, or past its end time
            SelfBidRejected: Bidder is the seller
            BidTooLow: Amount does not exceed the high bid (or starting price)
        """
        if auction is None:
            raise AuctionNotOpen("Auction not found or not open for bidding")
        state = auction.current_state
        if state in ENDED_STATES:
            raise AuctionAlreadyEnded(state=state.value)
        if state != AuctionState.OPEN:
            raise AuctionNotOpen(state=state.value)

        if bidder_id == auction.seller_id:
            raise SelfBidRejected()

        if amount <= auction.asking_floor:
            raise BidTooLow(self.state_machine.min_acceptable_amount(auction))

        if now >= auction.end_time:
            raise AuctionAlreadyEnded("Auction end time has passed", state=state.value)

    async def place_bid(self, auction_id: UUID, bidder_id: UUID, amount: Decimal) -> BidOutcome:
        """Validate and admit a bid.

        Lost races for the auction's lock are retried with exponential
        backoff; once retries are exhausted the outcome is a
        ``ConcurrencyConflict`` rejection. The admission timeout covers lock
        waits and validation up to the point the bid is staged; a bid that
        misses it is rolled back. Event publishing and the snapshot refresh
        run in the background once the bid is committed.

        Args:
            auction_id: Auction UUID
            bidder_id: Bidder UUID
            amount: Proposed bid amount

        Returns:
            BidOutcome with the admitted bid or the rejection

        Raises:
            PersistenceUnavailable: If the store cannot be reached
        """
        amount = Decimal(str(amount))
        start = time.perf_counter()
        deadline = start + self.admission_timeout
        attempt = 0

        while True:
            try:
                bid, event, auction = await self._admit_before(
                    deadline, auction_id, bidder_id, amount
                )
                break
            except asyncio.TimeoutError:
                logger.warning(
                    f"Bid on auction {auction_id} by {bidder_id} timed out before admission"
                )
                error = ConcurrencyConflict("Bid admission timed out, please try again")
                record_bid(error.code, time.perf_counter() - start)
                return BidOutcome(accepted=False, error=error)
            except ConcurrencyConflict as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(
                        f"Bid on auction {auction_id} gave up after {self.max_retries} retries"
                    )
                    record_bid(e.code, time.perf_counter() - start)
                    return BidOutcome(accepted=False, error=e)
                await asyncio.sleep(self.retry_backoff * (2 ** (attempt - 1)))
            except PersistenceUnavailable:
                record_bid(PersistenceUnavailable.code, time.perf_counter() - start)
                raise
            except AuctionServiceError as e:
                logger.info(f"Bid on auction {auction_id} by {bidder_id} rejected: {e.code}")
                record_bid(e.code, time.perf_counter() - start)
                return BidOutcome(accepted=False, error=e)

        record_bid("accepted", time.perf_counter() - start)
        logger.info(
            f"Bid {bid.bid_id} admitted on auction {auction_id}: "
            f"amount={bid.amount} sequence={bid.sequence}"
        )

        task = asyncio.create_task(self._after_commit(event, auction))
        self._side_effects.add(task)
        task.add_done_callback(self._side_effects.discard)

        return BidOutcome(accepted=True, bid=bid)

    async def _admit_before(
        self, deadline: float, auction_id: UUID, bidder_id: UUID, amount: Decimal
    ) -> tuple[Bid, BidPlaced, Auction]:
        """Run ``_admit``, cancelling it if the bid is not staged by ``deadline``.

        Once staged, the commit is awaited without a time limit.

        Raises:
            asyncio.TimeoutError: If the deadline passed before staging
        """
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            raise asyncio.TimeoutError()

        staged = asyncio.Event()
        admit = asyncio.create_task(self._admit(auction_id, bidder_id, amount, staged))
        waiter = asyncio.create_task(staged.wait())
        try:
            await asyncio.wait(
                {admit, waiter}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()

        if not admit.done() and not staged.is_set():
            admit.cancel()
            try:
                await admit
            except asyncio.CancelledError:
                pass
            else:
                # Finished before the cancellation was delivered
                return admit.result()
            raise asyncio.TimeoutError()

        return await admit

    async def _after_commit(self, event: BidPlaced, auction: Auction) -> None:
        try:
            if self.event_bus is not None:
                await self.event_bus.publish(event)
            await refresh_snapshot(
                self.redis_service, auction, settings.AUCTION_CACHE_TTL_SECONDS
            )
        except Exception as e:
            logger.error(f"Post-commit handling of bid {event.bid_id} failed: {e}")

    async def drain(self) -> None:
        """Wait for post-commit event publishing of admitted bids."""
        while self._side_effects:
            await asyncio.gather(*self._side_effects, return_exceptions=True)

    async def _admit(
        self,
        auction_id: UUID,
        bidder_id: UUID,
        amount: Decimal,
        staged: asyncio.Event | None = None,
    ) -> tuple[Bid, BidPlaced, Auction]:
        async with self.locks.hold(auction_id):
            async with self.store.transaction(auction_id) as tx:
                auction = tx.auction
                if auction is not None:
                    self.state_machine.reconcile(auction, await tx.top_bid())

                now = self.clock()
                self.validate(auction, bidder_id, amount, now)

                bid = Bid(
                    bid_id=uuid.uuid4(),
                    auction_id=auction_id,
                    bidder_id=bidder_id,
                    amount=amount,
                    sequence=await tx.next_sequence(),
                    created_at=now,
                )
                event = self.state_machine.record_bid(auction, bid)
                tx.append_bid(bid)
                if staged is not None:
                    staged.set()
        return bid, event, auction

    async def get_auction_bids(
        self, auction_id: UUID, skip: int = 0, limit: int = 100, by_amount: bool = False
    ) -> tuple[list[Bid], int]:
        """Get an auction's bid history.

        Args:
            auction_id: Auction UUID
            skip: Number of records to skip
            limit: Maximum number of records to return
            by_amount: Highest amount first instead of ledger order

        Returns:
            Tuple of (bids, total count)
        """
        if await self.store.get_auction(auction_id) is None:
            raise AuctionNotFound()
        return await self.store.list_bids(auction_id, skip=skip, limit=limit, by_amount=by_amount)

    async def get_bidder_bids(
        self, bidder_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Bid], int]:
        return await self.store.list_bidder_bids(bidder_id, skip=skip, limit=limit)
