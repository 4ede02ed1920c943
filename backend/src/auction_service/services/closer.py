"""Auction closer and post-close finalization."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable
from uuid import UUID

from redis.exceptions import RedisError

from auction_service.core.config import settings
from auction_service.core.exceptions import (
    AuctionNotFound,
    AuctionServiceError,
    InvalidTransition,
)
from auction_service.middleware.metrics import record_auction_closed, record_finalization_failure
from auction_service.models.auction import Auction, AuctionState, CloseReason
from auction_service.models.base import utcnow
from auction_service.models.finalization import FinalizationJob
from auction_service.models.order import Order
from auction_service.services.event_bus import EventBus
from auction_service.services.locks import AuctionLocks
from auction_service.services.redis_service import RedisService
from auction_service.services.snapshot import refresh_snapshot
from auction_service.services.state_machine import AuctionStateMachine
from auction_service.stores.base import AuctionStore

logger = logging.getLogger(__name__)


@dataclass
class CloseResult:
    auction_id: UUID
    outcome: AuctionState
    winner_id: UUID | None = None
    final_price: Decimal | None = None
    closed_at: datetime | None = None

    @classmethod
    def from_auction(cls, auction: Auction) -> "CloseResult":
        return cls(
            auction_id=auction.auction_id,
            outcome=auction.current_state,
            winner_id=auction.winner_id,
            final_price=auction.final_price,
            closed_at=auction.closed_at,
        )


class AuctionFinalizer:
    """Runs the side effects of a closed auction until they succeed.

    Creating the order and publishing ``AuctionClosed`` are both idempotent,
    so a job can be re-run any number of times.
    """

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
        base_backoff: float = 1.0,
        max_backoff: float = 300.0,
    ):
        self.store = store
        self.state_machine = state_machine
        self.event_bus = event_bus
        self.clock = clock
        self.max_attempts = settings.FINALIZER_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff

    async def finalize(self, auction_id: UUID) -> bool:
        """Create the winner's order and publish the close event.

        Returns:
            True if the job completed, False if it was rescheduled
        """
        try:
            auction = await self.store.get_auction(auction_id)
            if auction is None:
                raise AuctionNotFound()
            event = self.state_machine.closed_event(auction)

            if auction.current_state == AuctionState.CLOSED_SOLD:
                order = await self.store.create_order_once(
                    Order(
                        order_id=uuid.uuid4(),
                        auction_id=auction.auction_id,
                        buyer_id=auction.winner_id,
                        seller_id=auction.seller_id,
                        final_price=auction.final_price,
                        status="pending_payment",
                        created_at=self.clock(),
                    )
                )
                logger.info(f"Order {order.order_id} pending payment for auction {auction_id}")

            if self.event_bus is not None:
                await self.event_bus.publish(event)

            await self.store.complete_finalization_job(auction_id, self.clock())
            return True
        except Exception as e:
            record_finalization_failure()
            logger.error(f"Finalization of auction {auction_id} failed: {e}")
            await self._reschedule(auction_id, str(e))
            return False

    async def _reschedule(self, auction_id: UUID, error: str) -> None:
        try:
            job = await self.store.get_finalization_job(auction_id)
            attempts = (job.attempts if job is not None else 0) + 1
            delay = min(self.base_backoff * (2 ** (attempts - 1)), self.max_backoff)
            await self.store.fail_finalization_job(
                auction_id, error, self.clock() + timedelta(seconds=delay)
            )
            if attempts >= self.max_attempts:
                logger.error(
                    f"Finalization of auction {auction_id} abandoned after {attempts} attempts"
                )
        except AuctionServiceError as e:
            # The job stays pending and is picked up again by retry_due
            logger.error(f"Could not reschedule finalization of auction {auction_id}: {e}")

    async def retry_due(self, limit: int | None = None) -> int:
        """Re-run finalization jobs whose backoff has elapsed.

        Returns:
            Number of jobs completed
        """
        jobs = await self.store.due_finalization_jobs(
            self.clock(), self.max_attempts, limit or settings.CLOSER_BATCH_SIZE
        )
        completed = 0
        for job in jobs:
            if await self.finalize(job.auction_id):
                completed += 1
        return completed


class AuctionCloser:
    """Opens due scheduled auctions and closes expired ones."""

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine,
        locks: AuctionLocks,
        finalizer: AuctionFinalizer,
        redis_service: RedisService | None = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int | None = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.locks = locks
        self.finalizer = finalizer
        self.redis_service = redis_service
        self.clock = clock
        self.batch_size = settings.CLOSER_BATCH_SIZE if batch_size is None else batch_size

    async def open_auction(self, auction_id: UUID) -> Auction:
        """Move a scheduled auction to OPEN.

        Raises:
            AuctionNotFound: If the auction does not exist
            InvalidTransition: If it is not scheduled or not yet due
        """
        async with self.locks.hold(auction_id):
            async with self.store.transaction(auction_id) as tx:
                auction = tx.auction
                if auction is None:
                    raise AuctionNotFound()
                self.state_machine.transition_to_open(auction, self.clock())

        await refresh_snapshot(self.redis_service, auction, settings.AUCTION_CACHE_TTL_SECONDS)
        return auction

    async def close_auction(
        self, auction_id: UUID, reason: CloseReason = CloseReason.EXPIRED
    ) -> CloseResult:
        """Close an auction, or return the outcome it already closed with.

        OPEN -> CLOSING is committed first so no bid can be admitted while
        the winner is computed; CLOSING -> terminal is committed together
        with the auction's finalization job.

        Raises:
            AuctionNotFound: If the auction does not exist
            InvalidTransition: If the auction is scheduled or cancelled, or an
                expiry close is attempted before the end time
        """
        async with self.locks.hold(auction_id):
            async with self.store.transaction(auction_id) as tx:
                auction = tx.auction
                if auction is None:
                    raise AuctionNotFound()
                if auction.current_state.is_terminal:
                    self.state_machine.closed_event(auction)
                    return CloseResult.from_auction(auction)
                if auction.current_state == AuctionState.OPEN:
                    self.state_machine.begin_closing(auction, reason, self.clock())

        async with self.locks.hold(auction_id):
            async with self.store.transaction(auction_id) as tx:
                auction = tx.auction
                if auction.current_state.is_terminal:
                    return CloseResult.from_auction(auction)

                now = self.clock()
                top_bid = await tx.top_bid()
                self.state_machine.reconcile(auction, top_bid)
                event = self.state_machine.close(auction, top_bid, reason, now)
                tx.add_finalization_job(
                    FinalizationJob(
                        auction_id=auction_id,
                        status="pending",
                        attempts=0,
                        next_attempt_at=now + timedelta(seconds=self.finalizer.base_backoff),
                        created_at=now,
                    )
                )

        record_auction_closed(event.outcome.value)
        logger.info(
            f"Auction {auction_id} closed {event.outcome.value} ({event.reason.value}): "
            f"winner={event.winner_id} final_price={event.final_price}"
        )
        await refresh_snapshot(self.redis_service, auction, settings.AUCTION_CACHE_TTL_SECONDS)
        await self.finalizer.finalize(auction_id)
        return CloseResult.from_auction(auction)

    async def open_due(self) -> int:
        opened = 0
        for auction_id in await self.store.due_to_open(self.clock(), self.batch_size):
            try:
                await self.open_auction(auction_id)
                opened += 1
            except InvalidTransition:
                # Opened or cancelled since the scan
                continue
            except AuctionServiceError as e:
                logger.warning(f"Could not open auction {auction_id}: {e.code}")
        return opened

    async def run_once(self) -> int:
        """One closer tick: open due auctions, then close expired ones.

        Returns:
            Number of auctions closed
        """
        await self.open_due()

        closed = 0
        for auction_id in await self.store.due_to_close(self.clock(), self.batch_size):
            try:
                await self.close_auction(auction_id, CloseReason.EXPIRED)
                closed += 1
            except AuctionServiceError as e:
                logger.warning(f"Could not close auction {auction_id}: {e.code}")
        return closed


class CloserLeadership:
    """Redis lease that lets one worker run the closer per tick.

    Without Redis every worker is its own leader; the per-auction locks keep
    concurrent closers correct, leadership only avoids duplicate scans.
    """

    RESOURCE = "closer"

    def __init__(self, redis_service: RedisService | None, ttl: int):
        self.redis_service = redis_service
        self.ttl = ttl
        self.owner_id = str(uuid.uuid4())
        self.leading = False

    async def is_leader(self) -> bool:
        if self.redis_service is None:
            return True
        try:
            if self.leading:
                self.leading = await self.redis_service.extend_lock(
                    self.RESOURCE, self.owner_id, self.ttl
                )
            if not self.leading:
                self.leading, _ = await self.redis_service.acquire_lock(
                    self.RESOURCE, owner_id=self.owner_id, ttl=self.ttl
                )
                if self.leading:
                    logger.info(f"Closer leadership acquired by {self.owner_id}")
        except RedisError as e:
            logger.warning(f"Closer leadership check failed: {e}")
            self.leading = False
        return self.leading

    async def resign(self) -> None:
        if self.redis_service is None or not self.leading:
            return
        try:
            await self.redis_service.release_lock(self.RESOURCE, self.owner_id)
        except RedisError as e:
            logger.warning(f"Failed to release closer leadership: {e}")
        self.leading = False
