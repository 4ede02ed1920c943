"""PostgreSQL store using SQLAlchemy asyncio sessions.

Per-auction exclusivity comes from ``SELECT ... FOR UPDATE`` on the auction
row inside the transaction; a bounded ``lock_timeout`` turns a long wait into
``ConcurrencyConflict`` instead of a stuck request.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import and_, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auction_service.core.exceptions import ConcurrencyConflict, PersistenceUnavailable
from auction_service.models.auction import Auction, AuctionState
from auction_service.models.bid import Bid
from auction_service.models.finalization import FinalizationJob
from auction_service.models.notification import Notification
from auction_service.models.order import Order
from auction_service.stores.base import AuctionStore, AuctionTransaction

logger = logging.getLogger(__name__)

# lock_not_available, serialization_failure, deadlock_detected
CONTENTION_SQLSTATES = {"55P03", "40001", "40P01"}


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class SqlAuctionTransaction(AuctionTransaction):
    def __init__(self, session: AsyncSession, auction: Auction | None):
        self.session = session
        self.auction = auction

    async def top_bid(self) -> Bid | None:
        result = await self.session.execute(
            select(Bid)
            .where(Bid.auction_id == self.auction.auction_id)
            .order_by(Bid.amount.desc(), Bid.sequence.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def next_sequence(self) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(Bid.sequence), 0)).where(
                Bid.auction_id == self.auction.auction_id
            )
        )
        return result.scalar_one() + 1

    def append_bid(self, bid: Bid) -> None:
        self.session.add(bid)

    def add_finalization_job(self, job: FinalizationJob) -> None:
        self.session.add(job)


class SqlAuctionStore(AuctionStore):
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        lock_timeout_seconds: float = 2.0,
    ):
        self.session_maker = session_maker
        self.lock_timeout_ms = int(lock_timeout_seconds * 1000)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error(f"Database unavailable: {e}")
            raise PersistenceUnavailable() from e

    # ==================== Auctions ====================

    async def add_auction(self, auction: Auction) -> Auction:
        async with self._session() as session:
            session.add(auction)
            await session.commit()
            await session.refresh(auction)
            return auction

    async def get_auction(self, auction_id: UUID) -> Auction | None:
        async with self._session() as session:
            result = await session.execute(
                select(Auction).where(Auction.auction_id == auction_id)
            )
            return result.scalar_one_or_none()

    async def list_auctions(
        self,
        state: AuctionState | None = None,
        seller_id: UUID | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Auction], int]:
        conditions = []
        if state is not None:
            conditions.append(Auction.state == state.value)
        if seller_id is not None:
            conditions.append(Auction.seller_id == seller_id)

        async with self._session() as session:
            count_result = await session.execute(
                select(func.count(Auction.auction_id)).where(and_(True, *conditions))
            )
            total = count_result.scalar_one()

            result = await session.execute(
                select(Auction)
                .where(and_(True, *conditions))
                .order_by(Auction.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    @asynccontextmanager
    async def transaction(self, auction_id: UUID) -> AsyncIterator[SqlAuctionTransaction]:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.execute(
                        text(f"SET LOCAL lock_timeout = '{self.lock_timeout_ms}ms'")
                    )
                    result = await session.execute(
                        select(Auction)
                        .where(Auction.auction_id == auction_id)
                        .with_for_update()
                    )
                    yield SqlAuctionTransaction(session, result.scalar_one_or_none())
        except DBAPIError as e:
            if _sqlstate(e) in CONTENTION_SQLSTATES:
                raise ConcurrencyConflict() from e
            if isinstance(e, (OperationalError, InterfaceError)):
                logger.error(f"Database unavailable during auction {auction_id} transaction: {e}")
                raise PersistenceUnavailable() from e
            raise
        except OSError as e:
            raise PersistenceUnavailable() from e

    async def due_to_open(self, now: datetime, limit: int) -> list[UUID]:
        async with self._session() as session:
            result = await session.execute(
                select(Auction.auction_id)
                .where(
                    and_(
                        Auction.state == AuctionState.SCHEDULED.value,
                        Auction.start_time <= now,
                    )
                )
                .order_by(Auction.start_time.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def due_to_close(self, now: datetime, limit: int) -> list[UUID]:
        async with self._session() as session:
            result = await session.execute(
                select(Auction.auction_id)
                .where(
                    (Auction.state == AuctionState.CLOSING.value)
                    | and_(
                        Auction.state == AuctionState.OPEN.value,
                        Auction.end_time <= now,
                    )
                )
                .order_by(Auction.end_time.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ==================== Bid ledger ====================

    async def list_bids(
        self, auction_id: UUID, skip: int = 0, limit: int = 100, by_amount: bool = False
    ) -> tuple[list[Bid], int]:
        if by_amount:
            ordering = (Bid.amount.desc(), Bid.sequence.asc())
        else:
            ordering = (Bid.sequence.asc(),)

        async with self._session() as session:
            count_result = await session.execute(
                select(func.count(Bid.bid_id)).where(Bid.auction_id == auction_id)
            )
            total = count_result.scalar_one()

            result = await session.execute(
                select(Bid)
                .where(Bid.auction_id == auction_id)
                .order_by(*ordering)
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    async def list_bidder_bids(
        self, bidder_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Bid], int]:
        async with self._session() as session:
            count_result = await session.execute(
                select(func.count(Bid.bid_id)).where(Bid.bidder_id == bidder_id)
            )
            total = count_result.scalar_one()

            result = await session.execute(
                select(Bid)
                .where(Bid.bidder_id == bidder_id)
                .order_by(Bid.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    # ==================== Finalization jobs ====================

    async def due_finalization_jobs(
        self, now: datetime, max_attempts: int, limit: int
    ) -> list[FinalizationJob]:
        async with self._session() as session:
            result = await session.execute(
                select(FinalizationJob)
                .where(
                    and_(
                        FinalizationJob.status == "pending",
                        FinalizationJob.next_attempt_at <= now,
                        FinalizationJob.attempts < max_attempts,
                    )
                )
                .order_by(FinalizationJob.next_attempt_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_finalization_job(self, auction_id: UUID) -> FinalizationJob | None:
        async with self._session() as session:
            return await session.get(FinalizationJob, auction_id)

    async def complete_finalization_job(self, auction_id: UUID, now: datetime) -> None:
        async with self._session() as session:
            await session.execute(
                update(FinalizationJob)
                .where(FinalizationJob.auction_id == auction_id)
                .values(status="done", completed_at=now)
            )
            await session.commit()

    async def fail_finalization_job(
        self, auction_id: UUID, error: str, next_attempt_at: datetime
    ) -> None:
        async with self._session() as session:
            await session.execute(
                update(FinalizationJob)
                .where(FinalizationJob.auction_id == auction_id)
                .values(
                    attempts=FinalizationJob.attempts + 1,
                    last_error=error,
                    next_attempt_at=next_attempt_at,
                )
            )
            await session.commit()

    # ==================== Orders ====================

    async def create_order_once(self, order: Order) -> Order:
        # ON CONFLICT keeps finalization retries from creating a second order
        stmt = (
            pg_insert(Order)
            .values(
                order_id=order.order_id,
                auction_id=order.auction_id,
                buyer_id=order.buyer_id,
                seller_id=order.seller_id,
                final_price=order.final_price,
                status=order.status,
            )
            .on_conflict_do_nothing(index_elements=["auction_id"])
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()
            result = await session.execute(
                select(Order).where(Order.auction_id == order.auction_id)
            )
            return result.scalar_one()

    async def list_buyer_orders(
        self, buyer_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Order], int]:
        async with self._session() as session:
            count_result = await session.execute(
                select(func.count(Order.order_id)).where(Order.buyer_id == buyer_id)
            )
            total = count_result.scalar_one()

            result = await session.execute(
                select(Order)
                .where(Order.buyer_id == buyer_id)
                .order_by(Order.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    # ==================== Notifications ====================

    async def save_notification(self, notification: Notification) -> bool:
        stmt = (
            pg_insert(Notification)
            .values(
                notification_id=notification.notification_id,
                user_id=notification.user_id,
                kind=notification.kind,
                title=notification.title,
                message=notification.message,
                data=notification.data,
                dedupe_key=notification.dedupe_key,
                is_read=False,
            )
            .on_conflict_do_nothing(index_elements=["dedupe_key"])
            .returning(Notification.notification_id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            inserted = result.scalar_one_or_none() is not None
            await session.commit()
            return inserted

    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, skip: int = 0, limit: int = 50
    ) -> tuple[list[Notification], int]:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        async with self._session() as session:
            count_result = await session.execute(
                select(func.count(Notification.notification_id)).where(and_(*conditions))
            )
            total = count_result.scalar_one()

            result = await session.execute(
                select(Notification)
                .where(and_(*conditions))
                .order_by(Notification.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    async def mark_notification_read(self, notification_id: UUID, user_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(Notification)
                .where(
                    and_(
                        Notification.notification_id == notification_id,
                        Notification.user_id == user_id,
                    )
                )
                .values(is_read=True)
            )
            await session.commit()
            return result.rowcount > 0
