"""Auction service for listing lifecycle operations owned by sellers."""

import logging
import uuid
from datetime import datetime
from typing import Callable
from uuid import UUID

from redis.exceptions import RedisError

from auction_service.core.config import settings
from auction_service.core.exceptions import (
    AuctionNotFound,
    InvalidAuction,
    PermissionDenied,
)
from auction_service.models.auction import Auction, AuctionState, CloseReason
from auction_service.models.base import utcnow
from auction_service.schemas.auction import AuctionCreate
from auction_service.services.closer import AuctionCloser, CloseResult
from auction_service.services.locks import AuctionLocks
from auction_service.services.redis_service import RedisService
from auction_service.services.snapshot import refresh_snapshot, snapshot_strings
from auction_service.services.state_machine import AuctionStateMachine
from auction_service.stores.base import AuctionStore

logger = logging.getLogger(__name__)


class AuctionService:
    """Service class for auction operations."""

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine,
        locks: AuctionLocks,
        closer: AuctionCloser,
        redis_service: RedisService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.state_machine = state_machine
        self.locks = locks
        self.closer = closer
        self.redis_service = redis_service
        self.clock = clock

    async def create_auction(self, seller_id: UUID, data: AuctionCreate) -> Auction:
        """Create an auction.

        Without a start time, or with one already passed, the auction opens
        immediately; otherwise it stays SCHEDULED until the closer opens it.

        Args:
            seller_id: Seller UUID (the caller)
            data: Auction creation data

        Returns:
            Created auction

        Raises:
            InvalidAuction: If the end time has already passed
        """
        now = self.clock()
        if data.end_time <= now:
            raise InvalidAuction("end_time must be in the future")

        immediate = data.start_time is None or data.start_time <= now
        auction = Auction(
            auction_id=uuid.uuid4(),
            seller_id=seller_id,
            title=data.title,
            starting_price=data.starting_price,
            reserve_price=data.reserve_price,
            start_time=data.start_time,
            end_time=data.end_time,
            state=(AuctionState.OPEN if immediate else AuctionState.SCHEDULED).value,
            bid_count=0,
            version=0,
            created_at=now,
            updated_at=now,
        )
        auction = await self.store.add_auction(auction)
        logger.info(f"Auction {auction.auction_id} created by {seller_id} in state {auction.state}")
        await refresh_snapshot(self.redis_service, auction, settings.AUCTION_CACHE_TTL_SECONDS)
        return auction

    async def get_by_id(self, auction_id: UUID) -> Auction:
        """Get auction by ID.

        Raises:
            AuctionNotFound: If the auction does not exist
        """
        auction = await self.store.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFound()
        return auction

    async def get_snapshot(self, auction_id: UUID) -> dict[str, str]:
        """Get the lightweight auction view polled by bidding clients.

        Served from the Redis snapshot when cached; a miss reads the store
        and repopulates the cache.

        Raises:
            AuctionNotFound: If the auction does not exist
        """
        if self.redis_service is not None:
            try:
                cached = await self.redis_service.get_cached_auction(str(auction_id))
                if cached:
                    return cached
            except RedisError as e:
                logger.warning(f"Snapshot cache read failed for auction {auction_id}: {e}")

        auction = await self.get_by_id(auction_id)
        await refresh_snapshot(self.redis_service, auction, settings.AUCTION_CACHE_TTL_SECONDS)
        return snapshot_strings(auction)

    async def get_all(
        self,
        state: AuctionState | None = None,
        seller_id: UUID | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Auction], int]:
        return await self.store.list_auctions(state=state, seller_id=seller_id, skip=skip, limit=limit)

    async def _require_seller(self, auction_id: UUID, user_id: UUID) -> Auction:
        auction = await self.get_by_id(auction_id)
        if auction.seller_id != user_id:
            raise PermissionDenied()
        return auction

    async def open_auction(self, auction_id: UUID, user_id: UUID) -> Auction:
        await self._require_seller(auction_id, user_id)
        return await self.closer.open_auction(auction_id)

    async def close_auction(self, auction_id: UUID, user_id: UUID) -> CloseResult:
        """Close an open auction early at the seller's request."""
        await self._require_seller(auction_id, user_id)
        return await self.closer.close_auction(auction_id, CloseReason.MANUAL)

    async def cancel_auction(self, auction_id: UUID, user_id: UUID) -> Auction:
        """Cancel an auction that has not received any bid.

        Raises:
            AuctionNotFound: If the auction does not exist
            PermissionDenied: If the caller is not the seller
            InvalidTransition: If the auction is already terminal
            ConflictError: If a bid has been admitted
        """
        await self._require_seller(auction_id, user_id)

        async with self.locks.hold(auction_id):
            async with self.store.transaction(auction_id) as tx:
                auction = tx.auction
                top_bid = await tx.top_bid()
                self.state_machine.cancel(auction, top_bid is not None, self.clock())

        logger.info(f"Auction {auction_id} cancelled by {user_id}")
        await refresh_snapshot(self.redis_service, auction, settings.AUCTION_CACHE_TTL_SECONDS)
        return auction
