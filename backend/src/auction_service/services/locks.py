"""Per-auction serialization point.

Two layers, both scoped to one auction id so unrelated auctions never wait on
each other:

1. an ``asyncio.Lock`` per auction for writers inside this process,
2. a Redis lock ``lock:auction:{id}`` for writers in other workers.

The store's transaction adds the database row lock underneath.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from redis.exceptions import RedisError

from auction_service.core.exceptions import ConcurrencyConflict
from auction_service.services.redis_service import RedisService

logger = logging.getLogger(__name__)


class AuctionLocks:
    """Keyed lock registry; entries are dropped once nobody holds or waits."""

    def __init__(
        self,
        redis_service: RedisService | None = None,
        timeout: float = 2.0,
        ttl: int = 5,
        retry_delay: float = 0.01,
    ):
        self.redis_service = redis_service
        self.timeout = timeout
        self.ttl = ttl
        self.retry_delay = retry_delay
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def is_locked(self, auction_id: UUID) -> bool:
        lock = self._locks.get(str(auction_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, auction_id: UUID) -> AsyncIterator[None]:
        """Hold the auction's lock for the duration of the block.

        Raises:
            ConcurrencyConflict: If the lock is not obtained within ``timeout``
        """
        key = str(auction_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.info(f"Timed out waiting for local lock on auction {key}")
                raise ConcurrencyConflict()

            try:
                owner_id = await self._acquire_distributed(key)
                try:
                    yield
                finally:
                    if owner_id is not None:
                        await self._release_distributed(key, owner_id)
            finally:
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                self._locks.pop(key, None)

    async def _acquire_distributed(self, key: str) -> str | None:
        if self.redis_service is None:
            return None

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                acquired, owner_id = await self.redis_service.acquire_lock(
                    f"auction:{key}", ttl=self.ttl
                )
            except RedisError as e:
                # The row lock still serializes writers; only cross-worker
                # queueing in front of the database is lost
                logger.error(f"Redis lock unavailable for auction {key}, relying on row lock: {e}")
                return None

            if acquired:
                return owner_id
            if time.monotonic() >= deadline:
                logger.info(f"Timed out waiting for distributed lock on auction {key}")
                raise ConcurrencyConflict()
            await asyncio.sleep(self.retry_delay)

    async def _release_distributed(self, key: str, owner_id: str) -> None:
        try:
            released = await self.redis_service.release_lock(f"auction:{key}", owner_id)
        except RedisError as e:
            logger.warning(f"Failed to release distributed lock on auction {key}: {e}")
            return
        if not released:
            logger.warning(f"Distributed lock on auction {key} expired before release")
