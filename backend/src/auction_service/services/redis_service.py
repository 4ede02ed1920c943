"""Redis service for auction locks, leadership and the auction snapshot cache."""

import uuid
from typing import Any

from redis.asyncio import Redis


class RedisService:
    """Service class for Redis operations."""

    # Lua script for safe lock release (only delete own lock)
    RELEASE_LOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    # Lua script for extending a held lock (only own lock)
    EXTEND_LOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("EXPIRE", KEYS[1], tonumber(ARGV[2]))
    else
        return 0
    end
    """

    # Lua script for version-guarded snapshot writes, so a slow writer
    # never overwrites a newer high bid with an older one
    CACHE_AUCTION_SCRIPT = """
    local current = tonumber(redis.call("HGET", KEYS[1], "version") or "-1")
    local incoming = tonumber(ARGV[1])
    if incoming > current then
        redis.call("DEL", KEYS[1])
        redis.call("HSET", KEYS[1], unpack(ARGV, 3))
        redis.call("EXPIRE", KEYS[1], tonumber(ARGV[2]))
        return 1
    end
    return 0
    """

    def __init__(self, redis: Redis):
        """Initialize Redis service with a Redis client.

        Args:
            redis: Async Redis client instance
        """
        self.redis = redis
        self._release_lock_script = None
        self._extend_lock_script = None
        self._cache_auction_script = None

    async def _get_release_lock_script(self):
        """Get or register the release lock Lua script."""
        if self._release_lock_script is None:
            self._release_lock_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        return self._release_lock_script

    async def _get_extend_lock_script(self):
        """Get or register the extend lock Lua script."""
        if self._extend_lock_script is None:
            self._extend_lock_script = self.redis.register_script(self.EXTEND_LOCK_SCRIPT)
        return self._extend_lock_script

    async def _get_cache_auction_script(self):
        """Get or register the snapshot cache Lua script."""
        if self._cache_auction_script is None:
            self._cache_auction_script = self.redis.register_script(self.CACHE_AUCTION_SCRIPT)
        return self._cache_auction_script

    # ==================== Distributed Lock Operations ====================

    async def acquire_lock(
        self, resource: str, owner_id: str | None = None, ttl: int = 5
    ) -> tuple[bool, str]:
        """Acquire a distributed lock.

        Key pattern: lock:{resource}
        Uses SET NX EX for atomic lock acquisition.

        Args:
            resource: Locked resource name, e.g. ``auction:{auction_id}``
            owner_id: Unique identifier for lock owner (auto-generated if None)
            ttl: Lock timeout in seconds so a crashed holder cannot deadlock

        Returns:
            Tuple of (success, owner_id)
        """
        key = f"lock:{resource}"
        if owner_id is None:
            owner_id = str(uuid.uuid4())

        acquired = await self.redis.set(key, owner_id, nx=True, ex=ttl)
        return (acquired is not None, owner_id)

    async def release_lock(self, resource: str, owner_id: str) -> bool:
        """Release a distributed lock (only if owner matches).

        Args:
            resource: Locked resource name
            owner_id: The owner_id returned from acquire_lock

        Returns:
            True if lock was released, False if not owner or not locked
        """
        key = f"lock:{resource}"
        script = await self._get_release_lock_script()
        result = await script(keys=[key], args=[owner_id])
        return int(result) == 1

    async def extend_lock(self, resource: str, owner_id: str, ttl: int) -> bool:
        """Reset the TTL of a lock still held by owner_id.

        Args:
            resource: Locked resource name
            owner_id: The owner_id returned from acquire_lock
            ttl: New timeout in seconds

        Returns:
            True if the lock is still ours and was extended
        """
        key = f"lock:{resource}"
        script = await self._get_extend_lock_script()
        result = await script(keys=[key], args=[owner_id, ttl])
        return int(result) == 1

    # ==================== Auction Snapshot Cache ====================

    async def cache_auction(
        self, auction_id: str, data: dict[str, Any], version: int, ttl: int
    ) -> bool:
        """Cache an auction snapshot unless a newer version is already cached.

        Key pattern: auction:{auction_id}

        Args:
            auction_id: Auction UUID string
            data: Snapshot fields; None values are stored as empty strings
            version: Auction version the snapshot was taken at
            ttl: TTL in seconds

        Returns:
            True if the snapshot was written
        """
        key = f"auction:{auction_id}"
        fields: list[str] = ["version", str(version)]
        for name, value in data.items():
            fields.extend([name, "" if value is None else str(value)])

        script = await self._get_cache_auction_script()
        result = await script(keys=[key], args=[version, ttl, *fields])
        return int(result) == 1

    async def get_cached_auction(self, auction_id: str) -> dict[str, str] | None:
        """Get cached auction snapshot.

        Args:
            auction_id: Auction UUID string

        Returns:
            Snapshot dict or None if not cached
        """
        key = f"auction:{auction_id}"
        data = await self.redis.hgetall(key)
        return data if data else None
