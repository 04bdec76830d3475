"""Bounded local fallback cache of recent items on a Redis list.

Each append is ``RPUSH`` followed by ``LTRIM`` to the newest ``limit``
entries, so the oldest items are dropped first. The cache is best effort:
Redis errors are logged and swallowed, never propagated into a sync cycle.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


class RecentItemsCache:
    """Most recent JSON items under one Redis key.

    Args:
        redis: Async Redis client (decode_responses=True).
        key: List key holding the items.
        limit: Maximum number of items kept.
    """

    def __init__(self, redis: aioredis.Redis, key: str, limit: int = 100) -> None:
        self._redis = redis
        self._key = key
        self._limit = limit

    @property
    def key(self) -> str:
        return self._key

    async def append(self, item: dict[str, Any]) -> bool:
        """Append one item, trimming the list to the newest ``limit``.

        Returns:
            True if the item was stored.
        """
        try:
            await self._redis.rpush(self._key, json.dumps(item, default=str))
            await self._redis.ltrim(self._key, -self._limit, -1)
            return True
        except RedisError:
            logger.warning("local_cache.append_failed", key=self._key, exc_info=True)
            return False

    async def items(self) -> list[dict[str, Any]]:
        """Stored items, oldest first. Empty when Redis is unreachable."""
        try:
            raw = await self._redis.lrange(self._key, 0, -1)
        except RedisError:
            logger.warning("local_cache.read_failed", key=self._key, exc_info=True)
            return []
        return [json.loads(entry) for entry in raw]
