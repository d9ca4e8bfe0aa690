"""Redis caching for the Migrant Help chat service

Backs the embedding cache, the external lookup cache and the daily
rate-limit counters. Every operation degrades gracefully: when Redis is
unreachable reads miss, writes are dropped and counters report None.
"""

import json
import redis.asyncio as redis
from typing import Optional, Any
import structlog

logger = structlog.get_logger()


class CacheClient:
    """Redis cache client with async support."""

    def __init__(self, url: Optional[str] = None, client: Optional[Any] = None):
        """Initialize Redis client.

        Args:
            url: Redis URL (ChatConfig.redis_url). None disables caching.
            client: Pre-built redis.asyncio client (tests inject fakes here).
        """
        self.url = url
        if client is not None:
            self.client = client
        elif url:
            self.client = redis.from_url(url, decode_responses=True)
        else:
            logger.warning("cache_disabled", reason="no redis url")
            self.client = None

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache. Returns None on connection errors."""
        if not self.client:
            return None
        try:
            value = await self.client.get(key)
            if value:
                try:
                    return json.loads(value)
                except json.JSONDecodeError:
                    return value
            return None
        except redis.RedisError as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """Set value in cache with optional TTL (seconds). Drops the write on connection errors."""
        if not self.client:
            return
        try:
            serialized = json.dumps(value) if not isinstance(value, str) else value
            if ttl:
                await self.client.setex(key, ttl, serialized)
            else:
                await self.client.set(key, serialized)
        except redis.RedisError as e:
            logger.warning("cache_set_failed", key=key, error=str(e))

    async def incr(self, key: str, ttl: Optional[int] = None) -> Optional[int]:
        """Atomically increment a counter and return the new value.

        The TTL is attached when the counter is created (first increment).
        Returns None when Redis is unavailable so callers can decide how to
        degrade.
        """
        if not self.client:
            return None
        try:
            value = await self.client.incr(key)
            if ttl and value == 1:
                await self.client.expire(key, ttl)
            return int(value)
        except redis.RedisError as e:
            logger.warning("cache_incr_failed", key=key, error=str(e))
            return None

    async def ping(self) -> bool:
        """Check if Redis is available. Returns False on connection errors."""
        if not self.client:
            return False
        try:
            await self.client.ping()
            return True
        except redis.RedisError:
            return False

    async def close(self):
        """Release the connection pool on shutdown."""
        if self.client:
            await self.client.aclose()
