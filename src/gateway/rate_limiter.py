"""
Daily per-IP Rate Limiter for the chat gateway

Counts requests per (UTC day, caller IP) in Redis with an atomic
increment-then-read. The counter for a day is created by the first
request and left to expire on its own. No in-process lock is involved;
Redis INCR is the only synchronization.
"""
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from shared.cache import CacheClient

logger = structlog.get_logger()

# Counters outlive their day slightly so late requests near midnight still count
COUNTER_TTL_SECONDS = 2 * 24 * 3600


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DailyRateLimiter:
    """
    Fixed daily ceiling per caller IP.

    Usage:
        limiter = DailyRateLimiter(cache, daily_limit=200)

        if await limiter.acquire(caller_ip):
            # Process request
        else:
            # Return 429 Too Many Requests
    """

    def __init__(self, cache: CacheClient, daily_limit: int = 200,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            cache: Redis-backed cache holding the counters
            daily_limit: Requests allowed per IP per UTC day
            clock: Returns the current time (tests pin the day)
        """
        self.cache = cache
        self.daily_limit = daily_limit
        self._clock = clock or _utc_now

    def counter_key(self, caller_ip: str) -> str:
        day = self._clock().strftime("%Y-%m-%d")
        return f"ratelimit:{day}:{caller_ip}"

    async def acquire(self, caller_ip: str) -> bool:
        """
        Count this request and report whether it is within the ceiling.

        Returns:
            True if allowed, False if the caller is over the daily ceiling.
            When Redis is unavailable the request is allowed.
        """
        key = self.counter_key(caller_ip)
        count = await self.cache.incr(key, ttl=COUNTER_TTL_SECONDS)

        if count is None:
            logger.warning("rate_limit_store_unavailable", caller_ip=caller_ip)
            return True

        if count > self.daily_limit:
            logger.warning("rate_limit_exceeded", caller_ip=caller_ip,
                           count=count, daily_limit=self.daily_limit)
            return False

        return True

    def get_status(self) -> dict:
        return {
            "daily_limit": self.daily_limit,
            "store_enabled": self.cache.client is not None,
        }
