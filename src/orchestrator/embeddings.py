"""
Embedding client with a content-addressed cache.

Identical text never re-embeds within the cache lifetime: the cache key is
a hash of the model name and the exact text.
"""

import asyncio
import hashlib
from typing import List, Optional

import structlog

from shared.cache import CacheClient
from shared.errors import EmbeddingError

logger = structlog.get_logger()


class EmbeddingClient:
    """Wraps an embedder (``await embedder.embed(text)``) with caching and a timeout."""

    def __init__(
        self,
        embedder,
        cache: Optional[CacheClient] = None,
        model: str = "text-embedding-004",
        ttl: int = 30 * 24 * 3600,
        timeout: float = 10.0,
    ):
        self.embedder = embedder
        self.cache = cache
        self.model = model
        self.ttl = ttl
        self.timeout = timeout

    def _get_cache_key(self, text: str) -> str:
        digest = hashlib.sha256(f"{self.model}\n{text}".encode("utf-8")).hexdigest()
        return f"embedding:{digest}"

    async def embed(self, text: str) -> List[float]:
        """
        Embed `text`, serving repeats from the cache.

        Raises:
            EmbeddingError: The embedding service failed or timed out
        """
        cache_key = self._get_cache_key(text)

        if self.cache:
            cached = await self.cache.get(cache_key)
            if isinstance(cached, list) and cached:
                logger.debug("embedding_cache_hit", key=cache_key[:20])
                return [float(v) for v in cached]

        try:
            vector = await asyncio.wait_for(self.embedder.embed(text), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("embedding_timeout", timeout=self.timeout)
            raise EmbeddingError(detail=f"embedding timed out after {self.timeout}s")
        except Exception as e:
            logger.error("embedding_failed", error=str(e), error_type=type(e).__name__)
            raise EmbeddingError(detail=str(e)) from e

        if not vector:
            raise EmbeddingError(detail="embedding service returned an empty vector")

        if self.cache:
            await self.cache.set(cache_key, vector, ttl=self.ttl)
        return vector
