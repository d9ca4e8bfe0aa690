"""
Base class for external lookup adapters (weather, directions, web search).

Every adapter exposes ``await lookup(query_text, language) -> LookupResult``
and owns its external HTTP calls. Adapters are soft dependencies: a
missing credential or an upstream failure becomes a localized message,
never an exception.
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog
from prometheus_client import Histogram

from shared.cache import CacheClient

from orchestrator.state import SourceCitation

logger = structlog.get_logger()

external_call_duration = Histogram(
    'rag_chat_external_call_duration_seconds',
    'External lookup API call duration in seconds',
    ['adapter', 'call', 'status'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0]
)


def error_fields(e: Exception) -> Dict[str, Any]:
    """Log fields for a failed call. Exception text is left out: it echoes the request URL."""
    fields: Dict[str, Any] = {"error_type": type(e).__name__}
    if isinstance(e, httpx.HTTPStatusError):
        fields["status_code"] = e.response.status_code
    return fields


@dataclass
class LookupResult:
    # None means "nothing to say": the caller falls back to the app-data path
    text: Optional[str]
    sources: List[SourceCitation] = field(default_factory=list)


class BaseLookupAdapter:
    """Shared HTTP, caching and timing helpers for lookup adapters."""

    name = "lookup"

    def __init__(self, http_client: httpx.AsyncClient, cache: Optional[CacheClient] = None,
                 timeout: float = 10.0):
        self.http_client = http_client
        self.cache = cache
        self.timeout = timeout

    def _get_cache_key(self, call: str, params: Dict[str, Any]) -> str:
        """Cache key for a call and its parameters (credentials excluded by callers)."""
        cache_data = f"{self.name}:{call}:{json.dumps(params, sort_keys=True, ensure_ascii=False)}"
        return f"lookup:{self.name}:{hashlib.md5(cache_data.encode()).hexdigest()}"

    async def _get_cached_response(self, cache_key: str) -> Optional[Any]:
        if not self.cache:
            return None
        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug("lookup_cache_hit", adapter=self.name)
        return cached

    async def _cache_response(self, cache_key: str, response: Any, ttl: int):
        if self.cache and response is not None:
            await self.cache.set(cache_key, response, ttl=ttl)

    async def _request_json(self, call: str, method: str, url: str, **kwargs) -> Any:
        """
        One timed external call. Raises httpx.HTTPError on failure.
        """
        start = time.time()
        status = "success"
        try:
            response = await self.http_client.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError):
            status = "error"
            raise
        finally:
            external_call_duration.labels(adapter=self.name, call=call, status=status).observe(
                time.time() - start
            )

    async def _cached_json(self, call: str, method: str, url: str, cache_params: Dict[str, Any],
                           ttl: int, **kwargs) -> Any:
        """_request_json behind the cache, keyed on cache_params."""
        cache_key = self._get_cache_key(call, cache_params)
        cached = await self._get_cached_response(cache_key)
        if cached is not None:
            return cached
        data = await self._request_json(call, method, url, **kwargs)
        await self._cache_response(cache_key, data, ttl)
        return data

    async def lookup(self, query_text: str, language: str) -> LookupResult:
        raise NotImplementedError
