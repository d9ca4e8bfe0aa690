"""Web search lookup - SerpAPI (Google engine, Morocco locale)"""

import httpx
import structlog

from shared.messages import localize, MessageId, normalize_language

from orchestrator.state import SourceCitation, SourceType

from .base import BaseLookupAdapter, LookupResult, error_fields

logger = structlog.get_logger()

SEARCH_URL = "https://serpapi.com/search.json"
SEARCH_TTL = 3600  # 1 hour
MAX_RESULTS = 3


class WebSearchAdapter(BaseLookupAdapter):
    name = "websearch"

    def __init__(self, http_client: httpx.AsyncClient, api_key: str = "", cache=None,
                 timeout: float = 10.0, country: str = "ma"):
        super().__init__(http_client, cache=cache, timeout=timeout)
        self.api_key = api_key
        self.country = country

    async def search(self, query_text: str, language: str) -> list:
        params = {"engine": "google", "q": query_text, "hl": language, "gl": self.country, "num": 5}
        data = await self._cached_json(
            "search", "GET", SEARCH_URL, params, SEARCH_TTL,
            params={**params, "api_key": self.api_key},
        )
        return ((data or {}).get("organic_results") or [])[:MAX_RESULTS]

    async def lookup(self, query_text: str, language: str) -> LookupResult:
        language = normalize_language(language)

        if not self.api_key:
            return LookupResult(text=localize(MessageId.WEB_NOT_CONFIGURED, language))

        try:
            results = await self.search(query_text, language)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("web_search_failed", **error_fields(e))
            return LookupResult(text=localize(MessageId.WEB_UNAVAILABLE, language))

        if not results:
            return LookupResult(text=localize(MessageId.WEB_NO_RESULTS, language))

        items = [
            f"• {r.get('title', '')}\n  {r.get('link', '')}\n  {r.get('snippet') or ''}".rstrip()
            for r in results
        ]
        sources = [
            SourceCitation(type=SourceType.WEB, name=r.get("title") or "Google (SerpAPI)", url=r.get("link"))
            for r in results
        ]
        return LookupResult(
            text=localize(MessageId.WEB_TOP_RESULTS, language, results="\n\n".join(items)),
            sources=sources,
        )
