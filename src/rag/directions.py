"""Directions lookup - OpenRouteService

Parses "from X to Y" (English), "de X à Y" (French) or "من X إلى Y"
(Arabic), geocodes both ends concurrently, then requests a driving route.
Without an API key or a recognizable template the adapter answers with a
localized hint instead of guessing.
"""

import asyncio
import re
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog

from shared.messages import localize, MessageId, normalize_language

from orchestrator.state import SourceCitation, SourceType

from .base import BaseLookupAdapter, LookupResult, error_fields

logger = structlog.get_logger()

GEOCODE_URL = "https://api.openrouteservice.org/geocode/search"
DIRECTIONS_URL = "https://api.openrouteservice.org/v2/directions/{profile}/geojson"
SOURCE_URL = "https://openrouteservice.org/"

GEOCODE_TTL = 86400  # place coordinates rarely change
MAX_STEPS = 6

# Instruction languages supported by the route service
ROUTE_LANGUAGES = {"en", "fr"}

ROUTE_TEMPLATES = (
    re.compile(r"\bfrom\s+(.+?)\s+to\s+(.+?)$", re.IGNORECASE),  # en
    re.compile(r"\bde\s+(.+?)\s+(?:à|a)\s+(.+?)$", re.IGNORECASE),  # fr
    re.compile(r"(?<!\w)من\s+(.+?)\s+إلى\s+(.+)$"),  # ar
)


def parse_route(text: str) -> Optional[Tuple[str, str]]:
    """(origin, destination) from the first matching template, else None."""
    cleaned = (text or "").strip().rstrip("?!.؟ ")
    for template in ROUTE_TEMPLATES:
        match = template.search(cleaned)
        if match:
            origin, destination = match.group(1).strip(), match.group(2).strip()
            if origin and destination:
                return origin, destination
    return None


class DirectionsAdapter(BaseLookupAdapter):
    name = "directions"

    def __init__(self, http_client: httpx.AsyncClient, api_key: str = "", cache=None,
                 timeout: float = 10.0, profile: str = "driving-car"):
        super().__init__(http_client, cache=cache, timeout=timeout)
        self.api_key = api_key
        self.profile = profile

    async def geocode(self, place: str) -> Optional[Dict[str, Any]]:
        cache_params = {"text": place}
        data = await self._cached_json(
            "geocode", "GET", GEOCODE_URL, cache_params, GEOCODE_TTL,
            params={"api_key": self.api_key, "text": place, "size": 1},
        )
        features = (data or {}).get("features") or []
        if not features:
            return None
        lng, lat = features[0]["geometry"]["coordinates"][:2]
        return {"lat": lat, "lng": lng, "name": features[0].get("properties", {}).get("label", place)}

    async def route(self, origin: Dict[str, Any], destination: Dict[str, Any],
                    language: str) -> Optional[Dict[str, Any]]:
        body = {
            "coordinates": [[origin["lng"], origin["lat"]], [destination["lng"], destination["lat"]]],
            "instructions": True,
            "units": "m",
            "language": language if language in ROUTE_LANGUAGES else "en",
        }
        data = await self._request_json(
            "route", "POST", DIRECTIONS_URL.format(profile=self.profile),
            json=body, headers={"Authorization": self.api_key},
        )
        features = (data or {}).get("features") or []
        if not features:
            return None
        segments = features[0].get("properties", {}).get("segments") or []
        return segments[0] if segments else None

    async def lookup(self, query_text: str, language: str) -> LookupResult:
        language = normalize_language(language)

        if not self.api_key:
            return LookupResult(text=localize(MessageId.DIRECTIONS_NOT_CONFIGURED, language))

        endpoints = parse_route(query_text)
        if not endpoints:
            return LookupResult(text=localize(MessageId.DIRECTIONS_USAGE, language))

        try:
            origin, destination = await asyncio.gather(*(self.geocode(p) for p in endpoints))
            if not origin or not destination:
                logger.info("directions_geocode_failed", origin=endpoints[0], destination=endpoints[1])
                return LookupResult(text=localize(MessageId.DIRECTIONS_GEOCODE_FAILED, language))

            segment = await self.route(origin, destination, language)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("directions_lookup_failed", **error_fields(e))
            return LookupResult(text=localize(MessageId.DIRECTIONS_UNAVAILABLE, language))

        if not segment:
            return LookupResult(text=localize(MessageId.DIRECTIONS_NO_ROUTE, language))

        steps = [
            f"{i}. {step.get('instruction', '')}"
            for i, step in enumerate((segment.get("steps") or [])[:MAX_STEPS], start=1)
        ]
        text = localize(
            MessageId.DIRECTIONS_ROUTE, language,
            origin=origin["name"],
            destination=destination["name"],
            distance=f"{float(segment.get('distance', 0)) / 1000:.1f}",
            minutes=round(float(segment.get("duration", 0)) / 60),
            steps="\n".join(steps),
        )
        return LookupResult(
            text=text,
            sources=[SourceCitation(type=SourceType.WEB, name="OpenRouteService", url=SOURCE_URL)],
        )
