"""Weather lookup - Open-Meteo (no API key)

Geocodes a place name taken from the message, then fetches current
conditions plus today's forecast. When no place can be resolved the
adapter returns no text and the caller falls back to the app-data path.
"""

import re
from typing import Any, Dict, Optional

import httpx
import structlog

from shared.messages import localize, MessageId, normalize_language

from orchestrator.state import SourceCitation, SourceType

from .base import BaseLookupAdapter, LookupResult, error_fields

logger = structlog.get_logger()

GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

GEOCODE_TTL = 600  # 10 minutes
FORECAST_TTL = 300  # 5 minutes

# Place after "in" / "à" / "في" at the end of the message
_CITY_RE = re.compile(r"\b(?:in|à|في)\s+([A-Za-zÀ-ÿ\u0600-\u06FF\s\-']{2,})$", re.IGNORECASE)


def extract_place(text: str) -> str:
    """Place name from the end of the message, else the whole message."""
    cleaned = (text or "").strip().rstrip("?!.؟ ")
    match = _CITY_RE.search(cleaned)
    return match.group(1).strip() if match else cleaned


class WeatherAdapter(BaseLookupAdapter):
    name = "weather"

    async def geocode(self, place: str, language: str) -> Optional[Dict[str, Any]]:
        params = {"name": place, "count": 1, "language": language}
        data = await self._cached_json("geocode", "GET", GEOCODE_URL, params, GEOCODE_TTL, params=params)
        results = (data or {}).get("results") or []
        return results[0] if results else None

    async def forecast(self, latitude: float, longitude: float) -> Dict[str, Any]:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": "temperature_2m,weather_code,wind_speed_10m",
            "daily": "temperature_2m_max,temperature_2m_min,precipitation_sum",
            "timezone": "auto",
        }
        return await self._cached_json("forecast", "GET", FORECAST_URL, params, FORECAST_TTL, params=params)

    async def lookup(self, query_text: str, language: str) -> LookupResult:
        language = normalize_language(language)
        place = extract_place(query_text)

        try:
            location = await self.geocode(place, language)
            if not location:
                logger.info("weather_place_not_found", place=place)
                return LookupResult(text=None)
            weather = await self.forecast(location["latitude"], location["longitude"])
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("weather_lookup_failed", place=place, **error_fields(e))
            return LookupResult(text=None)

        current = weather.get("current") or {}
        lines = [localize(
            MessageId.WEATHER_CURRENT, language,
            place=location.get("name", place),
            country=location.get("country", ""),
            temperature=current.get("temperature_2m"),
            wind=current.get("wind_speed_10m"),
        )]

        daily = weather.get("daily")
        if daily:
            def first(key):
                values = daily.get(key) or [None]
                return values[0]
            lines.append(localize(
                MessageId.WEATHER_TODAY, language,
                min=first("temperature_2m_min"),
                max=first("temperature_2m_max"),
                precipitation=first("precipitation_sum"),
            ))

        url = str(httpx.URL(FORECAST_URL, params={
            "latitude": location["latitude"], "longitude": location["longitude"],
        }))
        return LookupResult(
            text="\n".join(lines),
            sources=[SourceCitation(type=SourceType.WEB, name="Open-Meteo", url=url)],
        )
