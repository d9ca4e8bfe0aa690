"""
Per-category record formatters.

Each formatter projects one retrieved record onto a single context line.
Field values are cut to their own caps, then the whole line to the
per-line cap. Truncation is plain character slicing.
"""

from typing import Any, Callable, Dict, Optional

from shared.config import ContextLimits
from shared.messages import normalize_language

from ..state import Category, CATEGORY_SOURCE_TYPES, RetrievedRecord, SourceCitation

# Field preference per caller language
LANGUAGE_PREFERENCE = {
    "en": ("en", "fr", "ar"),
    "fr": ("fr", "en", "ar"),
    "ar": ("ar", "en", "fr"),
}

SECTION_TITLES = {
    Category.SERVICES: "Services",
    Category.PLACES: "Places to visit",
    Category.STADIUMS: "CAN 2025 Stadiums",
    Category.NEWS: "News",
}


def clip(value: Any, limit: int) -> str:
    """String form of `value` cut to `limit` characters ('' for None)."""
    if value is None:
        return ""
    return str(value)[:max(limit, 0)]


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def resolve_name(fields: Dict[str, Any], language: str, prefix: str = "name") -> str:
    """
    Pick the first non-empty localized field in the caller's preference order.

    >>> resolve_name({"name_fr": "A", "name_en": "B", "name_ar": "C"}, "ar")
    'C'
    >>> resolve_name({"name_en": "B"}, "fr")
    'B'
    """
    for lang in LANGUAGE_PREFERENCE[normalize_language(language)]:
        value = fields.get(f"{prefix}_{lang}")
        if _present(value):
            return str(value).strip()
    return ""


def format_service(record: RetrievedRecord, language: str, limits: ContextLimits) -> str:
    f = record.fields
    name = clip(resolve_name(f, language) or "Service", limits.name_chars)
    line = f"- {name} @ {clip(f.get('address'), limits.address_chars)}"
    if _present(f.get("phone")):
        line += f" (phone: {clip(f.get('phone'), limits.phone_chars)})"
    return line


def format_place(record: RetrievedRecord, language: str, limits: ContextLimits) -> str:
    name = clip(resolve_name(record.fields, language), limits.name_chars)
    return f"- {name} (tourism)"


def format_stadium(record: RetrievedRecord, language: str, limits: ContextLimits) -> str:
    f = record.fields
    line = f"- {clip(resolve_name(f, language), limits.name_chars)} stadium"
    if _present(f.get("capacity")):
        line += f", capacity: {clip(f.get('capacity'), limits.capacity_chars)}"
    return line


def format_news(record: RetrievedRecord, language: str, limits: ContextLimits) -> str:
    title = clip(resolve_name(record.fields, language, prefix="title"), limits.title_chars)
    return f"- {title}"


FORMATTERS: Dict[Category, Callable[[RetrievedRecord, str, ContextLimits], str]] = {
    Category.SERVICES: format_service,
    Category.PLACES: format_place,
    Category.STADIUMS: format_stadium,
    Category.NEWS: format_news,
}


def format_line(record: RetrievedRecord, language: str, limits: ContextLimits) -> str:
    """Formatted context line for a record, capped at limits.line_chars."""
    return clip(FORMATTERS[record.category](record, language, limits), limits.line_chars)


def _coordinate(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def to_citation(record: RetrievedRecord, language: str) -> SourceCitation:
    """Source citation for a surfaced record (services carry coordinates)."""
    prefix = "title" if record.category == Category.NEWS else "name"
    citation = SourceCitation(
        type=CATEGORY_SOURCE_TYPES[record.category],
        id=record.id,
        name=resolve_name(record.fields, language, prefix=prefix) or None,
    )
    if record.category == Category.SERVICES:
        citation.lat = _coordinate(record.fields.get("lat"))
        citation.lng = _coordinate(record.fields.get("lng"))
    return citation
