"""
Orchestrator State Definitions

Request-scoped models that flow through the chat pipeline: the normalized
query, retrieved records, source citations and the final answer.
"""

from typing import Dict, Any, Optional, List
from enum import Enum

from pydantic import BaseModel, Field


class Intent(str, Enum):
    """Intents the router can assign to a user message."""
    APP_DATA = "app_data"  # Answer from the app's own records
    WEATHER = "weather"  # Open-Meteo lookup
    DIRECTIONS = "directions"  # OpenRouteService route
    WEB = "web"  # SerpAPI search


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Category(str, Enum):
    """Record categories, in context section order."""
    SERVICES = "services"
    PLACES = "places"
    STADIUMS = "stadiums"
    NEWS = "news"


class SourceType(str, Enum):
    SERVICE = "service"
    NEWS = "news"
    STADIUM = "stadium"
    PLACE = "place"
    WEB = "web"


CATEGORY_SOURCE_TYPES = {
    Category.SERVICES: SourceType.SERVICE,
    Category.PLACES: SourceType.PLACE,
    Category.STADIUMS: SourceType.STADIUM,
    Category.NEWS: SourceType.NEWS,
}


class Turn(BaseModel):
    role: Role
    text: str


class Filters(BaseModel):
    """Optional categorical filters passed to the similarity search."""
    city_id: Optional[Any] = None
    category_id: Optional[Any] = None


class Query(BaseModel):
    """A normalized chat request."""
    conversation_id: Optional[str] = Field(None, description="Opaque conversation id for the message log")
    language: str = Field("en", description="en, fr or ar")
    turns: List[Turn] = Field(default_factory=list)
    filters: Filters = Field(default_factory=Filters)
    allow_external: bool = False

    def last_user_text(self) -> str:
        """Text of the most recent user turn, trimmed ('' when there is none)."""
        for turn in reversed(self.turns):
            if turn.role == Role.USER:
                return turn.text.strip()
        return ""

    def turn_window(self, size: int, max_chars: int) -> List[Turn]:
        """Last `size` turns, each clamped to `max_chars` characters."""
        window = self.turns[-size:] if size > 0 else []
        return [Turn(role=t.role, text=t.text[:max_chars]) for t in window]


class RetrievedRecord(BaseModel):
    """One row returned by a similarity-search procedure."""
    category: Category
    id: Optional[Any] = None
    similarity: float = 0.0
    fields: Dict[str, Any] = Field(default_factory=dict, description="Raw row from the datastore")

    @classmethod
    def from_row(cls, category: Category, row: Dict[str, Any]) -> "RetrievedRecord":
        try:
            similarity = float(row.get("similarity") or 0.0)
        except (TypeError, ValueError):
            similarity = 0.0
        return cls(category=category, id=row.get("id"), similarity=similarity, fields=row)


class SourceCitation(BaseModel):
    """A cited source returned alongside the answer."""
    type: SourceType
    id: Optional[Any] = None
    name: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    url: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ChatAnswer(BaseModel):
    """Successful response body."""
    output_text: str
    sources: List[SourceCitation] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "output_text": self.output_text,
            "sources": [s.to_wire() for s in self.sources],
        }
