"""
Context Assembler

Merges ranked records from every category into one bounded text block.
Sections appear in a fixed order (Services, Places, Stadiums, News) and
only when non-empty; the joined block is cut to the total cap.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from shared.config import ContextLimits

from ..state import Category, RetrievedRecord, SourceCitation
from .formatters import SECTION_TITLES, format_line, to_citation

SECTION_ORDER = (Category.SERVICES, Category.PLACES, Category.STADIUMS, Category.NEWS)


@dataclass
class ContextBlock:
    text: str
    # Records whose line starts inside the capped text, in context order
    records: List[RetrievedRecord] = field(default_factory=list)
    language: str = "en"

    @property
    def is_empty(self) -> bool:
        return not self.text

    def as_prompt(self) -> str:
        return "Context:\n" + (self.text or "None")

    def citations(self) -> List[SourceCitation]:
        return [to_citation(r, self.language) for r in self.records]


class ContextAssembler:
    """Deterministic: same records and limits always give the same block."""

    def __init__(self, limits: ContextLimits):
        self.limits = limits

    def assemble(self, records: Dict[Category, Sequence[RetrievedRecord]], language: str) -> ContextBlock:
        parts: List[str] = []
        # (record, start offset of its line in the joined text)
        placed: List[tuple] = []
        offset = 0

        for category in SECTION_ORDER:
            rows = records.get(category) or []
            if not rows:
                continue
            if parts:
                parts.append("\n\n")
                offset += 2
            heading = f"{SECTION_TITLES[category]}:"
            parts.append(heading)
            offset += len(heading)
            for record in rows:
                line = format_line(record, language, self.limits)
                parts.append("\n")
                offset += 1
                placed.append((record, offset))
                parts.append(line)
                offset += len(line)

        cap = self.limits.total_chars
        text = "".join(parts)[:cap]
        surfaced = [record for record, start in placed if start < cap]
        return ContextBlock(text=text, records=surfaced, language=language)
