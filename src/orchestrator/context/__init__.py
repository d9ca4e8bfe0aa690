"""Context assembly modules."""

from .formatters import (
    resolve_name,
    format_line,
    to_citation,
    LANGUAGE_PREFERENCE,
    SECTION_TITLES,
)
from .assembler import ContextAssembler, ContextBlock, SECTION_ORDER

__all__ = [
    # Formatting
    "resolve_name",
    "format_line",
    "to_citation",
    "LANGUAGE_PREFERENCE",
    "SECTION_TITLES",
    # Assembly
    "ContextAssembler",
    "ContextBlock",
    "SECTION_ORDER",
]
