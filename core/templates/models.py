"""Data models for placeholder scanning and resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class PlaceholderToken:
    """One brace token found inside a single text node."""

    raw: str
    key: str
    start: int
    end: int


@dataclass(frozen=True)
class Occurrence:
    """A token located in a specific text node of the main document part."""

    key: str
    node_index: int
    start: int
    end: int
    raw: str


@dataclass(frozen=True)
class UnsupportedOccurrence:
    """A brace fragment that cannot form a token inside its own node."""

    kind: str
    text: str
    node_index: int
    start: int
    end: int


@dataclass
class ParseResult:
    """Placeholder scanning output."""

    keys: list[str] = field(default_factory=list)
    occurrences: list[Occurrence] = field(default_factory=list)
    unsupported: list[UnsupportedOccurrence] = field(default_factory=list)


@dataclass(frozen=True)
class PlaceholderMatch:
    """Resolved replacement together with the record key that produced it."""

    record_key: str
    value: str
    match: Literal["exact", "fuzzy"]
