"""Patch report models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.templates.models import ParseResult


class ReplaceLogEntry(BaseModel):
    """Single replaced/unresolved/unsupported log item."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["replaced", "unresolved", "unsupported"]
    key: str | None = None
    record_key: str | None = None
    match: Literal["exact", "fuzzy"] | None = None
    node_index: int
    start: int
    end: int
    original_text: str
    new_text: str | None = None
    reason: str | None = None


class ReplaceSummary(BaseModel):
    """Aggregate replacement summary for observability."""

    model_config = ConfigDict(extra="forbid")

    total_placeholders: int
    replaced_count: int
    unresolved_count: int
    unsupported_count: int
    touched_node_count: int


class ReplaceReport(BaseModel):
    """Full replacement report including touched text nodes."""

    model_config = ConfigDict(extra="forbid")

    entries: list[ReplaceLogEntry] = Field(default_factory=list)
    summary: ReplaceSummary
    touched_nodes: list[int] = Field(default_factory=list)
    unresolved_keys: list[str] = Field(default_factory=list)


class PatchOutput(BaseModel):
    """Patched package bytes with the scan result and replace report."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    document_bytes: bytes
    parse_result: ParseResult
    replace_report: ReplaceReport
