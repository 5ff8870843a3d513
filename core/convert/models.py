"""Visual tree and raster models for docx -> PDF conversion."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from PIL import Image

A4_WIDTH_PT = 595.2756
A4_HEIGHT_PT = 841.8898

Alignment = Literal["left", "center", "right", "justify"]


@dataclass
class TextSpan:
    """A styled piece of run text."""

    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    size_pt: float | None = None
    color: str | None = None


@dataclass
class ImageSpan:
    """An inline picture; the blob lives in VisualTree.resources."""

    resource_key: str
    width_pt: float | None = None
    height_pt: float | None = None


@dataclass
class ParagraphBlock:
    spans: list[TextSpan | ImageSpan] = field(default_factory=list)
    alignment: Alignment = "left"
    space_before_pt: float = 0.0
    space_after_pt: float = 0.0
    first_line_indent_pt: float = 0.0
    left_indent_pt: float = 0.0


@dataclass
class TableCellBlock:
    paragraphs: list[ParagraphBlock] = field(default_factory=list)
    grid_span: int = 1


@dataclass
class TableBlock:
    rows: list[list[TableCellBlock]] = field(default_factory=list)


@dataclass
class PageBreakBlock:
    """Explicit break: following content starts on a new page."""


Block = ParagraphBlock | TableBlock | PageBreakBlock


@dataclass(frozen=True)
class PageGeometry:
    width_pt: float = A4_WIDTH_PT
    height_pt: float = A4_HEIGHT_PT
    margin_left_pt: float = 72.0
    margin_right_pt: float = 72.0
    margin_top_pt: float = 72.0
    margin_bottom_pt: float = 72.0


@dataclass
class VisualTree:
    """Styled, layout-ready representation of the patched document."""

    blocks: list[Block] = field(default_factory=list)
    geometry: PageGeometry = field(default_factory=PageGeometry)
    resources: dict[str, bytes] = field(default_factory=dict)


@dataclass
class RasterResult:
    """Single tall bitmap of the laid-out document."""

    image: Image.Image
    page_breaks: list[int]
    px_per_pt: float
    missing_resources: list[str] = field(default_factory=list)


@dataclass
class RenderResult:
    """Final PDF output of the conversion pipeline."""

    pdf_bytes: bytes
    page_count: int
    raster_width_px: int
    raster_height_px: int
    missing_resources: list[str] = field(default_factory=list)
    timing: dict[str, int] = field(default_factory=dict)
