"""Interpret the patched docx into a styled visual tree (python-docx based)."""

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Iterator
from typing import Any

from docx import Document
from docx.document import Document as DocxDocument
from docx.enum.text import WD_ALIGN_PARAGRAPH, WD_UNDERLINE
from docx.table import Table, _Cell
from docx.text.hyperlink import Hyperlink
from docx.text.paragraph import Paragraph
from docx.text.run import Run

from core.convert.models import (
    A4_HEIGHT_PT,
    A4_WIDTH_PT,
    Alignment,
    Block,
    ImageSpan,
    PageBreakBlock,
    PageGeometry,
    ParagraphBlock,
    TableBlock,
    TableCellBlock,
    TextSpan,
    VisualTree,
)
from core.utils.docx_xml import (
    get_run_color_hex,
    iter_block_items,
    paragraph_page_break_before,
    run_inline_images,
    run_page_segments,
)
from core.utils.errors import RenderFailureError
from core.utils.log_events import log_event

logger = logging.getLogger("recordprint.convert")

_EMU_PER_PT = 12700
_MAX_STYLE_DEPTH = 16
_ALIGNMENT_MAP: dict[Any, Alignment] = {
    WD_ALIGN_PARAGRAPH.CENTER: "center",
    WD_ALIGN_PARAGRAPH.RIGHT: "right",
    WD_ALIGN_PARAGRAPH.JUSTIFY: "justify",
    WD_ALIGN_PARAGRAPH.DISTRIBUTE: "justify",
}


def build_visual_tree(document_bytes: bytes, *, default_margin_pt: float = 72.0) -> VisualTree:
    """Build paragraphs, tables, page breaks and image resources from docx bytes."""

    try:
        document = Document(io.BytesIO(document_bytes))
    except Exception as exc:  # noqa: BLE001
        raise RenderFailureError(
            f"Cannot open patched document: {exc}", stage="visual_tree"
        ) from exc

    try:
        return _TreeBuilder(document, default_margin_pt).build()
    except Exception as exc:  # noqa: BLE001
        raise RenderFailureError(
            f"Cannot interpret patched document: {exc}", stage="visual_tree"
        ) from exc


class _TreeBuilder:
    def __init__(self, document: DocxDocument, default_margin_pt: float) -> None:
        self._document = document
        self._default_margin_pt = default_margin_pt
        self._tree = VisualTree(geometry=self._geometry())

    def build(self) -> VisualTree:
        for item in iter_block_items(self._document):
            if isinstance(item, Paragraph):
                self._tree.blocks.extend(self._paragraph_blocks(item))
            else:
                self._tree.blocks.append(self._table_block(item))
        return self._tree

    def _geometry(self) -> PageGeometry:
        sections = self._document.sections
        if len(sections) == 0:
            margin = self._default_margin_pt
            return PageGeometry(
                margin_left_pt=margin,
                margin_right_pt=margin,
                margin_top_pt=margin,
                margin_bottom_pt=margin,
            )

        section = sections[0]
        return PageGeometry(
            width_pt=_pt(section.page_width, A4_WIDTH_PT),
            height_pt=_pt(section.page_height, A4_HEIGHT_PT),
            margin_left_pt=_pt(section.left_margin, self._default_margin_pt),
            margin_right_pt=_pt(section.right_margin, self._default_margin_pt),
            margin_top_pt=_pt(section.top_margin, self._default_margin_pt),
            margin_bottom_pt=_pt(section.bottom_margin, self._default_margin_pt),
        )

    def _paragraph_blocks(self, paragraph: Paragraph) -> list[Block]:
        blocks: list[Block] = []
        if paragraph_page_break_before(paragraph):
            blocks.append(PageBreakBlock())

        current = self._new_paragraph(paragraph)
        for run in _iter_runs(paragraph):
            for rel_id, cx, cy in run_inline_images(run):
                key = self._register_image(rel_id)
                if key is None:
                    continue
                current.spans.append(
                    ImageSpan(
                        resource_key=key,
                        width_pt=cx / _EMU_PER_PT if cx else None,
                        height_pt=cy / _EMU_PER_PT if cy else None,
                    )
                )

            for index, text in enumerate(run_page_segments(run)):
                if index > 0:
                    blocks.append(current)
                    blocks.append(PageBreakBlock())
                    current = self._new_paragraph(paragraph)
                if text:
                    current.spans.append(self._text_span(text, run, paragraph))

        blocks.append(current)
        return blocks

    def _new_paragraph(self, paragraph: Paragraph) -> ParagraphBlock:
        fmt = paragraph.paragraph_format
        alignment = paragraph.alignment
        if alignment is None:
            alignment = _from_style_chain(paragraph.style, lambda s: s.paragraph_format.alignment)

        return ParagraphBlock(
            alignment=_ALIGNMENT_MAP.get(alignment, "left"),
            space_before_pt=_pt(fmt.space_before, 0.0),
            space_after_pt=_pt(fmt.space_after, 0.0),
            first_line_indent_pt=_pt(fmt.first_line_indent, 0.0),
            left_indent_pt=max(_pt(fmt.left_indent, 0.0), 0.0),
        )

    def _text_span(self, text: str, run: Run, paragraph: Paragraph) -> TextSpan:
        styles = [run.style, paragraph.style]

        bold = run.bold
        if bold is None:
            bold = _from_styles(styles, lambda s: s.font.bold)
        italic = run.italic
        if italic is None:
            italic = _from_styles(styles, lambda s: s.font.italic)
        underline = run.underline
        if underline is None:
            underline = _from_styles(styles, lambda s: s.font.underline)

        size = run.font.size
        if size is None:
            size = _from_styles(styles, lambda s: s.font.size)

        return TextSpan(
            text=text,
            bold=bool(bold),
            italic=bool(italic),
            underline=underline not in (None, False, WD_UNDERLINE.NONE),
            size_pt=size.pt if size is not None else None,
            color=get_run_color_hex(run),
        )

    def _table_block(self, table: Table) -> TableBlock:
        block = TableBlock()
        for row in table.rows:
            cells: list[TableCellBlock] = []
            for tc in row._tr.tc_lst:
                cell = _Cell(tc, table)
                cell_block = TableCellBlock(grid_span=max(int(tc.grid_span or 1), 1))
                if tc.vMerge != "continue":
                    for paragraph in cell.paragraphs:
                        cell_block.paragraphs.extend(
                            item
                            for item in self._paragraph_blocks(paragraph)
                            if isinstance(item, ParagraphBlock)
                        )
                cells.append(cell_block)
            block.rows.append(cells)
        return block

    def _register_image(self, rel_id: str) -> str | None:
        part = self._document.part.related_parts.get(rel_id)
        if part is None:
            log_event(logger, logging.WARNING, "image_relationship_missing", rel_id=rel_id)
            return None
        key = f"image:{part.partname}"
        if key not in self._tree.resources:
            self._tree.resources[key] = part.blob
        return key


def _iter_runs(paragraph: Paragraph) -> Iterator[Run]:
    for item in paragraph.iter_inner_content():
        if isinstance(item, Hyperlink):
            yield from item.runs
        else:
            yield item


def _from_styles(styles: list[Any], getter: Callable[[Any], Any]) -> Any:
    for style in styles:
        value = _from_style_chain(style, getter)
        if value is not None:
            return value
    return None


def _from_style_chain(style: Any, getter: Callable[[Any], Any]) -> Any:
    for _ in range(_MAX_STYLE_DEPTH):
        if style is None:
            return None
        value = getter(style)
        if value is not None:
            return value
        style = style.base_style
    return None


def _pt(length: Any, default: float) -> float:
    if length is None:
        return default
    return float(length.pt)
