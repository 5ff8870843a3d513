"""Utilities for docx XML operations.

All XML-level operations on docx content must be implemented here.
Do not spread XML manipulation logic across other modules.
"""

from __future__ import annotations

import io
import re
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass, field

from docx.document import Document as DocxDocument
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph
from docx.text.run import Run
from lxml import etree

MAIN_DOCUMENT_PART = "word/document.xml"

# Field codes and tracked deletions are never visible body text.
_SKIPPED_TEXT_TAGS = frozenset(
    {qn("w:instrText"), qn("w:delText"), qn("w:delInstrText")}
)

_XML_INVALID_CHARS_RE = re.compile(
    "[^\u0009\u000a\u000d\u0020-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]"
)


@dataclass
class TextNodeTable:
    """Text-bearing leaf elements of one XML part, indexed in document order."""

    root: etree._Element
    nodes: list[etree._Element] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def text(self, index: int) -> str:
        return self.nodes[index].text or ""

    def set_text(self, index: int, value: str) -> None:
        self.nodes[index].text = strip_xml_invalid_chars(value)


def read_part(package_bytes: bytes, part_name: str = MAIN_DOCUMENT_PART) -> bytes | None:
    """Return the raw bytes of one zip member, or None when it is absent.

    Raises zipfile.BadZipFile when the buffer is not a zip container.
    """

    with zipfile.ZipFile(io.BytesIO(package_bytes)) as archive:
        try:
            return archive.read(part_name)
        except KeyError:
            return None


def parse_part(part_bytes: bytes) -> etree._Element:
    """Parse an XML part without resolving external entities."""

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    return etree.fromstring(part_bytes, parser=parser)


def serialize_part(root: etree._Element) -> bytes:
    return etree.tostring(
        root.getroottree(), xml_declaration=True, encoding="UTF-8", standalone=True
    )


def collect_text_nodes(root: etree._Element) -> TextNodeTable:
    """Collect leaf elements that carry text, in document order.

    Field codes (w:instrText) and deleted revision text (w:delText) are skipped.
    """

    table = TextNodeTable(root=root)
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        if len(element) > 0 or element.tag in _SKIPPED_TEXT_TAGS:
            continue
        if element.text:
            table.nodes.append(element)
    return table


def replace_part(package_bytes: bytes, part_name: str, part_bytes: bytes) -> bytes:
    """Rewrite the zip with one member replaced; all others are copied verbatim."""

    target = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(package_bytes)) as source_zip:
        with zipfile.ZipFile(target, "w") as target_zip:
            for info in source_zip.infolist():
                if info.filename == part_name:
                    data = part_bytes
                else:
                    data = source_zip.read(info.filename)
                target_zip.writestr(info, data)
    return target.getvalue()


def strip_xml_invalid_chars(value: str) -> str:
    """Drop characters that XML 1.0 cannot represent."""

    return _XML_INVALID_CHARS_RE.sub("", value)


def iter_block_items(document: DocxDocument) -> Iterator[Paragraph | Table]:
    """Yield body paragraphs and tables in document order."""

    body = document.element.body
    for child in body.iterchildren():
        if child.tag == qn("w:p"):
            yield Paragraph(child, document._body)
        elif child.tag == qn("w:tbl"):
            yield Table(child, document._body)


def run_page_segments(run: Run) -> list[str]:
    """Split the run's text at explicit page breaks.

    One more segment than there are page breaks is returned; text before the
    first break is segment 0.
    """

    segments: list[str] = []
    pieces: list[str] = []
    for child in run._r.iterchildren():
        tag = child.tag
        if tag == qn("w:t"):
            pieces.append(child.text or "")
        elif tag in (qn("w:tab"), qn("w:ptab")):
            pieces.append("\t")
        elif tag == qn("w:cr"):
            pieces.append("\n")
        elif tag == qn("w:noBreakHyphen"):
            pieces.append("-")
        elif tag == qn("w:br"):
            if child.get(qn("w:type")) == "page":
                segments.append("".join(pieces))
                pieces = []
            elif child.get(qn("w:type")) in (None, "textWrapping"):
                pieces.append("\n")
    segments.append("".join(pieces))
    return segments


def paragraph_page_break_before(paragraph: Paragraph) -> bool:
    p_pr = paragraph._p.pPr
    if p_pr is None:
        return False
    flag = p_pr.find(qn("w:pageBreakBefore"))
    if flag is None:
        return False
    return flag.get(qn("w:val")) not in ("0", "false", "off")


def run_inline_images(run: Run) -> list[tuple[str, int | None, int | None]]:
    """Return (relationship id, cx EMU, cy EMU) for each picture in the run."""

    images: list[tuple[str, int | None, int | None]] = []
    for drawing in run._r.iter(qn("w:drawing")):
        extent = next(drawing.iter(qn("wp:extent")), None)
        cx = _int_attr(extent, "cx")
        cy = _int_attr(extent, "cy")
        for blip in drawing.iter(qn("a:blip")):
            rel_id = blip.get(qn("r:embed"))
            if rel_id:
                images.append((rel_id, cx, cy))
    return images


def get_run_color_hex(run: Run) -> str | None:
    """Return direct run colour as RRGGBB, or None for auto/inherited."""

    r_pr = run._r.rPr
    if r_pr is None:
        return None
    color = r_pr.find(qn("w:color"))
    if color is None:
        return None
    value = color.get(qn("w:val"))
    if value is None or value.lower() == "auto" or len(value) != 6:
        return None
    return value.upper()


def _int_attr(element: etree._Element | None, name: str) -> int | None:
    if element is None:
        return None
    value = element.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
