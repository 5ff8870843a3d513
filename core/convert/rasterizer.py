"""Lay out the visual tree in a one-page-wide viewport and rasterize it with Pillow.

The whole document becomes one tall bitmap. Explicit page breaks are kept as
pixel offsets so the PDF stage can start new pages there.
"""

from __future__ import annotations

import io
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Literal

from PIL import Image, ImageDraw, ImageFont

from core.config.settings import RenderSettings
from core.convert.models import (
    A4_WIDTH_PT,
    ImageSpan,
    PageBreakBlock,
    ParagraphBlock,
    RasterResult,
    TableBlock,
    VisualTree,
)
from core.convert.resources import ResourceReadiness, ResourceTracker
from core.utils.errors import RenderFailureError
from core.utils.log_events import log_event

logger = logging.getLogger("recordprint.convert")

_CJK_CLASS = "\u2e80-\u9fff\uf900-\ufaff\u3000-\u303f\uff00-\uffef"
_ATOM_RE = re.compile(rf"\n|\t|[ ]+|[{_CJK_CLASS}]|[^\s{_CJK_CLASS}]+")
_REGULAR_FONT_KEY = "font:regular"
_BOLD_FONT_KEY = "font:bold"
_TAB_SPACES = 4
_CELL_PADDING_PT = 4.0
_MISSING_IMAGE_PT = 48.0
_IMAGE_PX_TO_PT = 0.75
_MIN_CONTENT_WIDTH_PT = 72.0
_TEXT_COLOR = "#000000"
_BORDER_COLOR = "#000000"
_PLACEHOLDER_FILL = "#D9D9D9"
_PLACEHOLDER_OUTLINE = "#A0A0A0"


class RasterSurface:
    """Hidden drawing surface reused across runs; cleared at the start of each one."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._image: Image.Image | None = None
        self.generation = 0

    @property
    def image(self) -> Image.Image | None:
        return self._image

    def clear(self) -> None:
        self._image = None
        self.generation += 1

    def prepare(self, width: int, height: int) -> ImageDraw.ImageDraw:
        self._image = Image.new("RGB", (width, height), "white")
        return ImageDraw.Draw(self._image)

    def snapshot(self) -> Image.Image:
        if self._image is None:
            raise RuntimeError("Raster surface is empty")
        return self._image.copy()


_SHARED_SURFACE = RasterSurface()


def shared_surface() -> RasterSurface:
    return _SHARED_SURFACE


class FontBook:
    """Sized font cache over loaded font bytes, falling back to Pillow's default."""

    def __init__(self, regular: bytes | None = None, bold: bytes | None = None) -> None:
        self._regular = regular
        self._bold = bold
        self._cache: dict[tuple[int, bool], Any] = {}

    @property
    def has_bold_face(self) -> bool:
        return self._bold is not None

    def get(self, size_px: int, bold: bool = False) -> Any:
        use_bold = bold and self._bold is not None
        key = (size_px, use_bold)
        font = self._cache.get(key)
        if font is None:
            font = self._load(size_px, use_bold)
            self._cache[key] = font
        return font

    def _load(self, size_px: int, bold: bool) -> Any:
        data = self._bold if bold else self._regular
        if data is not None:
            try:
                return ImageFont.truetype(io.BytesIO(data), size_px)
            except OSError as exc:
                log_event(logger, logging.WARNING, "font_unusable", bold=bold, error=str(exc))
        return ImageFont.load_default(size=size_px)


@dataclass
class _Atom:
    kind: Literal["text", "space", "newline", "image"]
    width: float
    size_px: int = 0
    ascent: float = 0.0
    descent: float = 0.0
    height: float = 0.0
    text: str = ""
    font: Any = None
    fill: str = _TEXT_COLOR
    underline: bool = False
    fake_bold: bool = False
    image: Image.Image | None = None


@dataclass
class _Line:
    indent: float = 0.0
    wrapped: bool = False
    atoms: list[tuple[_Atom, float]] = field(default_factory=list)
    cursor: float = 0.0
    empty_size_px: int = 0

    @property
    def content_width(self) -> float:
        for atom, x in reversed(self.atoms):
            if atom.kind != "space":
                return x + atom.width
        return 0.0


@dataclass
class _TextOp:
    x: float
    top: float
    text: str
    font: Any
    fill: str
    width: float
    baseline: float
    underline: bool
    fake_bold: bool

    def draw(self, draw: ImageDraw.ImageDraw, canvas: Image.Image) -> None:
        if self.text.strip():
            stroke = 1 if self.fake_bold else 0
            draw.text(
                (self.x, self.top),
                self.text,
                font=self.font,
                fill=self.fill,
                stroke_width=stroke,
                stroke_fill=self.fill,
            )
        if self.underline:
            y = self.baseline + 2
            draw.line((self.x, y, self.x + self.width, y), fill=self.fill, width=1)


@dataclass
class _ImageOp:
    x: float
    y: float
    width: float
    height: float
    image: Image.Image | None

    def draw(self, draw: ImageDraw.ImageDraw, canvas: Image.Image) -> None:
        box = (self.x, self.y, self.x + self.width, self.y + self.height)
        if self.image is None:
            draw.rectangle(box, fill=_PLACEHOLDER_FILL, outline=_PLACEHOLDER_OUTLINE)
            return
        size = (max(1, round(self.width)), max(1, round(self.height)))
        resized = self.image.resize(size)
        position = (round(self.x), round(self.y))
        if resized.mode == "RGBA":
            canvas.paste(resized, position, resized)
        else:
            canvas.paste(resized.convert("RGB"), position)


@dataclass
class _RectOp:
    box: tuple[float, float, float, float]

    def draw(self, draw: ImageDraw.ImageDraw, canvas: Image.Image) -> None:
        draw.rectangle(self.box, outline=_BORDER_COLOR, width=1)


class _Layout:
    def __init__(
        self,
        tree: VisualTree,
        settings: RenderSettings,
        fonts: FontBook,
        images: dict[str, Image.Image],
    ) -> None:
        self._tree = tree
        self._settings = settings
        self._fonts = fonts
        self._images = images
        self.px_per_pt = settings.dpi / 72.0
        self.width_px = max(1, round(A4_WIDTH_PT * self.px_per_pt))
        self.height_px = 1
        self.page_breaks: list[int] = []
        self._ops: list[_TextOp | _ImageOp | _RectOp] = []
        self._default_size_px = self._size_px(None)

    def run(self) -> None:
        geometry = self._tree.geometry
        margin_left = geometry.margin_left_pt
        margin_right = geometry.margin_right_pt
        if A4_WIDTH_PT - margin_left - margin_right < _MIN_CONTENT_WIDTH_PT:
            margin_left = margin_right = self._settings.default_margin_pt

        x0 = margin_left * self.px_per_pt
        width = self.width_px - x0 - margin_right * self.px_per_pt
        top_margin = geometry.margin_top_pt * self.px_per_pt

        y = top_margin
        for block in self._tree.blocks:
            if isinstance(block, PageBreakBlock):
                self.page_breaks.append(round(y))
                y += top_margin
            elif isinstance(block, ParagraphBlock):
                y = self._layout_paragraph(block, x0, width, y)
            elif isinstance(block, TableBlock):
                y = self._layout_table(block, x0, width, y)

        self.height_px = max(1, round(y + geometry.margin_bottom_pt * self.px_per_pt))

    def draw(self, draw: ImageDraw.ImageDraw, canvas: Image.Image) -> None:
        for op in self._ops:
            op.draw(draw, canvas)

    def _size_px(self, size_pt: float | None) -> int:
        size = size_pt if size_pt is not None else self._settings.font_size_pt
        return max(1, round(size * self.px_per_pt))

    def _layout_paragraph(self, block: ParagraphBlock, x0: float, width: float, y: float) -> float:
        y += block.space_before_pt * self.px_per_pt
        left = min(block.left_indent_pt * self.px_per_pt, width / 2)
        x0 += left
        width -= left
        first_indent = min(max(block.first_line_indent_pt * self.px_per_pt, 0.0), width / 2)

        atoms = self._paragraph_atoms(block, width)
        for line in self._wrap(atoms, width, first_indent):
            height, baseline = self._line_metrics(line)
            free = max(width - line.indent - line.content_width, 0.0)
            offset = {"center": free / 2, "right": free}.get(block.alignment, 0.0)
            for atom, ax in line.atoms:
                x = x0 + line.indent + offset + ax
                if atom.kind == "image":
                    self._ops.append(
                        _ImageOp(
                            x=x,
                            y=y + baseline - atom.height,
                            width=atom.width,
                            height=atom.height,
                            image=atom.image,
                        )
                    )
                elif atom.kind == "text" or atom.underline:
                    self._ops.append(
                        _TextOp(
                            x=x,
                            top=y + baseline - atom.ascent,
                            text=atom.text,
                            font=atom.font,
                            fill=atom.fill,
                            width=atom.width,
                            baseline=y + baseline,
                            underline=atom.underline,
                            fake_bold=atom.fake_bold,
                        )
                    )
            y += height

        return y + block.space_after_pt * self.px_per_pt

    def _layout_table(self, block: TableBlock, x0: float, width: float, y: float) -> float:
        columns = max((sum(cell.grid_span for cell in row) for row in block.rows), default=0)
        if columns == 0:
            return y

        column_width = width / columns
        padding = _CELL_PADDING_PT * self.px_per_pt
        min_height = 2 * padding + self._default_size_px * self._settings.line_spacing

        for row in block.rows:
            row_top = y
            bottom = row_top + min_height
            cell_x = x0
            boxes: list[tuple[float, float]] = []
            for cell in row:
                cell_width = column_width * cell.grid_span
                cursor = row_top + padding
                inner_width = max(cell_width - 2 * padding, 1.0)
                for paragraph in cell.paragraphs:
                    cursor = self._layout_paragraph(paragraph, cell_x + padding, inner_width, cursor)
                bottom = max(bottom, cursor + padding)
                boxes.append((cell_x, cell_width))
                cell_x += cell_width

            for box_x, box_width in boxes:
                self._ops.append(_RectOp((box_x, row_top, box_x + box_width, bottom)))
            y = bottom

        return y

    def _paragraph_atoms(self, block: ParagraphBlock, max_width: float) -> list[_Atom]:
        atoms: list[_Atom] = []
        for span in block.spans:
            if isinstance(span, ImageSpan):
                atoms.append(self._image_atom(span, max_width))
                continue

            size_px = self._size_px(span.size_pt)
            font = self._fonts.get(size_px, span.bold)
            fake_bold = (
                span.bold
                and not self._fonts.has_bold_face
                and isinstance(font, ImageFont.FreeTypeFont)
            )
            ascent, descent = _metrics(font, size_px)
            fill = f"#{span.color}" if span.color else _TEXT_COLOR
            text = span.text.replace("\r", "").replace("\xa0", " ")

            for piece in _ATOM_RE.findall(text):
                if piece == "\n":
                    atoms.append(
                        _Atom(kind="newline", width=0.0, size_px=size_px, ascent=ascent, descent=descent)
                    )
                    continue
                if piece == "\t":
                    piece = " " * _TAB_SPACES
                kind: Literal["text", "space"] = "space" if piece.isspace() else "text"
                atoms.append(
                    _Atom(
                        kind=kind,
                        width=float(font.getlength(piece)),
                        size_px=size_px,
                        ascent=ascent,
                        descent=descent,
                        text=piece,
                        font=font,
                        fill=fill,
                        underline=span.underline,
                        fake_bold=fake_bold,
                    )
                )
        return atoms

    def _image_atom(self, span: ImageSpan, max_width: float) -> _Atom:
        image = self._images.get(span.resource_key)
        if span.width_pt and span.height_pt:
            width = span.width_pt * self.px_per_pt
            height = span.height_pt * self.px_per_pt
        elif image is not None:
            width = image.width * _IMAGE_PX_TO_PT * self.px_per_pt
            height = image.height * _IMAGE_PX_TO_PT * self.px_per_pt
        else:
            width = height = _MISSING_IMAGE_PT * self.px_per_pt

        if width > max_width > 0:
            height = height * max_width / width
            width = max_width
        return _Atom(kind="image", width=width, height=height, image=image)

    def _wrap(self, atoms: list[_Atom], width: float, first_indent: float) -> list[_Line]:
        lines = [_Line(indent=first_indent)]
        for atom in _split_oversized(atoms, width):
            line = lines[-1]
            if atom.kind == "newline":
                line.empty_size_px = atom.size_px
                lines.append(_Line())
                continue

            if line.atoms and line.cursor + atom.width > width - line.indent:
                lines.append(_Line(wrapped=True))
                line = lines[-1]
                if atom.kind == "space":
                    continue

            if atom.kind == "space" and line.wrapped and not line.atoms:
                continue

            line.atoms.append((atom, line.cursor))
            line.cursor += atom.width
        return lines

    def _line_metrics(self, line: _Line) -> tuple[float, float]:
        text_atoms = [atom for atom, _ in line.atoms if atom.kind != "image"]
        image_height = max(
            (atom.height for atom, _ in line.atoms if atom.kind == "image"), default=0.0
        )
        if text_atoms:
            size = max(atom.size_px for atom in text_atoms)
            ascent = max(atom.ascent for atom in text_atoms)
            descent = max(atom.descent for atom in text_atoms)
        else:
            size = line.empty_size_px or self._default_size_px
            ascent, descent = size * 0.8, size * 0.2

        text_block = size * self._settings.line_spacing
        leading = max(text_block - (ascent + descent), 0.0) / 2
        baseline = max(leading + ascent, image_height)
        return max(text_block, baseline + descent), baseline


def rasterize(
    tree: VisualTree,
    *,
    settings: RenderSettings | None = None,
    surface: RasterSurface | None = None,
) -> RasterResult:
    """Render the visual tree to one bitmap on the (cleared) shared surface."""

    settings = settings or RenderSettings()
    surface = surface or shared_surface()

    with surface.lock:
        surface.clear()
        readiness = _load_resources(tree, settings)

        fonts = FontBook(
            regular=readiness.loaded.get(_REGULAR_FONT_KEY),
            bold=readiness.loaded.get(_BOLD_FONT_KEY),
        )
        images = {
            key: value for key, value in readiness.loaded.items() if key.startswith("image:")
        }

        layout = _Layout(tree, settings, fonts, images)
        layout.run()
        if layout.height_px > settings.max_raster_height_px:
            raise RenderFailureError(
                f"Document too tall to rasterize: {layout.height_px}px "
                f"(limit {settings.max_raster_height_px}px)",
                stage="raster",
            )

        draw = surface.prepare(layout.width_px, layout.height_px)
        layout.draw(draw, surface.image)

        return RasterResult(
            image=surface.snapshot(),
            page_breaks=list(layout.page_breaks),
            px_per_pt=layout.px_per_pt,
            missing_resources=readiness.missing,
        )


def _load_resources(tree: VisualTree, settings: RenderSettings) -> ResourceReadiness:
    started = time.perf_counter()
    with ResourceTracker(max_workers=settings.resource_workers) as tracker:
        regular = _first_existing(settings.font_paths)
        if regular is not None:
            tracker.submit(_REGULAR_FONT_KEY, regular.read_bytes)
        bold = _first_existing(settings.bold_font_paths)
        if bold is not None:
            tracker.submit(_BOLD_FONT_KEY, bold.read_bytes)
        for key, blob in tree.resources.items():
            tracker.submit(key, partial(_decode_image, blob))

        readiness = tracker.wait_ready(settings.resource_timeout_seconds)

    level = logging.WARNING if readiness.missing else logging.DEBUG
    log_event(
        logger,
        level,
        "resources_ready",
        loaded=len(readiness.loaded),
        failed=readiness.failed,
        timed_out=readiness.timed_out,
        wait_ms=int((time.perf_counter() - started) * 1000),
    )
    return readiness


def _decode_image(blob: bytes) -> Image.Image:
    with Image.open(io.BytesIO(blob)) as source:
        source.load()
        if source.mode in ("RGBA", "LA", "P") or "transparency" in source.info:
            return source.convert("RGBA")
        return source.convert("RGB")


def _first_existing(paths: list[str]) -> Path | None:
    for raw in paths:
        candidate = Path(raw)
        if candidate.is_file():
            return candidate
    return None


def _metrics(font: Any, size_px: int) -> tuple[float, float]:
    getmetrics = getattr(font, "getmetrics", None)
    if getmetrics is None:
        return size_px * 0.8, size_px * 0.2
    ascent, descent = getmetrics()
    return float(ascent), float(descent)


def _split_oversized(atoms: list[_Atom], width: float) -> list[_Atom]:
    result: list[_Atom] = []
    for atom in atoms:
        if atom.kind != "text" or atom.width <= width or len(atom.text) <= 1:
            result.append(atom)
            continue
        for char in atom.text:
            result.append(
                _Atom(
                    kind="text",
                    width=float(atom.font.getlength(char)),
                    size_px=atom.size_px,
                    ascent=atom.ascent,
                    descent=atom.descent,
                    text=char,
                    font=atom.font,
                    fill=atom.fill,
                    underline=atom.underline,
                    fake_bold=atom.fake_bold,
                )
            )
    return result
