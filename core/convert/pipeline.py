"""Patched docx bytes -> visual tree -> raster -> multi-page PDF."""

from __future__ import annotations

import logging
import time

from core.config.settings import RenderSettings
from core.convert.models import RenderResult
from core.convert.pdf_writer import assemble_pdf
from core.convert.rasterizer import RasterSurface, rasterize
from core.convert.visual_tree import build_visual_tree
from core.utils.errors import RenderFailureError
from core.utils.log_events import log_event

logger = logging.getLogger("recordprint.convert")


def render_pdf(
    document_bytes: bytes,
    *,
    settings: RenderSettings | None = None,
    surface: RasterSurface | None = None,
    title: str | None = None,
) -> RenderResult:
    settings = settings or RenderSettings()
    timing: dict[str, int] = {}

    started = time.perf_counter()
    tree = build_visual_tree(document_bytes, default_margin_pt=settings.default_margin_pt)
    timing["visual_tree_ms"] = _elapsed_ms(started)

    started = time.perf_counter()
    try:
        raster = rasterize(tree, settings=settings, surface=surface)
    except RenderFailureError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise RenderFailureError(f"Rasterization failed: {exc}", stage="raster") from exc
    timing["raster_ms"] = _elapsed_ms(started)

    started = time.perf_counter()
    try:
        pdf_bytes, page_count = assemble_pdf(raster, title=title)
    except Exception as exc:  # noqa: BLE001
        raise RenderFailureError(f"PDF assembly failed: {exc}", stage="pdf") from exc
    timing["pdf_ms"] = _elapsed_ms(started)

    result = RenderResult(
        pdf_bytes=pdf_bytes,
        page_count=page_count,
        raster_width_px=raster.image.width,
        raster_height_px=raster.image.height,
        missing_resources=list(raster.missing_resources),
        timing=timing,
    )
    log_event(
        logger,
        logging.INFO,
        "pdf_rendered",
        page_count=page_count,
        pdf_bytes=len(pdf_bytes),
        raster_height_px=result.raster_height_px,
        missing_resources=len(result.missing_resources),
        **timing,
    )
    return result


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
