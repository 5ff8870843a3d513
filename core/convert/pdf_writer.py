"""Slice the tall raster into A4 pages and assemble them with reportlab."""

from __future__ import annotations

import io

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from core.convert.models import RasterResult


def compute_page_slices(
    total_height: int, page_height: int, page_breaks: list[int]
) -> list[tuple[int, int]]:
    """Return (top, bottom) pixel bands; a band ends early at an explicit break."""

    total_height = max(1, total_height)
    page_height = max(1, page_height)
    breaks = sorted({item for item in page_breaks if 0 < item < total_height})

    slices: list[tuple[int, int]] = []
    top = 0
    while top < total_height:
        bottom = min(top + page_height, total_height)
        cut = next((item for item in breaks if top < item < bottom), None)
        if cut is not None:
            bottom = cut
        slices.append((top, bottom))
        top = bottom
    return slices


def assemble_pdf(raster: RasterResult, *, title: str | None = None) -> tuple[bytes, int]:
    """Draw each band at the top of an A4 portrait page, scaled to the page width."""

    image = raster.image
    page_width, page_height = A4
    pt_per_px = page_width / image.width
    page_height_px = max(1, int(page_height / pt_per_px))
    slices = compute_page_slices(image.height, page_height_px, raster.page_breaks)

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setCreator("recordprint")
    if title:
        pdf.setTitle(title)

    for top, bottom in slices:
        band = image.crop((0, top, image.width, bottom))
        band_height = (bottom - top) * pt_per_px
        pdf.drawImage(
            ImageReader(band),
            0,
            page_height - band_height,
            width=page_width,
            height=band_height,
        )
        pdf.showPage()

    pdf.save()
    return buffer.getvalue(), len(slices)
