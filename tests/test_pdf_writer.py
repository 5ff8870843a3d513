from __future__ import annotations

from PIL import Image

from core.convert.models import RasterResult
from core.convert.pdf_writer import assemble_pdf, compute_page_slices


def test_slices_cover_the_bitmap_in_page_bands() -> None:
    assert compute_page_slices(100, 40, []) == [(0, 40), (40, 80), (80, 100)]


def test_slices_end_early_at_explicit_breaks() -> None:
    assert compute_page_slices(100, 40, [30]) == [(0, 30), (30, 70), (70, 100)]


def test_out_of_range_and_duplicate_breaks_are_ignored() -> None:
    assert compute_page_slices(50, 40, [0, 50, 80, 20, 20]) == [(0, 20), (20, 50)]


def test_short_bitmap_is_one_page() -> None:
    assert compute_page_slices(10, 40, []) == [(0, 10)]


def test_assemble_pdf_produces_one_page_per_band() -> None:
    raster = RasterResult(
        image=Image.new("RGB", (595, 2000), "white"),
        page_breaks=[],
        px_per_pt=1.0,
    )

    pdf_bytes, page_count = assemble_pdf(raster, title="Generated_r1.pdf")

    assert pdf_bytes.startswith(b"%PDF-")
    assert page_count == 3


def test_assemble_pdf_honours_page_breaks() -> None:
    raster = RasterResult(
        image=Image.new("RGB", (595, 300), "white"),
        page_breaks=[100, 200],
        px_per_pt=1.0,
    )

    _, page_count = assemble_pdf(raster)

    assert page_count == 3
