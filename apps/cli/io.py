"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.orchestrator.pipeline import GenerationResult
from core.persist.local_save import write_bytes_atomic


@dataclass(frozen=True)
class OutputPaths:
    """Fixed output artifact paths for a single generation run."""

    report: Path
    docx: Path
    record_map: Path
    blobs: Path


def build_output_paths(out_dir: Path) -> OutputPaths:
    """Build fixed output file paths under out_dir."""

    return OutputPaths(
        report=out_dir / "out.report.json",
        docx=out_dir / "out.docx",
        record_map=out_dir / "out.record_map.json",
        blobs=out_dir / "blobs",
    )


def write_generation_output_atomic(
    paths: OutputPaths, result: GenerationResult, *, keep_docx: bool = False
) -> None:
    """Write the run report (and optionally the patched docx) atomically."""

    paths.report.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(paths.report, result.model_dump(mode="json"))
    if keep_docx:
        write_bytes_atomic(paths.docx, result.document_bytes)


def write_error_report_atomic(paths: OutputPaths, *, error_type: str, error_message: str) -> None:
    """Write the report file with only an error block."""

    paths.report.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(
        paths.report,
        {"error": {"error_type": error_type, "error_message": error_message}},
    )


def write_record_map_atomic(path: Path, payload: str) -> None:
    """Write the record-map debug dump (already JSON text) atomically."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(path, json.loads(payload))


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, indent=2)

    tmp_path.replace(path)
