"""Local-save fallback for generated PDFs."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol


class LocalSaver(Protocol):
    """Receives the PDF whenever write-back is impossible or unconfirmed."""

    def save(self, pdf_bytes: bytes, file_name: str) -> Path | None:
        """Store bytes locally and return the path, if any."""


class DirectoryLocalSaver:
    """Write fallback PDFs atomically into a directory."""

    def __init__(self, out_dir: Path) -> None:
        self._out_dir = out_dir

    def save(self, pdf_bytes: bytes, file_name: str) -> Path:
        self._out_dir.mkdir(parents=True, exist_ok=True)
        path = self._out_dir / Path(file_name).name
        write_bytes_atomic(path, pdf_bytes)
        return path


class MemoryLocalSaver:
    """Keep fallback PDFs in memory; the API streams them back to the caller."""

    def __init__(self) -> None:
        self.saved: dict[str, bytes] = {}

    def save(self, pdf_bytes: bytes, file_name: str) -> None:
        self.saved[file_name] = pdf_bytes
        return None


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    """Write bytes through a sibling temp file + replace."""

    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(raw_tmp_path)

    try:
        tmp_path.write_bytes(payload)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise
