"""Local JSON snapshot acting as a host store for CLI runs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from core.persist.host_store import InMemoryHostStore
from core.records.models import BlobFile, Selection

_SNAPSHOT_VERSION = 1


class SnapshotHostStore(InMemoryHostStore):
    """Host store backed by a JSON file; writes and uploads are flushed to disk.

    Snapshot shape:
        {"version": 1,
         "selection": {"table_id": ..., "record_id": ...},
         "tables": {table_id: {"fields": [{id, name, type}],
                               "records": {record_id: {field_id: value}}}},
         "blobs": {token: {"name": ..., "mime_type": ..., "path": ...}}}
    """

    def __init__(self, snapshot_path: Path, blob_dir: Path | None = None) -> None:
        self._snapshot_path = snapshot_path
        self._blob_dir = blob_dir or snapshot_path.parent / "blobs"
        raw = self._read_raw()
        super().__init__(
            raw.get("tables", {}),
            selection=Selection.model_validate(raw.get("selection") or {}),
        )
        self._blob_manifest: dict[str, dict[str, str]] = dict(raw.get("blobs", {}))

    async def set_cell_value(
        self, table_id: str, field_id: str, record_id: str, value: Any
    ) -> None:
        await super().set_cell_value(table_id, field_id, record_id, value)
        self._write_data()

    async def upload_blobs(self, files: list[BlobFile]) -> list[str]:
        tokens = await super().upload_blobs(files)
        self._blob_dir.mkdir(parents=True, exist_ok=True)
        for token, item in zip(tokens, files, strict=True):
            blob_path = self._blob_dir / f"{token}_{Path(item.name).name}"
            blob_path.write_bytes(item.content)
            self._blob_manifest[token] = {
                "name": item.name,
                "mime_type": item.mime_type,
                "path": str(blob_path),
            }
        self._write_data()
        return tokens

    def _read_raw(self) -> dict[str, Any]:
        try:
            raw = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ValueError(f"Record snapshot not found: {self._snapshot_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid record snapshot JSON: {self._snapshot_path}") from exc

        _validate_payload(raw, source=str(self._snapshot_path))
        return raw

    def _write_data(self) -> None:
        self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._snapshot_path.with_suffix(f"{self._snapshot_path.suffix}.tmp")

        payload = {
            "version": _SNAPSHOT_VERSION,
            "selection": self.selection.model_dump(mode="json"),
            "tables": {
                table_id: {
                    "fields": [meta.model_dump(mode="json") for meta in table["fields"]],
                    "records": table["records"],
                }
                for table_id, table in sorted(self.tables.items())
            },
            "blobs": {key: self._blob_manifest[key] for key in sorted(self._blob_manifest)},
        }
        temp_path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )
        temp_path.replace(self._snapshot_path)


def _validate_payload(raw: Any, *, source: str) -> None:
    if not isinstance(raw, dict):
        raise ValueError(f"Record snapshot must contain a mapping: {source}")
    tables = raw.get("tables", {})
    if not isinstance(tables, dict):
        raise ValueError(f"Record snapshot 'tables' must be a mapping: {source}")


def store_from_payload(payload: Any, *, source: str = "payload") -> InMemoryHostStore:
    """Build an in-memory store from an already parsed snapshot (nothing is flushed)."""

    _validate_payload(payload, source=source)
    return InMemoryHostStore(
        payload.get("tables", {}),
        selection=Selection.model_validate(payload.get("selection") or {}),
    )
