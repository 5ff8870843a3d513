"""Narrow host store interface and an in-memory implementation."""

from __future__ import annotations

import copy
import uuid
from collections.abc import Mapping
from typing import Any, Protocol

from core.records.models import BlobFile, FieldMeta, Selection


class HostStore(Protocol):
    """Async record/field/attachment API consumed by the generation pipeline."""

    async def get_selection(self) -> Selection:
        """Return the active table/record."""

    async def get_field_list(self, table_id: str) -> list[FieldMeta]:
        """Return every field of a table."""

    async def get_field_list_by_type(self, table_id: str, type_code: int) -> list[FieldMeta]:
        """Return fields of a table filtered by type code."""

    async def get_cell_value(self, table_id: str, field_id: str, record_id: str) -> Any:
        """Return the raw value of one cell."""

    async def set_cell_value(
        self, table_id: str, field_id: str, record_id: str, value: Any
    ) -> None:
        """Overwrite the value of one cell."""

    async def upload_blobs(self, files: list[BlobFile]) -> list[str]:
        """Upload files and return one token per file, in input order."""


class InMemoryHostStore:
    """Dict-backed host store used by tests, the API and the snapshot store.

    Layout: tables[table_id] = {"fields": [FieldMeta...], "records": {record_id:
    {field_id: value}}}. Blobs are kept by token.
    """

    def __init__(
        self,
        tables: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        selection: Selection | None = None,
    ) -> None:
        self.tables: dict[str, dict[str, Any]] = {}
        self.blobs: dict[str, BlobFile] = {}
        self.selection = selection or Selection()
        for table_id, table in (tables or {}).items():
            self.add_table(
                table_id,
                fields=table.get("fields", []),
                records=table.get("records", {}),
            )

    def add_table(
        self,
        table_id: str,
        *,
        fields: list[FieldMeta] | list[dict[str, Any]],
        records: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self.tables[table_id] = {
            "fields": [FieldMeta.model_validate(item) for item in fields],
            "records": {
                record_id: dict(values) for record_id, values in (records or {}).items()
            },
        }

    async def get_selection(self) -> Selection:
        return self.selection.model_copy()

    async def get_field_list(self, table_id: str) -> list[FieldMeta]:
        return list(self._table(table_id)["fields"])

    async def get_field_list_by_type(self, table_id: str, type_code: int) -> list[FieldMeta]:
        return [meta for meta in self._table(table_id)["fields"] if meta.type == type_code]

    async def get_cell_value(self, table_id: str, field_id: str, record_id: str) -> Any:
        record = self._record(table_id, record_id)
        return copy.deepcopy(record.get(field_id))

    async def set_cell_value(
        self, table_id: str, field_id: str, record_id: str, value: Any
    ) -> None:
        record = self._record(table_id, record_id)
        record[field_id] = copy.deepcopy(value)

    async def upload_blobs(self, files: list[BlobFile]) -> list[str]:
        tokens: list[str] = []
        for item in files:
            token = uuid.uuid4().hex
            self.blobs[token] = item
            tokens.append(token)
        return tokens

    def _table(self, table_id: str) -> dict[str, Any]:
        try:
            return self.tables[table_id]
        except KeyError as exc:
            raise KeyError(f"Unknown table: {table_id}") from exc

    def _record(self, table_id: str, record_id: str) -> dict[str, Any]:
        records = self._table(table_id)["records"]
        try:
            return records[record_id]
        except KeyError as exc:
            raise KeyError(f"Unknown record: {record_id}") from exc
