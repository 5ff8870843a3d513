"""Host record models shared by the collector, coordinator and stores."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ATTACHMENT_FIELD_TYPE = 17
PDF_MIME_TYPE = "application/pdf"


class FieldValueKind(str, Enum):
    """Closed set of raw field value shapes handled by the normalizer."""

    NULL = "null"
    SCALAR = "scalar"
    TIMESTAMP_CANDIDATE = "timestamp_candidate"
    LIST = "list"
    STRUCTURED = "structured"


class FieldMeta(BaseModel):
    """Field descriptor as listed by the host table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    type: int = 1


class Selection(BaseModel):
    """Active table/record in the host UI."""

    model_config = ConfigDict(extra="ignore")

    table_id: str | None = None
    record_id: str | None = None


class AttachmentReference(BaseModel):
    """One entry inside an attachment field's list value."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    token: str
    name: str
    type: str = PDF_MIME_TYPE
    time_stamp: int = Field(alias="timeStamp")

    def to_cell_value(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class BlobFile:
    """In-memory file handed to the host blob upload API."""

    name: str
    content: bytes
    mime_type: str = PDF_MIME_TYPE


class RecordMapResult(BaseModel):
    """Normalized name -> display string map for one record."""

    model_config = ConfigDict(extra="forbid")

    table_id: str
    record_id: str
    values: dict[str, str] = Field(default_factory=dict)
    failed_fields: list[str] = Field(default_factory=list)


PersistStatus = Literal["uploaded", "verified", "unverified", "no_target"]


class PersistResult(BaseModel):
    """Outcome of the write-back protocol for one generated PDF."""

    model_config = ConfigDict(extra="forbid")

    status: PersistStatus
    file_name: str
    token: str | None = None
    field_id: str | None = None
    attachment_count: int | None = None
    fallback_path: str | None = None
