"""Upload the generated PDF and append it to the record's attachment field."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from core.config.settings import PersistSettings
from core.persist.host_store import HostStore
from core.persist.local_save import LocalSaver
from core.records.models import (
    PDF_MIME_TYPE,
    AttachmentReference,
    BlobFile,
    FieldMeta,
    PersistResult,
)
from core.utils.errors import UploadFailureError
from core.utils.log_events import log_event

logger = logging.getLogger("recordprint.persist")


async def select_target_field(
    store: HostStore,
    table_id: str,
    settings: PersistSettings | None = None,
) -> FieldMeta | None:
    """Pick the configured attachment field (id or name), else the first one."""

    settings = settings or PersistSettings()
    candidates = await store.get_field_list_by_type(table_id, settings.attachment_field_type)

    if settings.attachment_field:
        for meta in candidates:
            if settings.attachment_field in (meta.id, meta.name):
                return meta
        log_event(
            logger,
            logging.WARNING,
            "attachment_field_not_found",
            table_id=table_id,
            attachment_field=settings.attachment_field,
        )
        return None

    return candidates[0] if candidates else None


async def persist_pdf(
    store: HostStore,
    pdf_bytes: bytes,
    *,
    table_id: str,
    record_id: str,
    target_field_id: str | None,
    local_saver: LocalSaver,
    settings: PersistSettings | None = None,
) -> PersistResult:
    """Upload, append, write back and verify; fall back to a local save.

    Existing references are kept and a new one is always appended, so calling
    this twice leaves two references behind.
    """

    settings = settings or PersistSettings()

    if target_field_id is None:
        fallback_name = settings.fallback_file_name_template.format(record_id=record_id)
        path = local_saver.save(pdf_bytes, fallback_name)
        log_event(
            logger,
            logging.WARNING,
            "attachment_field_missing",
            table_id=table_id,
            record_id=record_id,
            fallback_path=str(path) if path else None,
        )
        return PersistResult(
            status="no_target",
            file_name=fallback_name,
            fallback_path=str(path) if path else None,
        )

    file_name = settings.file_name_template.format(record_id=record_id)
    token = await _upload(store, pdf_bytes, file_name)

    reference = AttachmentReference(
        token=token,
        name=file_name,
        type=PDF_MIME_TYPE,
        time_stamp=int(time.time() * 1000),
    )
    existing = await _read_attachments(store, table_id, target_field_id, record_id)
    updated = [*existing, reference.to_cell_value()]

    try:
        await store.set_cell_value(table_id, target_field_id, record_id, updated)
    except Exception as exc:  # noqa: BLE001
        raise UploadFailureError(
            f"Attachment write-back failed: {exc}", file_name=file_name
        ) from exc

    log_event(
        logger,
        logging.INFO,
        "attachment_written",
        table_id=table_id,
        record_id=record_id,
        field_id=target_field_id,
        token=token,
        attachment_count=len(updated),
    )

    if not settings.verify_writes:
        return PersistResult(
            status="uploaded",
            file_name=file_name,
            token=token,
            field_id=target_field_id,
            attachment_count=len(updated),
        )

    if settings.verify_delay_seconds > 0:
        await asyncio.sleep(settings.verify_delay_seconds)

    current = await _read_attachments(store, table_id, target_field_id, record_id)
    if any(entry.get("token") == token for entry in current):
        return PersistResult(
            status="verified",
            file_name=file_name,
            token=token,
            field_id=target_field_id,
            attachment_count=len(current),
        )

    fallback_name = settings.fallback_file_name_template.format(record_id=record_id)
    path = local_saver.save(pdf_bytes, fallback_name)
    log_event(
        logger,
        logging.WARNING,
        "attachment_unverified",
        table_id=table_id,
        record_id=record_id,
        field_id=target_field_id,
        token=token,
        fallback_path=str(path) if path else None,
    )
    return PersistResult(
        status="unverified",
        file_name=file_name,
        token=token,
        field_id=target_field_id,
        attachment_count=len(current),
        fallback_path=str(path) if path else None,
    )


async def _upload(store: HostStore, pdf_bytes: bytes, file_name: str) -> str:
    try:
        tokens = await store.upload_blobs([BlobFile(name=file_name, content=pdf_bytes)])
    except Exception as exc:  # noqa: BLE001
        raise UploadFailureError(f"Blob upload failed: {exc}", file_name=file_name) from exc

    token = tokens[0] if tokens else None
    if not isinstance(token, str) or not token:
        raise UploadFailureError("Blob upload returned no token", file_name=file_name)
    return token


async def _read_attachments(
    store: HostStore, table_id: str, field_id: str, record_id: str
) -> list[dict[str, Any]]:
    try:
        value = await store.get_cell_value(table_id, field_id, record_id)
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            logging.WARNING,
            "attachment_read_failed",
            table_id=table_id,
            record_id=record_id,
            field_id=field_id,
            error=str(exc),
        )
        return []
    return valid_attachment_entries(value)


def valid_attachment_entries(value: Any) -> list[dict[str, Any]]:
    """Keep list entries that carry a token; anything else reads as empty."""

    if not isinstance(value, list):
        return []
    return [
        dict(entry)
        for entry in value
        if isinstance(entry, Mapping) and isinstance(entry.get("token"), str) and entry["token"]
    ]
