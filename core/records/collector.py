"""Build the normalized record map for one host record."""

from __future__ import annotations

import logging

from core.config.settings import NormalizeSettings
from core.persist.host_store import HostStore
from core.records.models import FieldMeta, RecordMapResult
from core.records.normalizer import normalize_value
from core.utils.log_events import log_event

logger = logging.getLogger("recordprint.records")


async def collect_record_map(
    store: HostStore,
    table_id: str,
    record_id: str,
    fields: list[FieldMeta],
    settings: NormalizeSettings | None = None,
) -> RecordMapResult:
    """Read every field of a record sequentially and normalize its value.

    A failing cell read contributes "" and is listed in failed_fields.
    """

    settings = settings or NormalizeSettings()
    tz = settings.tzinfo()
    result = RecordMapResult(table_id=table_id, record_id=record_id)

    for meta in fields:
        try:
            raw = await store.get_cell_value(table_id, meta.id, record_id)
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.WARNING,
                "cell_read_failed",
                table_id=table_id,
                record_id=record_id,
                field_id=meta.id,
                field_name=meta.name,
                error=str(exc),
            )
            result.values[meta.name] = ""
            result.failed_fields.append(meta.name)
            continue

        result.values[meta.name] = normalize_value(
            raw, tz=tz, date_format=settings.date_format
        )

    return result
