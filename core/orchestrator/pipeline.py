"""Generation pipeline: selection -> record map -> patch -> PDF -> attachment."""

from __future__ import annotations

import asyncio
import logging
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from core.config.settings import Settings
from core.convert.pipeline import render_pdf
from core.persist.coordinator import persist_pdf, select_target_field
from core.persist.host_store import HostStore
from core.persist.local_save import LocalSaver
from core.records.collector import collect_record_map
from core.records.models import PersistResult, RecordMapResult
from core.render.docx_patcher import patch_template
from core.render.models import ReplaceReport
from core.utils.errors import SelectionError
from core.utils.log_events import dump_json, log_event

logger = logging.getLogger("recordprint.pipeline")

NotificationKind = Literal["success", "warning", "error"]


class ProgressReporter(Protocol):
    """Receives progress lines, the record-map dump and final notifications."""

    def status(self, message: str) -> None:
        """Report a progress step."""

    def debug_map(self, payload: str) -> None:
        """Receive the JSON dump of the record map."""

    def notify(self, kind: NotificationKind, message: str) -> None:
        """Report the outcome of the run."""


class LoggingReporter:
    """Reporter that forwards everything to the pipeline logger."""

    def status(self, message: str) -> None:
        log_event(logger, logging.INFO, "progress", message=message)

    def debug_map(self, payload: str) -> None:
        log_event(logger, logging.DEBUG, "record_map", payload=payload)

    def notify(self, kind: NotificationKind, message: str) -> None:
        level = logging.ERROR if kind == "error" else logging.INFO
        log_event(logger, level, "notification", kind=kind, message=message)


class RenderInfo(BaseModel):
    """Render summary without the PDF payload."""

    model_config = ConfigDict(extra="forbid")

    page_count: int
    pdf_size: int
    raster_width_px: int
    raster_height_px: int
    missing_resources: list[str] = Field(default_factory=list)
    timing: dict[str, int] = Field(default_factory=dict)


class GenerationResult(BaseModel):
    """Everything one run produced; byte payloads are excluded from dumps."""

    model_config = ConfigDict(extra="forbid")

    record_map: RecordMapResult
    replace_report: ReplaceReport
    render: RenderInfo
    persist: PersistResult
    pdf_bytes: bytes = Field(exclude=True, repr=False)
    document_bytes: bytes = Field(exclude=True, repr=False)


async def run_generation(
    store: HostStore,
    template_bytes: bytes,
    *,
    settings: Settings | None = None,
    local_saver: LocalSaver,
    reporter: ProgressReporter | None = None,
) -> GenerationResult:
    """Run one generation for the host's current selection.

    Fatal errors are notified with their message and re-raised.
    """

    settings = settings or Settings()
    reporter = reporter or LoggingReporter()

    try:
        return await _run(store, template_bytes, settings, local_saver, reporter)
    except Exception as exc:
        log_event(
            logger,
            logging.ERROR,
            "generation_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        reporter.notify("error", str(exc))
        raise


async def _run(
    store: HostStore,
    template_bytes: bytes,
    settings: Settings,
    local_saver: LocalSaver,
    reporter: ProgressReporter,
) -> GenerationResult:
    selection = await store.get_selection()
    if not selection.table_id or not selection.record_id:
        raise SelectionError(
            "Select a table and a record first",
            table_id=selection.table_id,
            record_id=selection.record_id,
        )
    table_id = selection.table_id
    record_id = selection.record_id

    reporter.status("Reading record fields")
    fields = await store.get_field_list(table_id)
    record_map = await collect_record_map(
        store, table_id, record_id, fields, settings.normalize
    )
    reporter.debug_map(dump_json(record_map.values))

    reporter.status("Filling template")
    patched = patch_template(template_bytes, record_map.values)

    reporter.status("Rendering PDF")
    rendered = await asyncio.to_thread(
        render_pdf,
        patched.document_bytes,
        settings=settings.render,
        title=settings.persist.file_name_template.format(record_id=record_id),
    )

    reporter.status("Saving attachment")
    target = await select_target_field(store, table_id, settings.persist)
    persisted = await persist_pdf(
        store,
        rendered.pdf_bytes,
        table_id=table_id,
        record_id=record_id,
        target_field_id=target.id if target else None,
        local_saver=local_saver,
        settings=settings.persist,
    )

    _notify_outcome(reporter, persisted, patched.replace_report)
    log_event(
        logger,
        logging.INFO,
        "generation_finished",
        table_id=table_id,
        record_id=record_id,
        status=persisted.status,
        page_count=rendered.page_count,
        unresolved=len(patched.replace_report.unresolved_keys),
    )

    return GenerationResult(
        record_map=record_map,
        replace_report=patched.replace_report,
        render=RenderInfo(
            page_count=rendered.page_count,
            pdf_size=len(rendered.pdf_bytes),
            raster_width_px=rendered.raster_width_px,
            raster_height_px=rendered.raster_height_px,
            missing_resources=rendered.missing_resources,
            timing=rendered.timing,
        ),
        persist=persisted,
        pdf_bytes=rendered.pdf_bytes,
        document_bytes=patched.document_bytes,
    )


def _notify_outcome(
    reporter: ProgressReporter, persisted: PersistResult, report: ReplaceReport
) -> None:
    if persisted.status == "no_target":
        reporter.notify(
            "warning",
            f"No attachment field found; PDF saved locally as {persisted.file_name}",
        )
    elif persisted.status == "unverified":
        reporter.notify(
            "warning",
            f"Attachment write could not be confirmed; PDF saved locally as "
            f"{persisted.file_name}",
        )
    elif report.unresolved_keys:
        reporter.notify(
            "warning",
            f"{persisted.file_name} attached; unresolved placeholders: "
            + ", ".join(report.unresolved_keys),
        )
    else:
        reporter.notify("success", f"{persisted.file_name} attached")
