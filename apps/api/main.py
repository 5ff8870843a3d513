"""FastAPI wrapper for the record -> PDF attachment pipeline."""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Annotated, Any

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from core.config.settings import Settings, load_settings
from core.orchestrator.pipeline import run_generation
from core.persist.host_store import InMemoryHostStore
from core.persist.local_save import MemoryLocalSaver
from core.persist.snapshot_store import store_from_payload
from core.records.collector import collect_record_map
from core.utils.errors import (
    InvalidTemplateError,
    RenderFailureError,
    SelectionError,
    UploadFailureError,
)
from core.utils.log_events import log_event

app = FastAPI(title="recordprint API", version="0.1.0")
logger = logging.getLogger("recordprint.api")

_DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024
_REQUEST_ID_HEADER = "X-Recordprint-Request-Id"


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(_REQUEST_ID_HEADER, request_id)
    return response


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.post("/v1/generate", response_model=None)
async def generate_v1(
    request: Request,
    template: Annotated[UploadFile, File(...)],
    record: Annotated[UploadFile, File(...)],
    attachment_field: Annotated[str | None, Form()] = None,
) -> Response:
    """Fill the template from the snapshot's selected record and return the PDF.

    The write-back outcome is reported in response headers; the uploaded
    snapshot itself is not persisted.
    """

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    failure_stage = "init"

    try:
        failure_stage = "config"
        settings = _load_api_settings()
        if attachment_field:
            settings.persist.attachment_field = attachment_field

        failure_stage = "upload"
        max_upload_bytes = _max_upload_bytes()
        _validate_upload_name(template.filename, expected_suffix=".docx", field_name="template")
        template_bytes = _read_upload_with_limit(
            upload=template, max_bytes=max_upload_bytes, field_name="template"
        )
        if template_bytes[:4] != b"PK\x03\x04":
            raise ApiRequestError(
                status_code=415,
                error_code="INVALID_MEDIA_TYPE",
                message="template must be a valid .docx file",
                detail={"field": "template"},
            )
        record_bytes = _read_upload_with_limit(
            upload=record, max_bytes=max_upload_bytes, field_name="record"
        )

        failure_stage = "load_record"
        store = _load_store(record_bytes)

        failure_stage = "pipeline"
        saver = MemoryLocalSaver()
        result = await run_generation(
            store, template_bytes, settings=settings, local_saver=saver
        )

        failure_stage = "respond"
        _log_event(
            logging.INFO,
            "done",
            request_id,
            persist_status=result.persist.status,
            page_count=result.render.page_count,
            unresolved=len(result.replace_report.unresolved_keys),
            total_ms=_elapsed_ms(request_started),
        )
        headers = {
            _REQUEST_ID_HEADER: request_id,
            "X-Recordprint-Persist-Status": result.persist.status,
            "X-Recordprint-Page-Count": str(result.render.page_count),
            "X-Recordprint-Unresolved-Count": str(len(result.replace_report.unresolved_keys)),
            "Content-Disposition": f'attachment; filename="{result.persist.file_name}"',
        }
        if result.persist.token:
            headers["X-Recordprint-Attachment-Token"] = result.persist.token
        return Response(content=result.pdf_bytes, media_type="application/pdf", headers=headers)
    except ApiRequestError as exc:
        return _request_error_response(exc, request_id, failure_stage)
    except InvalidTemplateError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=422,
                error_code="INVALID_TEMPLATE",
                message=str(exc),
                detail={"part_name": exc.part_name},
            ),
            request_id,
            failure_stage,
        )
    except SelectionError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=400,
                error_code="SELECTION_REQUIRED",
                message=str(exc),
                detail={"table_id": exc.table_id, "record_id": exc.record_id},
            ),
            request_id,
            failure_stage,
        )
    except RenderFailureError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=500,
                error_code="RENDER_FAILED",
                message=str(exc),
                detail={"stage": exc.stage},
            ),
            request_id,
            failure_stage,
        )
    except UploadFailureError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=502,
                error_code="UPLOAD_FAILED",
                message=str(exc),
                detail={"file_name": exc.file_name},
            ),
            request_id,
            failure_stage,
        )
    except Exception as exc:  # noqa: BLE001
        return _internal_error_response(exc, request_id, failure_stage, request_started)


@app.post("/v1/record-map", response_model=None)
async def record_map_v1(
    request: Request,
    record: Annotated[UploadFile, File(...)],
) -> JSONResponse:
    """Return the normalized record map of the snapshot's selected record."""

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    failure_stage = "init"

    try:
        failure_stage = "config"
        settings = _load_api_settings()

        failure_stage = "upload"
        record_bytes = _read_upload_with_limit(
            upload=record, max_bytes=_max_upload_bytes(), field_name="record"
        )

        failure_stage = "load_record"
        store = _load_store(record_bytes)
        selection = await store.get_selection()
        if not selection.table_id or not selection.record_id:
            raise ApiRequestError(
                status_code=400,
                error_code="SELECTION_REQUIRED",
                message="Select a table and a record first",
                detail={"table_id": selection.table_id, "record_id": selection.record_id},
            )

        failure_stage = "collect"
        fields = await store.get_field_list(selection.table_id)
        result = await collect_record_map(
            store, selection.table_id, selection.record_id, fields, settings.normalize
        )

        _log_event(
            logging.INFO,
            "done",
            request_id,
            field_count=len(result.values),
            failed_fields=len(result.failed_fields),
            total_ms=_elapsed_ms(request_started),
        )
        return JSONResponse(
            status_code=200,
            headers={_REQUEST_ID_HEADER: request_id},
            content=result.model_dump(mode="json"),
        )
    except ApiRequestError as exc:
        return _request_error_response(exc, request_id, failure_stage)
    except Exception as exc:  # noqa: BLE001
        return _internal_error_response(exc, request_id, failure_stage, request_started)


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _load_api_settings() -> Settings:
    raw = os.getenv("RECORDPRINT_SETTINGS")
    try:
        return load_settings(Path(raw) if raw else None)
    except ValueError as exc:
        raise ApiRequestError(
            status_code=500,
            error_code="CONFIG_ERROR",
            message=str(exc),
        ) from exc


def _load_store(raw: bytes) -> InMemoryHostStore:
    try:
        return store_from_payload(json.loads(raw.decode("utf-8")), source="record")
    except ValueError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_RECORD",
            message="record must be a valid JSON snapshot",
            detail={"field": "record", "error": str(exc)},
        ) from exc


def _validate_upload_name(filename: str | None, *, expected_suffix: str, field_name: str) -> None:
    if filename is None or not filename.lower().endswith(expected_suffix):
        raise ApiRequestError(
            status_code=415,
            error_code="INVALID_MEDIA_TYPE",
            message=f"{field_name} must be a {expected_suffix} file",
            detail={"field": field_name, "filename": filename},
        )


def _read_upload_with_limit(*, upload: UploadFile, max_bytes: int, field_name: str) -> bytes:
    chunks: list[bytes] = []
    total_size = 0

    source = upload.file
    source.seek(0)
    while True:
        chunk = source.read(1024 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ApiRequestError(
                status_code=413,
                error_code="UPLOAD_TOO_LARGE",
                message=f"{field_name} exceeds upload size limit",
                detail={
                    "field": field_name,
                    "max_bytes": max_bytes,
                    "received_bytes": total_size,
                },
            )
        chunks.append(chunk)

    source.close()
    return b"".join(chunks)


def _max_upload_bytes() -> int:
    raw = os.getenv("RECORDPRINT_MAX_UPLOAD_BYTES")
    if raw is None:
        return _DEFAULT_MAX_UPLOAD_BYTES
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_UPLOAD_BYTES
    return parsed if parsed > 0 else _DEFAULT_MAX_UPLOAD_BYTES


def _request_error_response(
    exc: ApiRequestError, request_id: str, failure_stage: str
) -> JSONResponse:
    _log_event(
        logging.ERROR,
        "error",
        request_id,
        error_code=exc.error_code,
        status_code=exc.status_code,
        failure_stage=failure_stage,
    )
    return _error_response(
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        request_id=request_id,
        detail=exc.detail,
    )


def _internal_error_response(
    exc: Exception, request_id: str, failure_stage: str, request_started: float
) -> JSONResponse:
    _log_event(
        logging.ERROR,
        "error",
        request_id,
        error_code="INTERNAL_ERROR",
        status_code=500,
        failure_stage=failure_stage,
        error_type=type(exc).__name__,
    )
    return _error_response(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="internal server error",
        request_id=request_id,
        detail={"error": str(exc), "total_ms": _elapsed_ms(request_started)},
    )


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={_REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    log_event(logger, level, event, request_id=request_id, **fields)
