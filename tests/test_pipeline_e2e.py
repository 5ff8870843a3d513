from __future__ import annotations

import io
import json

import pytest
from docx import Document

from core.config.settings import Settings
from core.orchestrator.pipeline import run_generation
from core.persist.host_store import InMemoryHostStore
from core.persist.local_save import MemoryLocalSaver
from core.records.models import FieldMeta, Selection
from core.utils.errors import InvalidTemplateError, SelectionError


class RecordingReporter:
    def __init__(self) -> None:
        self.statuses: list[str] = []
        self.debug_payloads: list[str] = []
        self.notifications: list[tuple[str, str]] = []

    def status(self, message: str) -> None:
        self.statuses.append(message)

    def debug_map(self, payload: str) -> None:
        self.debug_payloads.append(payload)

    def notify(self, kind: str, message: str) -> None:
        self.notifications.append((kind, message))


def _settings() -> Settings:
    return Settings.model_validate(
        {
            "render": {"dpi": 72, "font_paths": [], "bold_font_paths": []},
            "persist": {"verify_delay_seconds": 0},
        }
    )


def _template(*paragraphs: str) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _store(*, with_attachment: bool = True, selection: Selection | None = None) -> InMemoryHostStore:
    fields = [FieldMeta(id="f_name", name="Name"), FieldMeta(id="f_amount", name="Amount", type=2)]
    if with_attachment:
        fields.append(FieldMeta(id="f_att", name="Files", type=17))
    return InMemoryHostStore(
        {"t1": {"fields": fields, "records": {"r1": {"f_name": "Acme", "f_amount": 100}}}},
        selection=selection or Selection(table_id="t1", record_id="r1"),
    )


def _patched_text(document_bytes: bytes) -> str:
    return "\n".join(paragraph.text for paragraph in Document(io.BytesIO(document_bytes)).paragraphs)


@pytest.mark.anyio
async def test_record_fills_template_and_pdf_is_attached() -> None:
    store = _store()
    reporter = RecordingReporter()

    result = await run_generation(
        store,
        _template("{{Name}} owes {{Amount}}"),
        settings=_settings(),
        local_saver=MemoryLocalSaver(),
        reporter=reporter,
    )

    text = _patched_text(result.document_bytes)
    assert "Acme" in text
    assert "100" in text
    assert "{" not in text and "}" not in text
    assert result.pdf_bytes.startswith(b"%PDF")
    assert result.render.page_count == 1

    assert result.persist.status == "verified"
    attachments = await store.get_cell_value("t1", "f_att", "r1")
    assert attachments[0]["token"] == result.persist.token
    assert store.blobs[result.persist.token].content == result.pdf_bytes

    assert json.loads(reporter.debug_payloads[0]) == {"Amount": "100", "Files": "", "Name": "Acme"}
    assert reporter.notifications == [("success", "Generated_r1.pdf attached")]
    assert reporter.statuses[0] == "Reading record fields"


@pytest.mark.anyio
async def test_unresolved_placeholders_produce_warning_notification() -> None:
    reporter = RecordingReporter()

    result = await run_generation(
        _store(),
        _template("{{Name}} {{Unknown}}"),
        settings=_settings(),
        local_saver=MemoryLocalSaver(),
        reporter=reporter,
    )

    assert result.replace_report.unresolved_keys == ["Unknown"]
    assert reporter.notifications[-1][0] == "warning"
    assert "Unknown" in reporter.notifications[-1][1]


@pytest.mark.anyio
async def test_missing_attachment_field_saves_locally() -> None:
    saver = MemoryLocalSaver()
    reporter = RecordingReporter()

    result = await run_generation(
        _store(with_attachment=False),
        _template("{{Name}}"),
        settings=_settings(),
        local_saver=saver,
        reporter=reporter,
    )

    assert result.persist.status == "no_target"
    assert saver.saved["generated_r1.pdf"] == result.pdf_bytes
    assert reporter.notifications[-1][0] == "warning"


@pytest.mark.anyio
async def test_missing_selection_is_reported_and_raised() -> None:
    reporter = RecordingReporter()

    with pytest.raises(SelectionError):
        await run_generation(
            _store(selection=Selection(table_id="t1")),
            _template("{{Name}}"),
            settings=_settings(),
            local_saver=MemoryLocalSaver(),
            reporter=reporter,
        )

    assert reporter.notifications == [("error", "Select a table and a record first")]


@pytest.mark.anyio
async def test_invalid_template_is_reported_and_raised() -> None:
    reporter = RecordingReporter()

    with pytest.raises(InvalidTemplateError):
        await run_generation(
            _store(),
            b"plain text, not a package",
            settings=_settings(),
            local_saver=MemoryLocalSaver(),
            reporter=reporter,
        )

    assert reporter.notifications[-1][0] == "error"


@pytest.mark.anyio
async def test_result_dump_excludes_byte_payloads() -> None:
    result = await run_generation(
        _store(),
        _template("{{Name}}"),
        settings=_settings(),
        local_saver=MemoryLocalSaver(),
    )

    payload = result.model_dump(mode="json")
    assert "pdf_bytes" not in payload
    assert "document_bytes" not in payload
    assert payload["persist"]["status"] == "verified"
