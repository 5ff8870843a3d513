from __future__ import annotations

import io
import zipfile

import pytest
from docx import Document

from core.render.docx_patcher import patch_template
from core.utils.errors import InvalidTemplateError


def _docx_bytes(document) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _zip_map(content: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(content), "r") as archive:
        return {name: archive.read(name) for name in archive.namelist()}


def _paragraph_texts(content: bytes) -> list[str]:
    return [paragraph.text for paragraph in Document(io.BytesIO(content)).paragraphs]


def test_tokens_are_replaced_in_place() -> None:
    document = Document()
    document.add_paragraph("Dear {{Name}}, you owe {Amount}.")

    output = patch_template(_docx_bytes(document), {"Name": "Acme", "Amount": "100"})

    assert _paragraph_texts(output.document_bytes) == ["Dear Acme, you owe 100."]
    assert output.replace_report.summary.replaced_count == 2
    assert output.replace_report.summary.touched_node_count == 1
    assert [entry.match for entry in output.replace_report.entries] == ["exact", "exact"]


def test_unresolved_token_is_left_verbatim() -> None:
    document = Document()
    document.add_paragraph("{{Name}} / {{Missing}}")

    output = patch_template(_docx_bytes(document), {"Name": "Acme"})

    assert _paragraph_texts(output.document_bytes) == ["Acme / {{Missing}}"]
    assert output.replace_report.unresolved_keys == ["Missing"]
    unresolved = [entry for entry in output.replace_report.entries if entry.status == "unresolved"]
    assert unresolved[0].original_text == "{{Missing}}"
    assert unresolved[0].reason == "missing_field"


def test_cross_run_token_is_left_unchanged() -> None:
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("Total {{Amo")
    paragraph.add_run("unt}}")

    output = patch_template(_docx_bytes(document), {"Amount": "100"})

    assert _paragraph_texts(output.document_bytes) == ["Total {{Amount}}"]
    assert output.replace_report.summary.replaced_count == 0
    assert output.replace_report.summary.unsupported_count == 2


def test_template_without_tokens_round_trips_byte_identical() -> None:
    document = Document()
    document.add_paragraph("Plain text only")
    template_bytes = _docx_bytes(document)

    output = patch_template(template_bytes, {"Name": "Acme"})

    assert output.document_bytes == template_bytes
    assert output.replace_report.summary.total_placeholders == 0


def test_other_package_members_are_copied_verbatim() -> None:
    document = Document()
    document.add_paragraph("{{Name}}")
    template_bytes = _docx_bytes(document)

    output = patch_template(template_bytes, {"Name": "Acme"})

    before = _zip_map(template_bytes)
    after = _zip_map(output.document_bytes)
    assert list(before) == list(after)
    for name in before:
        if name != "word/document.xml":
            assert after[name] == before[name]
    assert after["word/document.xml"] != before["word/document.xml"]


def test_fuzzy_key_and_special_characters() -> None:
    document = Document()
    document.add_paragraph("Due: {{ 🔒 date }}")
    document.add_paragraph("Client: {{Client}}")

    output = patch_template(
        _docx_bytes(document), {"Date": "2024-01-01", "Client": "A & B <c>"}
    )

    assert _paragraph_texts(output.document_bytes) == ["Due: 2024-01-01", "Client: A & B <c>"]
    assert output.replace_report.entries[0].match == "fuzzy"
    assert output.replace_report.entries[0].record_key == "Date"


def test_xml_invalid_characters_are_dropped_from_values() -> None:
    document = Document()
    document.add_paragraph("{{Note}}")

    output = patch_template(_docx_bytes(document), {"Note": "a\x00b\x07c"})

    assert _paragraph_texts(output.document_bytes) == ["abc"]


def test_table_cell_tokens_are_replaced() -> None:
    document = Document()
    table = document.add_table(rows=1, cols=1)
    table.cell(0, 0).text = "{{Amount}}"

    output = patch_template(_docx_bytes(document), {"Amount": "100"})

    patched = Document(io.BytesIO(output.document_bytes))
    assert patched.tables[0].cell(0, 0).text == "100"


def test_missing_main_part_raises() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")

    with pytest.raises(InvalidTemplateError):
        patch_template(buffer.getvalue(), {"Name": "Acme"})


def test_field_codes_and_deleted_text_are_left_alone() -> None:
    body = (
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        "<w:body><w:p>"
        "<w:r><w:t>{{Name}}</w:t></w:r>"
        '<w:r><w:instrText xml:space="preserve"> MERGEFIELD {Name} </w:instrText></w:r>'
        "<w:del><w:r><w:delText>{{Name}}</w:delText></w:r></w:del>"
        "</w:p></w:body></w:document>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("word/document.xml", body)

    output = patch_template(buffer.getvalue(), {"Name": "Acme"})

    xml = _zip_map(output.document_bytes)["word/document.xml"].decode("utf-8")
    assert "<w:t>Acme</w:t>" in xml
    assert " MERGEFIELD {Name} " in xml
    assert "<w:delText>{{Name}}</w:delText>" in xml
    assert output.replace_report.summary.replaced_count == 1
