from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from core.config.settings import PersistSettings
from core.persist.coordinator import persist_pdf, select_target_field
from core.persist.host_store import InMemoryHostStore
from core.persist.local_save import DirectoryLocalSaver, MemoryLocalSaver
from core.records.models import BlobFile, FieldMeta
from core.utils.errors import UploadFailureError

PDF = b"%PDF-1.4 test"


def _store(initial: Any = None, store_cls: type[InMemoryHostStore] = InMemoryHostStore):
    return store_cls(
        {
            "t1": {
                "fields": [
                    FieldMeta(id="f_name", name="Name", type=1),
                    FieldMeta(id="f_att", name="Files", type=17),
                    FieldMeta(id="f_att2", name="Archive", type=17),
                ],
                "records": {"r1": {"f_name": "Acme", "f_att": initial}},
            }
        }
    )


def _settings(**overrides) -> PersistSettings:
    payload: dict[str, Any] = {"verify_delay_seconds": 0}
    payload.update(overrides)
    return PersistSettings.model_validate(payload)


async def _persist(store, saver=None, **overrides):
    return await persist_pdf(
        store,
        PDF,
        table_id="t1",
        record_id="r1",
        target_field_id=overrides.pop("target_field_id", "f_att"),
        local_saver=saver or MemoryLocalSaver(),
        settings=_settings(**overrides),
    )


class DroppingStore(InMemoryHostStore):
    async def set_cell_value(self, table_id: str, field_id: str, record_id: str, value: Any) -> None:
        return None


class TokenlessStore(InMemoryHostStore):
    async def upload_blobs(self, files: list[BlobFile]) -> list[str]:
        return []


class FailingUploadStore(InMemoryHostStore):
    async def upload_blobs(self, files: list[BlobFile]) -> list[str]:
        raise RuntimeError("quota exceeded")


@pytest.mark.anyio
async def test_write_back_is_verified() -> None:
    store = _store()

    result = await _persist(store)

    assert result.status == "verified"
    assert result.file_name == "Generated_r1.pdf"
    assert result.attachment_count == 1
    value = await store.get_cell_value("t1", "f_att", "r1")
    assert value[0]["token"] == result.token
    assert value[0]["name"] == "Generated_r1.pdf"
    assert value[0]["type"] == "application/pdf"
    assert isinstance(value[0]["timeStamp"], int)
    assert store.blobs[result.token].content == PDF


@pytest.mark.anyio
async def test_persisting_twice_appends_two_references() -> None:
    store = _store()

    first = await _persist(store)
    second = await _persist(store)

    value = await store.get_cell_value("t1", "f_att", "r1")
    assert [entry["token"] for entry in value] == [first.token, second.token]
    assert first.token != second.token


@pytest.mark.anyio
async def test_entries_without_token_are_dropped_before_append() -> None:
    store = _store(
        [
            {"token": "old", "name": "a.pdf", "size": 10},
            {"name": "no token"},
            "junk",
            {"token": ""},
        ]
    )

    result = await _persist(store)

    value = await store.get_cell_value("t1", "f_att", "r1")
    assert [entry["token"] for entry in value] == ["old", result.token]
    assert value[0]["size"] == 10


@pytest.mark.anyio
async def test_non_list_existing_value_is_treated_as_empty() -> None:
    store = _store("legacy text")

    result = await _persist(store)

    assert result.attachment_count == 1


@pytest.mark.anyio
async def test_unconfirmed_write_falls_back_to_local_save(tmp_path: Path) -> None:
    store = _store(store_cls=DroppingStore)

    result = await _persist(store, DirectoryLocalSaver(tmp_path))

    assert result.status == "unverified"
    assert result.fallback_path == str(tmp_path / "generated_r1.pdf")
    assert (tmp_path / "generated_r1.pdf").read_bytes() == PDF


@pytest.mark.anyio
async def test_missing_target_field_saves_locally() -> None:
    store = _store()
    saver = MemoryLocalSaver()

    result = await _persist(store, saver, target_field_id=None)

    assert result.status == "no_target"
    assert saver.saved == {"generated_r1.pdf": PDF}
    assert store.blobs == {}


@pytest.mark.anyio
async def test_skipping_verification_reports_uploaded() -> None:
    result = await _persist(_store(), verify_writes=False)

    assert result.status == "uploaded"


@pytest.mark.anyio
async def test_upload_without_token_is_fatal() -> None:
    store = _store(store_cls=TokenlessStore)

    with pytest.raises(UploadFailureError) as exc_info:
        await _persist(store)

    assert exc_info.value.file_name == "Generated_r1.pdf"
    assert await store.get_cell_value("t1", "f_att", "r1") is None


@pytest.mark.anyio
async def test_upload_exception_is_fatal() -> None:
    with pytest.raises(UploadFailureError):
        await _persist(_store(store_cls=FailingUploadStore))


@pytest.mark.anyio
async def test_select_target_field_defaults_to_first_attachment_field() -> None:
    target = await select_target_field(_store(), "t1", _settings())

    assert target is not None
    assert target.id == "f_att"


@pytest.mark.anyio
async def test_select_target_field_by_configured_name_or_id() -> None:
    by_name = await select_target_field(_store(), "t1", _settings(attachment_field="Archive"))
    by_id = await select_target_field(_store(), "t1", _settings(attachment_field="f_att2"))

    assert by_name is not None and by_name.id == "f_att2"
    assert by_id is not None and by_id.name == "Archive"


@pytest.mark.anyio
async def test_select_target_field_returns_none_when_unavailable() -> None:
    missing = await select_target_field(_store(), "t1", _settings(attachment_field="Nope"))
    store = InMemoryHostStore({"t1": {"fields": [FieldMeta(id="f", name="Name")], "records": {}}})
    none_typed = await select_target_field(store, "t1", _settings())

    assert missing is None
    assert none_typed is None
