from __future__ import annotations

import json
from pathlib import Path

import pytest

from core.persist.snapshot_store import SnapshotHostStore, store_from_payload
from core.records.models import BlobFile


def _payload() -> dict[str, object]:
    return {
        "version": 1,
        "selection": {"table_id": "t1", "record_id": "r1"},
        "tables": {
            "t1": {
                "fields": [
                    {"id": "f_name", "name": "Name", "type": 1},
                    {"id": "f_att", "name": "Files", "type": 17},
                ],
                "records": {"r1": {"f_name": "Acme"}},
            }
        },
    }


def _write_snapshot(path: Path) -> Path:
    path.write_text(json.dumps(_payload()), encoding="utf-8")
    return path


@pytest.mark.anyio
async def test_snapshot_exposes_selection_fields_and_values(tmp_path: Path) -> None:
    store = SnapshotHostStore(_write_snapshot(tmp_path / "record.json"))

    selection = await store.get_selection()
    fields = await store.get_field_list("t1")
    attachments = await store.get_field_list_by_type("t1", 17)

    assert (selection.table_id, selection.record_id) == ("t1", "r1")
    assert [field.name for field in fields] == ["Name", "Files"]
    assert [field.id for field in attachments] == ["f_att"]
    assert await store.get_cell_value("t1", "f_name", "r1") == "Acme"
    assert await store.get_cell_value("t1", "f_att", "r1") is None


@pytest.mark.anyio
async def test_writes_and_uploads_are_flushed_to_disk(tmp_path: Path) -> None:
    snapshot = _write_snapshot(tmp_path / "record.json")
    store = SnapshotHostStore(snapshot, blob_dir=tmp_path / "blobs")

    [token] = await store.upload_blobs([BlobFile(name="Generated_r1.pdf", content=b"%PDF")])
    await store.set_cell_value("t1", "f_att", "r1", [{"token": token, "name": "Generated_r1.pdf"}])

    reopened = SnapshotHostStore(snapshot, blob_dir=tmp_path / "blobs")
    value = await reopened.get_cell_value("t1", "f_att", "r1")
    assert value == [{"token": token, "name": "Generated_r1.pdf"}]

    raw = json.loads(snapshot.read_text(encoding="utf-8"))
    blob_path = Path(raw["blobs"][token]["path"])
    assert blob_path.read_bytes() == b"%PDF"
    assert blob_path.parent == tmp_path / "blobs"


@pytest.mark.anyio
async def test_unknown_record_raises_key_error(tmp_path: Path) -> None:
    store = SnapshotHostStore(_write_snapshot(tmp_path / "record.json"))

    with pytest.raises(KeyError):
        await store.get_cell_value("t1", "f_name", "missing")


def test_missing_snapshot_raises_value_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        SnapshotHostStore(tmp_path / "missing.json")


def test_invalid_snapshot_json_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "record.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid record snapshot JSON"):
        SnapshotHostStore(path)


def test_non_mapping_snapshot_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "record.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError, match="mapping"):
        SnapshotHostStore(path)


@pytest.mark.anyio
async def test_store_from_payload_keeps_everything_in_memory(tmp_path: Path) -> None:
    store = store_from_payload(_payload())

    await store.set_cell_value("t1", "f_att", "r1", [])

    assert await store.get_cell_value("t1", "f_att", "r1") == []
    assert list(tmp_path.iterdir()) == []
