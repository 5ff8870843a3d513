from __future__ import annotations

import json
from pathlib import Path

from apps.cli.io import build_output_paths, write_error_report_atomic, write_record_map_atomic


def test_output_paths_are_fixed_under_out_dir(tmp_path: Path) -> None:
    paths = build_output_paths(tmp_path)

    assert paths.report == tmp_path / "out.report.json"
    assert paths.docx == tmp_path / "out.docx"
    assert paths.record_map == tmp_path / "out.record_map.json"
    assert paths.blobs == tmp_path / "blobs"


def test_error_report_is_written_without_temp_leftovers(tmp_path: Path) -> None:
    paths = build_output_paths(tmp_path / "nested")

    write_error_report_atomic(paths, error_type="RenderFailureError", error_message="boom")

    payload = json.loads(paths.report.read_text(encoding="utf-8"))
    assert payload == {"error": {"error_message": "boom", "error_type": "RenderFailureError"}}
    assert [item.name for item in paths.report.parent.iterdir()] == ["out.report.json"]


def test_record_map_dump_keeps_non_ascii_values(tmp_path: Path) -> None:
    path = tmp_path / "out.record_map.json"

    write_record_map_atomic(path, '{"姓名":"张三"}')

    assert "张三" in path.read_text(encoding="utf-8")
