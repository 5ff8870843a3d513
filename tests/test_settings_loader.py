from __future__ import annotations

from pathlib import Path

import pytest

from core.config.settings import load_settings


def test_packaged_settings_load() -> None:
    settings = load_settings()

    assert settings.render.dpi == 144
    assert settings.persist.attachment_field_type == 17
    assert settings.persist.verify_writes is True
    assert settings.normalize.timezone is None


def test_empty_file_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")

    settings = load_settings(path)

    assert settings.render.resource_timeout_seconds == 5.0
    assert settings.persist.file_name_template == "Generated_{record_id}.pdf"


def test_partial_override(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(
        "render:\n  dpi: 96\npersist:\n  attachment_field: Files\n  verify_delay_seconds: 0\n",
        encoding="utf-8",
    )

    settings = load_settings(path)

    assert settings.render.dpi == 96
    assert settings.persist.attachment_field == "Files"
    assert settings.persist.verify_delay_seconds == 0


def test_missing_file_raises_value_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        load_settings(tmp_path / "missing.yaml")


def test_invalid_yaml_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("render: [unclosed", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_settings(path)


def test_non_mapping_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError, match="mapping"):
        load_settings(path)


@pytest.mark.parametrize(
    "content",
    [
        "render:\n  dpi: 5\n",
        "persist:\n  unknown_key: 1\n",
        "normalize:\n  timezone: Mars/Olympus\n",
    ],
)
def test_schema_errors_raise_value_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid settings schema"):
        load_settings(path)
