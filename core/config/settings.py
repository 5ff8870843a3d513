"""Runtime settings models and YAML loader."""

from __future__ import annotations

from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.records.models import ATTACHMENT_FIELD_TYPE
from core.records.normalizer import DEFAULT_DATE_FORMAT


class NormalizeSettings(BaseModel):
    """How raw field values become display strings."""

    model_config = ConfigDict(extra="forbid")

    timezone: str | None = None
    date_format: str = DEFAULT_DATE_FORMAT

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    def tzinfo(self) -> tzinfo | None:
        """Return the configured zone, or None for the host's local time."""

        return ZoneInfo(self.timezone) if self.timezone else None


class RenderSettings(BaseModel):
    """Raster/PDF conversion parameters."""

    model_config = ConfigDict(extra="forbid")

    dpi: int = Field(default=144, ge=36, le=600)
    font_paths: list[str] = Field(default_factory=list)
    bold_font_paths: list[str] = Field(default_factory=list)
    font_size_pt: float = Field(default=10.5, gt=0)
    line_spacing: float = Field(default=1.3, gt=0)
    default_margin_pt: float = Field(default=72.0, ge=0)
    resource_timeout_seconds: float = Field(default=5.0, ge=0)
    resource_workers: int = Field(default=4, ge=1)
    max_raster_height_px: int = Field(default=60000, gt=0)


class PersistSettings(BaseModel):
    """Attachment write-back parameters."""

    model_config = ConfigDict(extra="forbid")

    attachment_field_type: int = ATTACHMENT_FIELD_TYPE
    attachment_field: str | None = None
    file_name_template: str = "Generated_{record_id}.pdf"
    fallback_file_name_template: str = "generated_{record_id}.pdf"
    verify_writes: bool = True
    verify_delay_seconds: float = Field(default=0.5, ge=0)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    normalize: NormalizeSettings = Field(default_factory=NormalizeSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)
    persist: PersistSettings = Field(default_factory=PersistSettings)


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate runtime settings from YAML."""

    settings_path = path or Path(__file__).with_name("settings.yaml")

    try:
        raw = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Settings file not found: {settings_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in settings file: {settings_path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")

    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings schema: {settings_path}") from exc
