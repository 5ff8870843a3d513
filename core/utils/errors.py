"""Custom exceptions for core logic."""

from __future__ import annotations


class InvalidTemplateError(Exception):
    """Raised when the template package lacks a usable main document part."""

    def __init__(self, message: str, *, part_name: str | None = None) -> None:
        super().__init__(message)
        self.part_name = part_name


class RenderFailureError(Exception):
    """Raised when one stage of the docx -> PDF conversion fails."""

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class UploadFailureError(Exception):
    """Raised when the host store does not hand back a token for an upload."""

    def __init__(self, message: str, *, file_name: str | None = None) -> None:
        super().__init__(message)
        self.file_name = file_name


class SelectionError(Exception):
    """Raised when no table or record is selected in the host store."""

    def __init__(
        self,
        message: str,
        *,
        table_id: str | None = None,
        record_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.table_id = table_id
        self.record_id = record_id
