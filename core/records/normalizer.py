"""Normalize raw host field values into display strings.

Rules:
- null/absent -> "".
- A number (or digit string) of at most 13 digits that is >= 946684800000 is
  read as a millisecond epoch and rendered as a 24-hour date-time. Any plain
  number in that range is treated as a date too; that false positive is accepted.
- Lists join their normalized items with ", ".
- Mappings contribute name/text/address/value, else a compact JSON dump. A
  picked list or mapping is normalized in turn.

Normalization never raises.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import datetime, tzinfo
from typing import Any

from core.records.models import FieldValueKind

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TIMESTAMP_MIN_MS = 946_684_800_000
_TIMESTAMP_DIGITS = 13
_DIGITS_RE = re.compile(r"\d+")
_LIST_ITEM_KEYS = ("name", "text", "address", "fullAddress")
_STRUCTURED_KEYS = ("name", "text", "address", "fullAddress", "value")


def classify_value(value: Any) -> FieldValueKind:
    """Return the variant a raw value falls into."""

    if value is None:
        return FieldValueKind.NULL
    if _timestamp_millis(value) is not None:
        return FieldValueKind.TIMESTAMP_CANDIDATE
    if isinstance(value, (str, int, float, bool)):
        return FieldValueKind.SCALAR
    if isinstance(value, (list, tuple)):
        return FieldValueKind.LIST
    if isinstance(value, Mapping):
        return FieldValueKind.STRUCTURED
    return FieldValueKind.SCALAR


def normalize_value(
    value: Any,
    *,
    tz: tzinfo | None = None,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> str:
    """Convert one raw field value into its display string."""

    kind = classify_value(value)
    if kind is FieldValueKind.NULL:
        return ""
    if kind is FieldValueKind.TIMESTAMP_CANDIDATE:
        return _format_timestamp(value, tz=tz, date_format=date_format)
    if kind is FieldValueKind.LIST:
        return ", ".join(
            _normalize_list_item(item, tz=tz, date_format=date_format) for item in value
        )
    if kind is FieldValueKind.STRUCTURED:
        return _pick_display(value, _STRUCTURED_KEYS, tz=tz, date_format=date_format)
    return _format_scalar(value)


def _normalize_list_item(item: Any, *, tz: tzinfo | None, date_format: str) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        return _pick_display(item, _LIST_ITEM_KEYS, tz=tz, date_format=date_format)
    return normalize_value(item, tz=tz, date_format=date_format)


def _pick_display(
    item: Mapping[str, Any],
    keys: tuple[str, ...],
    *,
    tz: tzinfo | None,
    date_format: str,
) -> str:
    for key in keys:
        candidate = item.get(key)
        if not candidate:
            continue
        if isinstance(candidate, str):
            return candidate
        if isinstance(candidate, (list, tuple, Mapping)):
            return normalize_value(candidate, tz=tz, date_format=date_format)
        return _format_scalar(candidate)
    return _dump_structure(item)


def _timestamp_millis(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        millis = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        millis = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not _DIGITS_RE.fullmatch(stripped):
            return None
        millis = int(stripped)
    else:
        return None

    if millis < _TIMESTAMP_MIN_MS or len(str(millis)) > _TIMESTAMP_DIGITS:
        return None
    return millis


def _format_timestamp(value: Any, *, tz: tzinfo | None, date_format: str) -> str:
    millis = _timestamp_millis(value)
    if millis is None:
        return _format_scalar(value)
    try:
        moment = datetime.fromtimestamp(millis / 1000, tz=tz)
        return moment.strftime(date_format)
    except (OverflowError, OSError, ValueError):
        return _format_scalar(value)


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Mapping):
        return _dump_structure(value)
    return str(value)


def _dump_structure(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(value)
