"""Resolve placeholder keys against the record map.

Exact lookup first (after trimming), then a fuzzy pass that compares keys with
everything except ASCII letters, ASCII digits and CJK ideographs removed, and
case folded. The first record key in map order wins the fuzzy pass.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from core.templates.models import PlaceholderMatch

_NON_KEY_CHARS_RE = re.compile(r"[^A-Za-z0-9\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]+")


def normalize_key(key: str) -> str:
    """Reduce a key to its comparable core."""

    return _NON_KEY_CHARS_RE.sub("", key).lower()


def match_placeholder(raw_key: str, record_map: Mapping[str, str]) -> PlaceholderMatch | None:
    """Return the matching record entry, or None when nothing matches."""

    key = raw_key.strip()
    if key in record_map:
        return PlaceholderMatch(record_key=key, value=record_map[key], match="exact")

    normalized = normalize_key(key)
    if not normalized:
        return None

    for record_key, value in record_map.items():
        if normalize_key(record_key) == normalized:
            return PlaceholderMatch(record_key=record_key, value=value, match="fuzzy")
    return None


def resolve_placeholder(raw_key: str, record_map: Mapping[str, str]) -> str | None:
    """Return the replacement text for a token key, or None when unresolved."""

    found = match_placeholder(raw_key, record_map)
    return found.value if found is not None else None
