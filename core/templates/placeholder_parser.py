"""Brace placeholder scanner for the main document part.

Rules:
- A token is a run of one or more "{", a key without braces, and a run of one
  or more "}", e.g. {Name}, {{Name}}, {{{ 🔒Name }}}.
- Tokens are found per text node. A token whose pieces sit in different
  nodes (split across runs) is not recognized; its halves are reported as
  unbalanced fragments.
- Only the main document body is scanned; headers and footers are left alone.
"""

from __future__ import annotations

import re
import zipfile

from lxml import etree

from core.templates.models import (
    Occurrence,
    ParseResult,
    PlaceholderToken,
    UnsupportedOccurrence,
)
from core.utils.docx_xml import (
    MAIN_DOCUMENT_PART,
    TextNodeTable,
    collect_text_nodes,
    parse_part,
    read_part,
)
from core.utils.errors import InvalidTemplateError

_TOKEN_RE = re.compile(r"\{+([^{}]+)\}+")
_BRACE_RUN_RE = re.compile(r"\{+|\}+")


def find_tokens(text: str) -> list[PlaceholderToken]:
    """Return every brace token in one node's text, left to right."""

    return [
        PlaceholderToken(
            raw=match.group(0),
            key=match.group(1),
            start=match.start(),
            end=match.end(),
        )
        for match in _TOKEN_RE.finditer(text)
    ]


def find_unbalanced_braces(
    text: str, tokens: list[PlaceholderToken] | None = None
) -> list[tuple[str, int, int, str]]:
    """Return (kind, start, end, text) for brace runs outside complete tokens."""

    if tokens is None:
        tokens = find_tokens(text)

    masked = list(text)
    for token in tokens:
        masked[token.start : token.end] = " " * (token.end - token.start)
    masked_text = "".join(masked)

    issues: list[tuple[str, int, int, str]] = []
    open_positions: list[int] = []

    for match in _BRACE_RUN_RE.finditer(masked_text):
        if match.group(0).startswith("{"):
            open_positions.append(match.start())
            continue

        if open_positions:
            open_positions.pop()
        else:
            issues.append(("stray_close", match.start(), match.end(), match.group(0)))

    for start in open_positions:
        issues.append(("unclosed_brace", start, len(text), text[start:]))

    issues.sort(key=lambda item: item[1])
    return issues


def load_text_nodes(template_bytes: bytes) -> TextNodeTable:
    """Open the template package and index the main part's text nodes."""

    try:
        part_bytes = read_part(template_bytes, MAIN_DOCUMENT_PART)
    except zipfile.BadZipFile as exc:
        raise InvalidTemplateError(
            "Template is not a zip-packaged document", part_name=MAIN_DOCUMENT_PART
        ) from exc

    if part_bytes is None:
        raise InvalidTemplateError(
            f"Template is missing {MAIN_DOCUMENT_PART}", part_name=MAIN_DOCUMENT_PART
        )

    try:
        root = parse_part(part_bytes)
    except etree.XMLSyntaxError as exc:
        raise InvalidTemplateError(
            f"Template {MAIN_DOCUMENT_PART} is not well-formed XML: {exc}",
            part_name=MAIN_DOCUMENT_PART,
        ) from exc

    return collect_text_nodes(root)


def scan_nodes(nodes: TextNodeTable) -> ParseResult:
    """Scan indexed text nodes for tokens and unbalanced fragments."""

    result = ParseResult()
    seen_keys: set[str] = set()

    for node_index in range(len(nodes)):
        text = nodes.text(node_index)
        if "{" not in text and "}" not in text:
            continue

        tokens = find_tokens(text)
        for token in tokens:
            key = token.key.strip()
            result.occurrences.append(
                Occurrence(
                    key=key,
                    node_index=node_index,
                    start=token.start,
                    end=token.end,
                    raw=token.raw,
                )
            )
            if key not in seen_keys:
                result.keys.append(key)
                seen_keys.add(key)

        for kind, start, end, fragment in find_unbalanced_braces(text, tokens):
            result.unsupported.append(
                UnsupportedOccurrence(
                    kind=kind,
                    text=fragment,
                    node_index=node_index,
                    start=start,
                    end=end,
                )
            )

    return result


def parse_placeholders(template_bytes: bytes) -> ParseResult:
    """List placeholder keys, occurrences and unbalanced fragments of a template."""

    return scan_nodes(load_text_nodes(template_bytes))
