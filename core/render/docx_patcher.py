"""Text-node level placeholder patching inside the docx zip package."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping

from core.render.models import (
    PatchOutput,
    ReplaceLogEntry,
    ReplaceReport,
    ReplaceSummary,
)
from core.templates.models import Occurrence, ParseResult
from core.templates.placeholder_parser import load_text_nodes, scan_nodes
from core.templates.resolver import match_placeholder
from core.utils.docx_xml import (
    MAIN_DOCUMENT_PART,
    TextNodeTable,
    replace_part,
    serialize_part,
)
from core.utils.log_events import log_event

logger = logging.getLogger("recordprint.patcher")


def patch_template(template_bytes: bytes, record_map: Mapping[str, str]) -> PatchOutput:
    """Replace brace placeholders in the main document part.

    Unresolved tokens stay verbatim and are logged. When nothing changes the
    original bytes are returned as is.
    """

    nodes = load_text_nodes(template_bytes)
    parse_result = scan_nodes(nodes)

    entries: list[ReplaceLogEntry] = [
        ReplaceLogEntry(
            status="unsupported",
            node_index=item.node_index,
            start=item.start,
            end=item.end,
            original_text=item.text,
            reason=item.kind,
        )
        for item in parse_result.unsupported
    ]
    for item in parse_result.unsupported:
        log_event(
            logger,
            logging.DEBUG,
            "placeholder_fragment",
            kind=item.kind,
            node_index=item.node_index,
            text=item.text,
        )

    replaced_entries, touched_nodes = _replace_occurrences(
        nodes=nodes,
        occurrences=parse_result.occurrences,
        record_map=record_map,
    )
    entries.extend(replaced_entries)

    replace_report = _build_replace_report(parse_result, entries, touched_nodes)

    if touched_nodes:
        document_bytes = replace_part(
            template_bytes, MAIN_DOCUMENT_PART, serialize_part(nodes.root)
        )
    else:
        document_bytes = template_bytes

    log_event(
        logger,
        logging.INFO,
        "template_patched",
        **replace_report.summary.model_dump(mode="json"),
    )
    return PatchOutput(
        document_bytes=document_bytes,
        parse_result=parse_result,
        replace_report=replace_report,
    )


def _replace_occurrences(
    nodes: TextNodeTable,
    occurrences: list[Occurrence],
    record_map: Mapping[str, str],
) -> tuple[list[ReplaceLogEntry], list[int]]:
    grouped: dict[int, list[Occurrence]] = defaultdict(list)
    for occurrence in occurrences:
        grouped[occurrence.node_index].append(occurrence)

    entries: list[ReplaceLogEntry] = []
    touched_nodes: list[int] = []

    for node_index in sorted(grouped):
        node_text = nodes.text(node_index)
        changed = False

        for occurrence in sorted(grouped[node_index], key=lambda item: item.start, reverse=True):
            found = match_placeholder(occurrence.key, record_map)
            if found is None:
                log_event(
                    logger,
                    logging.WARNING,
                    "placeholder_unresolved",
                    key=occurrence.key,
                    token=occurrence.raw,
                    node_index=node_index,
                )
                entries.append(
                    ReplaceLogEntry(
                        status="unresolved",
                        key=occurrence.key,
                        node_index=node_index,
                        start=occurrence.start,
                        end=occurrence.end,
                        original_text=occurrence.raw,
                        reason="missing_field",
                    )
                )
                continue

            node_text = node_text[: occurrence.start] + found.value + node_text[occurrence.end :]
            changed = True
            entries.append(
                ReplaceLogEntry(
                    status="replaced",
                    key=occurrence.key,
                    record_key=found.record_key,
                    match=found.match,
                    node_index=node_index,
                    start=occurrence.start,
                    end=occurrence.end,
                    original_text=occurrence.raw,
                    new_text=found.value,
                )
            )

        if changed:
            nodes.set_text(node_index, node_text)
            touched_nodes.append(node_index)

    entries.sort(key=lambda item: (item.node_index, item.start))
    return entries, touched_nodes


def _build_replace_report(
    parse_result: ParseResult,
    entries: list[ReplaceLogEntry],
    touched_nodes: list[int],
) -> ReplaceReport:
    replaced_count = sum(1 for item in entries if item.status == "replaced")
    unresolved = [item for item in entries if item.status == "unresolved"]
    unsupported_count = sum(1 for item in entries if item.status == "unsupported")

    unresolved_keys: list[str] = []
    for item in unresolved:
        if item.key is not None and item.key not in unresolved_keys:
            unresolved_keys.append(item.key)

    summary = ReplaceSummary(
        total_placeholders=len(parse_result.occurrences),
        replaced_count=replaced_count,
        unresolved_count=len(unresolved),
        unsupported_count=unsupported_count,
        touched_node_count=len(touched_nodes),
    )
    return ReplaceReport(
        entries=entries,
        summary=summary,
        touched_nodes=touched_nodes,
        unresolved_keys=unresolved_keys,
    )
