"""Human-readable summaries for CLI output."""

from __future__ import annotations

from collections.abc import Mapping

from core.orchestrator.pipeline import GenerationResult
from core.templates.models import ParseResult
from core.templates.resolver import match_placeholder


def render_generation_summary(result: GenerationResult) -> str:
    """Render a one-screen summary of a generation run."""

    summary = result.replace_report.summary
    persist = result.persist
    lines: list[str] = ["generation_summary:"]
    lines.append(
        f"record={result.record_map.table_id}/{result.record_map.record_id} "
        f"fields={len(result.record_map.values)}"
    )
    if result.record_map.failed_fields:
        lines.append(f"failed_fields: {', '.join(result.record_map.failed_fields)}")

    lines.append(
        f"placeholders: total={summary.total_placeholders} replaced={summary.replaced_count} "
        f"unresolved={summary.unresolved_count} fragments={summary.unsupported_count}"
    )
    if result.replace_report.unresolved_keys:
        lines.append(f"unresolved: {', '.join(result.replace_report.unresolved_keys)}")

    lines.append(f"pdf: pages={result.render.page_count} bytes={result.render.pdf_size}")
    if result.render.missing_resources:
        lines.append(f"missing_resources: {', '.join(result.render.missing_resources)}")

    lines.append(f"persist: status={persist.status} file={persist.file_name}")
    if persist.token:
        lines.append(f"token: {persist.token}")
    if persist.fallback_path:
        lines.append(f"fallback: {persist.fallback_path}")
    return "\n".join(lines)


def render_inspect_summary(
    parse_result: ParseResult, record_map: Mapping[str, str] | None = None
) -> str:
    """List template keys, with their resolution when a record map is given."""

    lines: list[str] = [f"placeholders: {len(parse_result.keys)}"]
    for key in parse_result.keys:
        if record_map is None:
            lines.append(f"- {key}")
            continue
        found = match_placeholder(key, record_map)
        if found is None:
            lines.append(f"- {key}: unresolved")
        else:
            lines.append(f"- {key}: {found.match} -> {found.record_key}")

    for item in parse_result.unsupported:
        lines.append(f"fragment({item.kind}) node={item.node_index}: {item.text}")
    return "\n".join(lines)
