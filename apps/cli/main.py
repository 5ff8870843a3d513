"""Typer CLI entrypoint for recordprint."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated

import typer

from apps.cli.format_human import render_generation_summary, render_inspect_summary
from apps.cli.io import (
    OutputPaths,
    build_output_paths,
    write_error_report_atomic,
    write_generation_output_atomic,
    write_record_map_atomic,
)
from core.config.settings import Settings, load_settings
from core.orchestrator.pipeline import GenerationResult, NotificationKind, run_generation
from core.persist.local_save import DirectoryLocalSaver
from core.persist.snapshot_store import SnapshotHostStore
from core.records.collector import collect_record_map
from core.templates.placeholder_parser import parse_placeholders
from core.utils.errors import (
    InvalidTemplateError,
    RenderFailureError,
    SelectionError,
    UploadFailureError,
)

app = typer.Typer(help="Record to PDF attachment generator", rich_markup_mode=None)

EXIT_INTERNAL = 1
EXIT_INVALID_TEMPLATE = 2
EXIT_RENDER_FAILURE = 3
EXIT_UPLOAD_FAILURE = 4
EXIT_SELECTION = 5


class CliReporter:
    """Echo progress and notifications; keep the record-map dump for --debug-dump."""

    def __init__(self, *, verbose: bool = False) -> None:
        self._verbose = verbose
        self.record_map_payload: str | None = None

    def status(self, message: str) -> None:
        if self._verbose:
            typer.echo(f"INFO: {message}")

    def debug_map(self, payload: str) -> None:
        self.record_map_payload = payload

    def notify(self, kind: NotificationKind, message: str) -> None:
        typer.echo(f"{kind.upper()}: {message}")


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("generate")
def generate_command(
    template: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    record: Annotated[
        Path,
        typer.Option(
            ...,
            exists=True,
            dir_okay=False,
            file_okay=True,
            help="Record snapshot JSON; attachment write-back is flushed into it.",
        ),
    ],
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    settings_path: Annotated[Path | None, typer.Option("--settings")] = None,
    attachment_field: Annotated[
        str | None,
        typer.Option("--attachment-field", help="Attachment field id or name to write into."),
    ] = None,
    debug_dump: Annotated[
        bool,
        typer.Option("--debug-dump", help="Write out.record_map.json with normalized values."),
    ] = False,
    keep_docx: Annotated[
        bool, typer.Option("--keep-docx", help="Also write the patched out.docx.")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose")] = False,
) -> None:
    """Fill the template from the selected record, render a PDF and attach it."""

    _configure_logging(verbose)
    paths = build_output_paths(out_dir)
    reporter = CliReporter(verbose=verbose)
    result: GenerationResult | None = None

    try:
        settings = _load_cli_settings(settings_path, attachment_field)
        store = SnapshotHostStore(record, blob_dir=paths.blobs)
        result = asyncio.run(
            run_generation(
                store,
                template.read_bytes(),
                settings=settings,
                local_saver=DirectoryLocalSaver(out_dir),
                reporter=reporter,
            )
        )
        exit_code = 0
    except InvalidTemplateError as exc:
        exit_code = EXIT_INVALID_TEMPLATE
        _report_failure(paths, exc, "invalid template")
    except RenderFailureError as exc:
        exit_code = EXIT_RENDER_FAILURE
        _report_failure(paths, exc, f"render failed at stage {exc.stage}")
    except UploadFailureError as exc:
        exit_code = EXIT_UPLOAD_FAILURE
        _report_failure(paths, exc, "attachment upload failed")
    except SelectionError as exc:
        exit_code = EXIT_SELECTION
        _report_failure(paths, exc, "no table/record selected")
    except Exception as exc:  # noqa: BLE001
        exit_code = EXIT_INTERNAL
        _report_failure(paths, exc, "internal error")

    if result is not None:
        try:
            write_generation_output_atomic(paths, result, keep_docx=keep_docx)
        except Exception as exc:  # noqa: BLE001
            exit_code = EXIT_INTERNAL
            typer.echo(f"ERROR: write output failed: {exc}")
        typer.echo(render_generation_summary(result))

    if debug_dump and reporter.record_map_payload is not None:
        try:
            write_record_map_atomic(paths.record_map, reporter.record_map_payload)
        except Exception as exc:  # noqa: BLE001
            typer.echo(f"ERROR: debug dump write failed: {exc}")
            exit_code = EXIT_INTERNAL

    raise typer.Exit(code=exit_code)


@app.command("inspect")
def inspect_command(
    template: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    record: Annotated[
        Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)
    ] = None,
    settings_path: Annotated[Path | None, typer.Option("--settings")] = None,
    as_json: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    """List template placeholders and how the selected record would resolve them."""

    try:
        parse_result = parse_placeholders(template.read_bytes())
    except InvalidTemplateError as exc:
        typer.echo(f"ERROR: invalid template: {exc}")
        raise typer.Exit(code=EXIT_INVALID_TEMPLATE) from exc

    record_map: dict[str, str] | None = None
    if record is not None:
        try:
            settings = load_settings(settings_path)
            record_map = asyncio.run(_selected_record_map(record, settings))
        except SelectionError as exc:
            typer.echo(f"ERROR: {exc}")
            raise typer.Exit(code=EXIT_SELECTION) from exc
        except Exception as exc:  # noqa: BLE001
            typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
            raise typer.Exit(code=EXIT_INTERNAL) from exc

    if as_json:
        payload = {
            "keys": parse_result.keys,
            "fragments": [
                {"kind": item.kind, "node_index": item.node_index, "text": item.text}
                for item in parse_result.unsupported
            ],
        }
        if record_map is not None:
            payload["record_map"] = record_map
        typer.echo(json.dumps(payload, ensure_ascii=False, sort_keys=True))
    else:
        typer.echo(render_inspect_summary(parse_result, record_map))
    raise typer.Exit(code=0)


async def _selected_record_map(record: Path, settings: Settings) -> dict[str, str]:
    store = SnapshotHostStore(record)
    selection = await store.get_selection()
    if not selection.table_id or not selection.record_id:
        raise SelectionError(
            "Record snapshot has no table/record selection",
            table_id=selection.table_id,
            record_id=selection.record_id,
        )
    fields = await store.get_field_list(selection.table_id)
    result = await collect_record_map(
        store, selection.table_id, selection.record_id, fields, settings.normalize
    )
    return result.values


def _load_cli_settings(path: Path | None, attachment_field: str | None) -> Settings:
    settings = load_settings(path)
    if attachment_field:
        settings.persist.attachment_field = attachment_field
    return settings


def _report_failure(paths: OutputPaths, exc: Exception, reason: str) -> None:
    typer.echo(f"ERROR: {reason}: {exc}")
    try:
        write_error_report_atomic(
            paths, error_type=type(exc).__name__, error_message=str(exc)
        )
    except OSError as write_exc:
        typer.echo(f"ERROR: error report write failed: {write_exc}")


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s %(message)s")


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
