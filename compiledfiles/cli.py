from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from compiledfiles.config import (
    OUTPUT_FORMATS,
    Settings,
    configure_logging,
    load_settings,
    normalize_log_level,
    normalize_output_format,
)
from compiledfiles.decoder import decode_path
from compiledfiles.errors import CompiledFilesError, MissingDebugSymbolsError
from compiledfiles.filters import build_path_filter
from compiledfiles.models import FileRecord
from compiledfiles.verify import VerifyResult, VerifyStatus, verify_records


app = typer.Typer(help="List the source files compiled into a binary.")
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    VerifyStatus.MATCH: "green",
    VerifyStatus.MISMATCH: "red",
    VerifyStatus.MISSING: "yellow",
    VerifyStatus.NO_CHECKSUM: "dim",
}


def _error(message: str) -> None:
    err_console.print(Text(message, style="red"), soft_wrap=True)


def _optional_int(value: int | None) -> str:
    return "-" if value is None else str(value)


def _checksum_label(record: FileRecord) -> str:
    if record.checksum is None:
        return "-"
    return f"{record.checksum.algorithm}:{record.checksum.hexdigest()}"


def _render_table(records: list[FileRecord], results: list[VerifyResult] | None) -> None:
    table = Table(title=f"Compiled files ({len(records)})")
    table.add_column("Path", overflow="fold")
    table.add_column("Size", justify="right")
    table.add_column("Timestamp", justify="right")
    table.add_column("Checksum", overflow="fold")
    if results is not None:
        table.add_column("Status")

    for index, record in enumerate(records):
        row = [
            record.path,
            _optional_int(record.size),
            _optional_int(record.timestamp),
            _checksum_label(record),
        ]
        if results is not None:
            status = results[index].status
            row.append(Text(status.value, style=_STATUS_STYLES[status]))
        table.add_row(*row)

    console.print(table)


def _record_payload(record: FileRecord, result: VerifyResult | None) -> dict:
    payload: dict = {
        "path": record.path,
        "size": record.size,
        "timestamp": record.timestamp,
        "checksum": None,
    }
    if record.checksum is not None:
        payload["checksum"] = {
            "algorithm": record.checksum.algorithm,
            "hex": record.checksum.hexdigest(),
        }
    if result is not None:
        payload["status"] = result.status.value
    return payload


def _render_json(records: list[FileRecord], results: list[VerifyResult] | None) -> None:
    payload = [
        _record_payload(record, results[index] if results is not None else None)
        for index, record in enumerate(records)
    ]
    typer.echo(json.dumps(payload, indent=2))


def _render_plain(records: list[FileRecord], results: list[VerifyResult] | None) -> None:
    for index, record in enumerate(records):
        fields = [
            record.path,
            _optional_int(record.size),
            _optional_int(record.timestamp),
            _checksum_label(record),
        ]
        if results is not None:
            fields.append(results[index].status.value)
        typer.echo("\t".join(fields))


_RENDERERS = {
    "table": _render_table,
    "json": _render_json,
    "plain": _render_plain,
}


def _resolve_settings(output_format: str | None, log_level: str | None) -> Settings:
    settings = load_settings()
    if output_format is not None:
        settings.output_format = normalize_output_format(output_format)
    if log_level is not None:
        settings.log_level = normalize_log_level(log_level)
    return settings


@app.command()
def main(
    path: Path = typer.Argument(..., help="Binary, object file or PDB to inspect."),
    output_format: str | None = typer.Option(
        None,
        "--format",
        "-f",
        help=f"Output format: {', '.join(OUTPUT_FORMATS)}. Defaults to $COMPILEDFILES_FORMAT or table.",
    ),
    include: list[str] | None = typer.Option(
        None,
        "--include",
        help="Include glob pattern(s) for source paths to list (repeatable).",
    ),
    exclude: list[str] | None = typer.Option(
        None,
        "--exclude",
        help="Exclude glob pattern(s) for source paths to skip (repeatable).",
    ),
    verify: bool = typer.Option(
        False,
        "--verify",
        help="Re-hash each listed source file and compare it with the recorded checksum.",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log level. Defaults to $COMPILEDFILES_LOG_LEVEL or WARNING.",
    ),
) -> None:
    """Print the source files recorded in PATH's debug information."""
    try:
        settings = _resolve_settings(output_format, log_level)
    except ValueError as exc:
        _error(f"ERROR: {exc}")
        raise typer.Exit(code=1)

    configure_logging(settings.log_level)

    try:
        records = decode_path(path)
    except MissingDebugSymbolsError:
        _error(f'ERROR: "{path}" missing debug symbols')
        raise typer.Exit(code=1)
    except (CompiledFilesError, NotImplementedError) as exc:
        _error(f"ERROR: {exc}")
        raise typer.Exit(code=1)

    path_filter = build_path_filter(include, exclude)
    listed = path_filter.apply(records)
    logger.info("%d of %d record(s) listed after filtering", len(listed), len(records))

    results = verify_records(listed) if verify else None
    _RENDERERS[settings.output_format](listed, results)
