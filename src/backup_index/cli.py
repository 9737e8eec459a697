"""Command line interface for backup-index."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from backup_index.config import ExportConfig
from backup_index.index.export import export_reports
from backup_index.index.storage import IndexDb
from backup_index.models import format_hash, parse_hash
from backup_index.web.app import app as web_app


console = Console()
err_console = Console(stderr=True)
app = typer.Typer(help="backup-index - inspect and export backup index databases")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _fail(exc: sqlite3.Error) -> NoReturn:
    err_console.print(f"Error: {exc}", markup=False)
    raise typer.Exit(code=1)


@app.command()
def export(
    ctx: typer.Context,
    db: Optional[Path] = typer.Argument(None, help="Index database to export"),
    out_dir: Path = typer.Option(Path("."), "--out-dir", "-o", help="Directory for the reports"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Write diff.txt and index.txt as CSV."""
    if db is None:
        console.print(f"Usage: {ctx.command_path} <index.db>", markup=False)
        raise typer.Exit(code=1)

    _setup_logging(verbose)
    config = ExportConfig(db_path=db, out_dir=out_dir)
    base_dir = Path.cwd()
    try:
        result = export_reports(
            config.resolve_db_path(base_dir),
            config.resolve_out_dir(base_dir),
            diff_filename=config.diff_filename,
            index_filename=config.index_filename,
        )
    except sqlite3.Error as exc:
        _fail(exc)

    console.print(
        f"Diff rows: {result.diff_rows} ({result.diff_path}), "
        f"index rows: {result.index_rows} ({result.index_path})",
        markup=False,
    )


@app.command()
def init(
    db: Path = typer.Argument(..., help="Index database to create or check"),
) -> None:
    """Create the index and chunk tables if they are missing."""
    _ensure_db_parent(db)
    try:
        with IndexDb(db):
            pass
    except sqlite3.Error as exc:
        _fail(exc)
    console.print(f"Schema ready in [bold]{db}[/bold]")


@app.command()
def stats(
    db: Path = typer.Argument(..., help="Index database"),
) -> None:
    """Show row counts and total indexed size."""
    try:
        with IndexDb(db, read_only=True) as store:
            summary = store.get_stats()
    except sqlite3.Error as exc:
        _fail(exc)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Indexed files", str(summary["index_count"]))
    table.add_row("Chunk rows", str(summary["chunk_count"]))
    table.add_row("Files with chunks", str(summary["chunked_file_count"]))
    table.add_row("Total size (bytes)", str(summary["total_size_bytes"]))
    console.print(table)


@app.command()
def chunks(
    db: Path = typer.Argument(..., help="Index database"),
    file_hash: str = typer.Argument(..., help="Hex digest of the file"),
) -> None:
    """List the chunks of one file in storage order."""
    try:
        digest = parse_hash(file_hash)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="FILE_HASH") from exc

    try:
        with IndexDb(db, read_only=True) as store:
            records = store.select_file_chunks(digest)
    except sqlite3.Error as exc:
        _fail(exc)

    if not records:
        console.print("[yellow]No chunks found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Chunk")
    table.add_column("Bak", justify="right")
    table.add_column("Offset", justify="right")
    table.add_column("Size", justify="right")
    for number, record in enumerate(records):
        table.add_row(
            str(number),
            format_hash(record.chunk_hash),
            str(record.bak_n),
            str(record.offset),
            str(record.size),
        )
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the JSON report service."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - optional extra
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting report service on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
