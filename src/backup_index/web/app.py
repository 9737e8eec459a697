"""FastAPI application serving index reports as JSON."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from backup_index.config import ExportConfig
from backup_index.index.export import export_reports
from backup_index.index.storage import IndexDb
from backup_index.models import format_hash, parse_hash

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="backup-index reports", version="0.1.0")


class ExportPayload(BaseModel):
    db: Path
    out_dir: Path = Path(".")


class ReportRowOut(BaseModel):
    path: str
    size: int | None


class ChunkOut(BaseModel):
    chunk_hash: str
    bak_n: int
    offset: int
    size: int


def _resolve_db_path(db: Path) -> Path:
    resolved = ExportConfig(db_path=db).resolve_db_path(Path.cwd())
    if not resolved.exists():
        raise HTTPException(status_code=404, detail=f"Database not found: {resolved}")
    return resolved


def _storage_error(exc: sqlite3.Error) -> HTTPException:
    LOGGER.error("Database query failed: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.get("/stats")
async def get_stats(db: Path) -> dict[str, Any]:
    resolved_db = _resolve_db_path(db)
    try:
        with IndexDb(resolved_db, read_only=True) as store:
            return store.get_stats()
    except sqlite3.Error as exc:
        raise _storage_error(exc) from exc


@app.get("/index")
async def list_index(db: Path) -> dict[str, List[ReportRowOut]]:
    """Every indexed file."""
    resolved_db = _resolve_db_path(db)
    try:
        with IndexDb(resolved_db, read_only=True) as store:
            rows = store.select_index_rows()
    except sqlite3.Error as exc:
        raise _storage_error(exc) from exc
    return {"rows": [ReportRowOut(path=row.path, size=row.size) for row in rows]}


@app.get("/diff")
async def list_diff(db: Path) -> dict[str, List[ReportRowOut]]:
    """Indexed files that have chunk rows."""
    resolved_db = _resolve_db_path(db)
    try:
        with IndexDb(resolved_db, read_only=True) as store:
            rows = store.select_diff_rows()
    except sqlite3.Error as exc:
        raise _storage_error(exc) from exc
    return {"rows": [ReportRowOut(path=row.path, size=row.size) for row in rows]}


@app.get("/chunks/{file_hash}")
async def list_chunks(file_hash: str, db: Path) -> dict[str, Any]:
    try:
        digest = parse_hash(file_hash)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    resolved_db = _resolve_db_path(db)
    try:
        with IndexDb(resolved_db, read_only=True) as store:
            records = store.select_file_chunks(digest)
    except sqlite3.Error as exc:
        raise _storage_error(exc) from exc

    return {
        "file_hash": format_hash(digest),
        "chunks": [
            ChunkOut(
                chunk_hash=format_hash(record.chunk_hash),
                bak_n=record.bak_n,
                offset=record.offset,
                size=record.size,
            )
            for record in records
        ],
    }


@app.post("/export")
async def export_index(payload: ExportPayload) -> dict[str, Any]:
    resolved_db = _resolve_db_path(payload.db)
    out_dir = ExportConfig(db_path=payload.db, out_dir=payload.out_dir).resolve_out_dir(Path.cwd())
    try:
        stats = await asyncio.to_thread(export_reports, resolved_db, out_dir)
    except sqlite3.Error as exc:
        raise _storage_error(exc) from exc

    result = asdict(stats)
    result["diff_path"] = str(stats.diff_path)
    result["index_path"] = str(stats.index_path)
    return {"status": "ok", "stats": result}
