"""SQLite persistence for the file index and its chunk table."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List

from backup_index.models import ChunkRecord, IndexEntry, ReportRow
from backup_index.utils.files import bytes_to_path, path_text, path_to_bytes

LOGGER = logging.getLogger(__name__)

INDEX_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS "index" (
    path  BLOB UNIQUE,
    size  INTEGER,
    mtime INTEGER,
    hash  BLOB
)
"""

CHUNK_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS chunk (
    file_hash  BLOB,
    chunk_hash BLOB,
    bak_n      INTEGER,
    offset     INTEGER,
    size       INTEGER
)
"""

CHUNK_FILE_HASH_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_chunk_file_hash ON chunk(file_hash)
"""

# Neither report query orders its rows.
DIFF_ROWS_SQL = """
SELECT path, size FROM "index"
WHERE hash IN (SELECT file_hash FROM chunk)
"""

INDEX_ROWS_SQL = 'SELECT path, size FROM "index"'


class IndexDb:
    """Handle on an index database.

    Writable handles create the schema on open. Read-only handles open the
    existing file with ``mode=ro`` and never issue any statement that writes,
    so a missing file fails instead of being created.
    """

    def __init__(self, db_path: Path, *, read_only: bool = False) -> None:
        self.db_path = Path(db_path)
        self.read_only = read_only
        if read_only:
            uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
            self._conn = sqlite3.connect(uri, uri=True)
        else:
            self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        if not read_only:
            try:
                self.ensure_schema()
            except sqlite3.Error:
                self._conn.close()
                raise

    def __enter__(self) -> "IndexDb":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def ensure_schema(self) -> None:
        """Create the ``index`` and ``chunk`` tables when absent."""
        with self.transaction() as conn:
            conn.execute(INDEX_TABLE_SQL)
            conn.execute(CHUNK_TABLE_SQL)
            conn.execute(CHUNK_FILE_HASH_INDEX_SQL)

    def upsert_index_entry(self, entry: IndexEntry) -> str:
        """Insert or update the row for ``entry.path``.

        Returns 'inserted', 'updated' or 'skipped' (identical row present).
        Must be called within a transaction.
        """
        conn = self._conn
        raw_path = path_to_bytes(entry.path)
        existing = conn.execute(
            'SELECT size, mtime, hash FROM "index" WHERE path = ?',
            (raw_path,),
        ).fetchone()

        if existing is None:
            conn.execute(
                'INSERT INTO "index"(path, size, mtime, hash) VALUES (?, ?, ?, ?)',
                (raw_path, entry.size, entry.mtime, entry.hash),
            )
            return "inserted"

        if (existing["size"], existing["mtime"], existing["hash"]) == (
            entry.size,
            entry.mtime,
            entry.hash,
        ):
            return "skipped"

        conn.execute(
            'UPDATE "index" SET size = ?, mtime = ?, hash = ? WHERE path = ?',
            (entry.size, entry.mtime, entry.hash, raw_path),
        )
        return "updated"

    def insert_chunks(self, records: Iterable[ChunkRecord]) -> int:
        """Append chunk rows. Must be called within a transaction."""
        count = 0
        for record in records:
            self._conn.execute(
                """
                INSERT INTO chunk(file_hash, chunk_hash, bak_n, offset, size)
                VALUES (?, ?, ?, ?, ?)
                """,
                (record.file_hash, record.chunk_hash, record.bak_n, record.offset, record.size),
            )
            count += 1
        return count

    def has_chunks(self, file_hash: bytes) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM chunk WHERE file_hash = ? LIMIT 1", (file_hash,)
        ).fetchone()
        return row is not None

    def upsert_file(self, entry: IndexEntry, chunks: Iterable[ChunkRecord] = ()) -> str:
        """Record a file and, for content not stored yet, its chunk rows."""
        with self.transaction():
            status = self.upsert_index_entry(entry)
            if not self.has_chunks(entry.hash):
                inserted = self.insert_chunks(chunks)
                LOGGER.debug("Stored %d chunks for %s", inserted, entry.path)
            return status

    def select_index_all(self) -> List[IndexEntry]:
        rows = self._conn.execute('SELECT path, size, mtime, hash FROM "index"').fetchall()
        return [
            IndexEntry(
                path=bytes_to_path(row["path"]),
                size=row["size"],
                mtime=row["mtime"],
                hash=row["hash"],
            )
            for row in rows
        ]

    def select_chunk_all(self) -> List[ChunkRecord]:
        rows = self._conn.execute(
            "SELECT file_hash, chunk_hash, bak_n, offset, size FROM chunk"
        ).fetchall()
        return [_chunk_from_row(row) for row in rows]

    def select_file_chunks(self, file_hash: bytes) -> List[ChunkRecord]:
        """Chunks of one file in storage order."""
        rows = self._conn.execute(
            """
            SELECT file_hash, chunk_hash, bak_n, offset, size FROM chunk
            WHERE file_hash = ?
            ORDER BY bak_n, offset
            """,
            (file_hash,),
        ).fetchall()
        return [_chunk_from_row(row) for row in rows]

    def count_index_rows(self) -> int:
        return self._conn.execute('SELECT COUNT(*) FROM "index"').fetchone()[0]

    def count_chunk_rows(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM chunk").fetchone()[0]

    def get_stats(self) -> dict:
        total_size = self._conn.execute(
            'SELECT COALESCE(SUM(size), 0) FROM "index"'
        ).fetchone()[0]
        chunked = self._conn.execute(
            f"SELECT COUNT(*) FROM ({DIFF_ROWS_SQL})"
        ).fetchone()[0]
        return {
            "index_count": self.count_index_rows(),
            "chunk_count": self.count_chunk_rows(),
            "chunked_file_count": chunked,
            "total_size_bytes": total_size,
        }

    def select_diff_rows(self) -> List[ReportRow]:
        """Index entries with at least one chunk row."""
        return _report_rows(self._conn.execute(DIFF_ROWS_SQL).fetchall())

    def select_index_rows(self) -> List[ReportRow]:
        return _report_rows(self._conn.execute(INDEX_ROWS_SQL).fetchall())


def _chunk_from_row(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(
        file_hash=row["file_hash"],
        chunk_hash=row["chunk_hash"],
        bak_n=row["bak_n"],
        offset=row["offset"],
        size=row["size"],
    )


def _report_rows(rows: List[sqlite3.Row]) -> List[ReportRow]:
    return [ReportRow(path=path_text(row["path"]), size=row["size"]) for row in rows]
