"""Tests for IndexDb."""

import os
import sqlite3
from pathlib import Path

import pytest

from backup_index.index.storage import IndexDb
from backup_index.models import ChunkRecord, IndexEntry

H1 = bytes(range(16))
H2 = bytes(range(16, 32))


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    db_path = tmp_path / "index.db"
    store = IndexDb(db_path)
    yield store
    store.close()


def _entry(path: str, size: int, digest: bytes, mtime: int = 1_700_000_000_000_000_000) -> IndexEntry:
    return IndexEntry(path=Path(path), size=size, mtime=mtime, hash=digest)


class TestSchema:
    """Test IndexDb initialization and schema."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = IndexDb(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        assert store.read_only is False
        store.close()

    def test_schema_creation(self, temp_db):
        """Both tables and the chunk lookup index exist."""
        conn = temp_db.connection
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"index", "chunk"} <= tables

        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND name='idx_chunk_file_hash'"
        )
        assert cursor.fetchone() is not None

    def test_chunk_columns(self, temp_db):
        columns = [row["name"] for row in temp_db.connection.execute("PRAGMA table_info(chunk)")]
        assert columns == ["file_hash", "chunk_hash", "bak_n", "offset", "size"]

    def test_ensure_schema_twice_keeps_rows(self, temp_db):
        """Running the schema initializer again neither fails nor touches data."""
        temp_db.upsert_file(_entry("a.txt", 10, H1))

        temp_db.ensure_schema()
        temp_db.ensure_schema()

        assert temp_db.count_index_rows() == 1
        assert temp_db.select_index_all()[0].path == Path("a.txt")

    def test_reopen_existing_database(self, tmp_path):
        db_path = tmp_path / "index.db"
        with IndexDb(db_path) as store:
            store.upsert_file(_entry("a.txt", 10, H1))

        with IndexDb(db_path) as store:
            assert store.count_index_rows() == 1

    def test_path_is_unique(self, temp_db):
        with pytest.raises(sqlite3.IntegrityError):
            with temp_db.transaction() as conn:
                conn.execute('INSERT INTO "index"(path, size, mtime, hash) VALUES (?, 1, 1, ?)', (b"x", H1))
                conn.execute('INSERT INTO "index"(path, size, mtime, hash) VALUES (?, 2, 2, ?)', (b"x", H2))

        assert temp_db.count_index_rows() == 0

    def test_not_a_database(self, tmp_path):
        bogus = tmp_path / "bogus.db"
        bogus.write_bytes(b"this is definitely not sqlite" * 100)

        with pytest.raises(sqlite3.DatabaseError):
            IndexDb(bogus)


class TestConnection:
    """Test connection lifetime."""

    def test_context_manager_closes(self, tmp_path):
        with IndexDb(tmp_path / "index.db") as store:
            conn = store.connection

        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")

    def test_context_manager_closes_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with IndexDb(tmp_path / "index.db") as store:
                conn = store.connection
                raise RuntimeError("boom")

        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")

    def test_read_only_missing_file(self, tmp_path):
        """Read-only handles never create the database."""
        db_path = tmp_path / "missing.db"

        with pytest.raises(sqlite3.OperationalError):
            IndexDb(db_path, read_only=True)

        assert not db_path.exists()

    def test_read_only_rejects_writes(self, tmp_path):
        db_path = tmp_path / "index.db"
        IndexDb(db_path).close()

        with IndexDb(db_path, read_only=True) as store:
            with pytest.raises(sqlite3.OperationalError):
                store.upsert_file(_entry("a.txt", 10, H1))

    def test_read_only_skips_schema(self, tmp_path):
        db_path = tmp_path / "empty.db"
        sqlite3.connect(db_path).close()

        with IndexDb(db_path, read_only=True) as store:
            tables = store.connection.execute("SELECT name FROM sqlite_master").fetchall()
        assert tables == []


class TestTransaction:
    """Test transaction context manager."""

    def test_commit_on_success(self, temp_db):
        with temp_db.transaction():
            temp_db.upsert_index_entry(_entry("a.txt", 10, H1))

        assert temp_db.count_index_rows() == 1

    def test_rollback_on_exception(self, temp_db):
        try:
            with temp_db.transaction():
                temp_db.upsert_index_entry(_entry("a.txt", 10, H1))
                raise ValueError("Test error")
        except ValueError:
            pass

        assert temp_db.count_index_rows() == 0


class TestUpsert:
    """Test index and chunk insertion."""

    def test_insert_new_entry(self, temp_db):
        status = temp_db.upsert_file(_entry("a.txt", 10, H1))

        assert status == "inserted"
        entries = temp_db.select_index_all()
        assert entries == [_entry("a.txt", 10, H1)]

    def test_skip_identical_entry(self, temp_db):
        assert temp_db.upsert_file(_entry("a.txt", 10, H1)) == "inserted"
        assert temp_db.upsert_file(_entry("a.txt", 10, H1)) == "skipped"
        assert temp_db.count_index_rows() == 1

    def test_update_changed_entry(self, temp_db):
        temp_db.upsert_file(_entry("a.txt", 10, H1))

        status = temp_db.upsert_file(_entry("a.txt", 20, H2, mtime=5))

        assert status == "updated"
        assert temp_db.select_index_all() == [_entry("a.txt", 20, H2, mtime=5)]

    def test_insert_chunks_with_file(self, temp_db):
        chunks = [
            ChunkRecord(file_hash=H1, chunk_hash=H2, bak_n=0, offset=0, size=6),
            ChunkRecord(file_hash=H1, chunk_hash=H1, bak_n=0, offset=6, size=4),
        ]

        temp_db.upsert_file(_entry("a.txt", 10, H1), chunks)

        assert temp_db.count_chunk_rows() == 2
        assert temp_db.select_chunk_all() == chunks

    def test_known_content_chunks_not_duplicated(self, temp_db):
        """A second path with the same content does not repeat the chunk rows."""
        chunks = [ChunkRecord(file_hash=H1, chunk_hash=H2, bak_n=0, offset=0, size=10)]
        temp_db.upsert_file(_entry("a.txt", 10, H1), chunks)
        temp_db.upsert_file(_entry("copy-of-a.txt", 10, H1), chunks)

        assert temp_db.count_index_rows() == 2
        assert temp_db.count_chunk_rows() == 1

    def test_chunks_added_for_unchanged_entry(self, temp_db):
        """Chunks supplied later for an unchanged file are still recorded."""
        entry = _entry("a.txt", 10, H1)
        chunks = [ChunkRecord(file_hash=H1, chunk_hash=H2, bak_n=0, offset=0, size=10)]

        assert temp_db.upsert_file(entry) == "inserted"
        assert temp_db.upsert_file(entry, chunks) == "skipped"

        assert temp_db.select_chunk_all() == chunks

    def test_binary_path_round_trip(self, temp_db):
        raw = b"dir/caf\xe9.bin"
        temp_db.upsert_file(IndexEntry(path=Path(os.fsdecode(raw)), size=1, mtime=1, hash=H1))

        stored = temp_db.connection.execute('SELECT path FROM "index"').fetchone()[0]
        assert stored == raw


class TestQueries:
    """Test read queries."""

    def test_select_file_chunks_ordered(self, temp_db):
        """Chunks come back ordered by container then offset."""
        with temp_db.transaction():
            temp_db.insert_chunks(
                [
                    ChunkRecord(file_hash=H1, chunk_hash=b"c" * 16, bak_n=1, offset=0, size=4),
                    ChunkRecord(file_hash=H1, chunk_hash=b"b" * 16, bak_n=0, offset=8, size=8),
                    ChunkRecord(file_hash=H2, chunk_hash=b"z" * 16, bak_n=0, offset=0, size=8),
                    ChunkRecord(file_hash=H1, chunk_hash=b"a" * 16, bak_n=0, offset=0, size=8),
                ]
            )

        records = temp_db.select_file_chunks(H1)

        assert [r.chunk_hash for r in records] == [b"a" * 16, b"b" * 16, b"c" * 16]

    def test_select_file_chunks_unknown(self, temp_db):
        assert temp_db.select_file_chunks(H2) == []

    def test_diff_and_index_rows(self, temp_db):
        temp_db.upsert_file(
            _entry("a.txt", 10, H1),
            [ChunkRecord(file_hash=H1, chunk_hash=H1, bak_n=0, offset=0, size=10)],
        )
        temp_db.upsert_file(_entry("b.txt", 20, H2))

        diff = temp_db.select_diff_rows()
        index = temp_db.select_index_rows()

        assert [(r.path, r.size) for r in diff] == [("a.txt", 10)]
        assert sorted((r.path, r.size) for r in index) == [("a.txt", 10), ("b.txt", 20)]

    def test_diff_lists_each_file_once(self, temp_db):
        """A file split into many chunks still appears once."""
        chunks = [
            ChunkRecord(file_hash=H1, chunk_hash=H2, bak_n=0, offset=offset, size=5)
            for offset in (0, 5, 10)
        ]
        temp_db.upsert_file(_entry("a.txt", 15, H1), chunks)

        assert len(temp_db.select_diff_rows()) == 1

    def test_get_stats(self, temp_db):
        temp_db.upsert_file(
            _entry("a.txt", 10, H1),
            [ChunkRecord(file_hash=H1, chunk_hash=H1, bak_n=0, offset=0, size=10)],
        )
        temp_db.upsert_file(_entry("b.txt", 20, H2))

        assert temp_db.get_stats() == {
            "index_count": 2,
            "chunk_count": 1,
            "chunked_file_count": 1,
            "total_size_bytes": 30,
        }

    def test_get_stats_empty(self, temp_db):
        stats = temp_db.get_stats()
        assert stats["index_count"] == 0
        assert stats["total_size_bytes"] == 0
