"""CSV reports of an index database."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from backup_index.index.storage import IndexDb
from backup_index.models import ReportRow

LOGGER = logging.getLogger(__name__)

DIFF_FILENAME = "diff.txt"
INDEX_FILENAME = "index.txt"


@dataclass(slots=True)
class ExportStats:
    diff_path: Path
    index_path: Path
    diff_rows: int = 0
    index_rows: int = 0


def write_csv(path: Path, rows: Iterable[ReportRow]) -> int:
    """Write ``path,size`` lines without a header, replacing ``path``."""
    count = 0
    # surrogateescape writes undecodable path bytes back out unchanged
    with Path(path).open("w", newline="", encoding="utf-8", errors="surrogateescape") as handle:
        writer = csv.writer(handle)
        for row in rows:
            writer.writerow((row.path, row.size))
            count += 1
    return count


class ReportExporter:
    """Writes the diff and full-index reports for one open database."""

    def __init__(
        self,
        store: IndexDb,
        out_dir: Path,
        *,
        diff_filename: str = DIFF_FILENAME,
        index_filename: str = INDEX_FILENAME,
    ) -> None:
        self.store = store
        self.out_dir = Path(out_dir)
        self.diff_filename = diff_filename
        self.index_filename = index_filename

    def export(self) -> ExportStats:
        stats = ExportStats(
            diff_path=self.out_dir / self.diff_filename,
            index_path=self.out_dir / self.index_filename,
        )
        # Rows are fetched before the file is opened so a failed query
        # leaves the previous report in place.
        diff_rows = self.store.select_diff_rows()
        self.out_dir.mkdir(parents=True, exist_ok=True)
        stats.diff_rows = write_csv(stats.diff_path, diff_rows)
        LOGGER.info("Wrote %d rows to %s", stats.diff_rows, stats.diff_path)

        index_rows = self.store.select_index_rows()
        stats.index_rows = write_csv(stats.index_path, index_rows)
        LOGGER.info("Wrote %d rows to %s", stats.index_rows, stats.index_path)
        return stats


def export_reports(
    db_path: Path,
    out_dir: Path,
    *,
    diff_filename: str = DIFF_FILENAME,
    index_filename: str = INDEX_FILENAME,
) -> ExportStats:
    """Open ``db_path`` read-only and write both reports into ``out_dir``."""
    LOGGER.debug("Exporting %s into %s", db_path, out_dir)
    with IndexDb(db_path, read_only=True) as store:
        exporter = ReportExporter(
            store,
            out_dir,
            diff_filename=diff_filename,
            index_filename=index_filename,
        )
        return exporter.export()
