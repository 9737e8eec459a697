"""Export configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from backup_index.index.export import DIFF_FILENAME, INDEX_FILENAME


def _resolve(path: Path, base_dir: Path | None) -> Path:
    if Path(path).is_absolute() or base_dir is None:
        return Path(path)
    return base_dir / path


@dataclass(slots=True)
class ExportConfig:
    db_path: Path | None = None
    out_dir: Path = field(default_factory=lambda: Path("."))
    diff_filename: str = DIFF_FILENAME
    index_filename: str = INDEX_FILENAME

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            raise ValueError("No index database configured")
        return _resolve(self.db_path, base_dir)

    def resolve_out_dir(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.out_dir, base_dir)
