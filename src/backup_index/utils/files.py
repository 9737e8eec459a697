"""Utility helpers for storing filesystem paths."""

from __future__ import annotations

import os
from pathlib import Path


def path_to_bytes(path: Path | str) -> bytes:
    """Return the raw OS byte form of a path."""
    return os.fsencode(path)


def bytes_to_path(raw: bytes) -> Path:
    return Path(os.fsdecode(raw))


def path_text(value: bytes | str | None) -> str:
    """Decode a stored path column, which may be a BLOB, TEXT or NULL value."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return os.fsdecode(bytes(value))
    return str(value)
