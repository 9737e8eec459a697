"""Core backup-index data models."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# Half of a 32-byte BLAKE3 digest is stored.
HASH_SIZE = 16


@dataclass(slots=True)
class IndexEntry:
    """One indexed file: relative path, size, mtime (ns) and content digest."""

    path: Path
    size: int
    mtime: int
    hash: bytes


@dataclass(slots=True)
class ChunkRecord:
    """Location of one chunk of a file inside a ``bak<N>`` container."""

    file_hash: bytes
    chunk_hash: bytes
    bak_n: int
    offset: int
    size: int


@dataclass(slots=True)
class ReportRow:
    """One report line; ``path`` is the decoded stored path, not normalized."""

    path: str
    size: int


def format_hash(digest: bytes) -> str:
    return digest.hex()


def parse_hash(text: str) -> bytes:
    """Parse a hex digest, rejecting anything that is not ``HASH_SIZE`` bytes."""
    try:
        digest = bytes.fromhex(text.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid hex digest: {text!r}") from exc
    if len(digest) != HASH_SIZE:
        raise ValueError(
            f"Digest must be {HASH_SIZE} bytes ({HASH_SIZE * 2} hex chars), got {len(digest)}"
        )
    return digest
