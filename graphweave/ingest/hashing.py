# graphweave/ingest/hashing.py
"""
Content hashing: the identity contract for files, chunks, vectors and graph
elements.

Every function here has a fixed input shape. Changing a shape changes every
id derived from it, so each one is pinned by tests in tests/test_hashing.py.

Shapes:
- file identity:  "{path}|{size}|{mtime as UTC ISO-8601, ms precision, 'Z'}"
- chunk identity: "{content.strip()}|{path}|{start_line}|{end_line}"
- chunk id:       "{document_id}|{start_char}|{end_char}|{content}"
- vector:         ",".join(f"{round(v, 6):.6f}")
- node id:        "{type}|{normalized label}|{json(properties, sorted keys)}"
- edge id:        "{source}->{target}:{type}"

All digests are SHA-256 hex. Node and edge ids are truncated to
SHORT_ID_LENGTH characters.
"""

from __future__ import annotations

import hashlib
import json
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

HASH_ALGO = "sha256"
SHORT_ID_LENGTH = 16
VECTOR_PRECISION = 6

_READ_BLOCK = 1 << 16


def hash_text(text: str) -> str:
    """SHA-256 hex digest of UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: str | Path) -> str:
    """Streamed SHA-256 of a file's raw bytes. Raises OSError if unreadable."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            block = f.read(_READ_BLOCK)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


def normalize_content(text: str) -> str:
    """
    Normalize text before chunking so cosmetic churn keeps ids stable.

    CRLF/CR become LF, trailing whitespace is stripped from every line and
    the result is NFC-normalized.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    return unicodedata.normalize("NFC", text)


def mtime_to_iso(mtime_epoch: float) -> str:
    """Format an epoch timestamp as UTC ISO-8601 with milliseconds, e.g. 2024-01-01T00:00:00.000Z."""
    dt = datetime.fromtimestamp(mtime_epoch, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def file_identity_hash(path: str, size_bytes: int, mtime_epoch: float) -> str:
    return hash_text(f"{path}|{size_bytes}|{mtime_to_iso(mtime_epoch)}")


def chunk_content_hash(content: str, path: str, start_line: int, end_line: int) -> str:
    return hash_text(f"{content.strip()}|{path}|{start_line}|{end_line}")


def chunk_id(document_id: str, start_char: int, end_char: int, content: str) -> str:
    """
    Deterministic chunk id.

    Re-chunking identical content at identical offsets always yields the
    same id; any edit inside the span yields a new one.
    """
    return hash_text(f"{document_id}|{start_char}|{end_char}|{content}")


def vector_hash(vector: Iterable[float]) -> str:
    """
    Hash of a vector rounded to VECTOR_PRECISION decimals.

    Jitter below the rounding threshold does not change the hash; negative
    zero is folded into zero.
    """
    parts = []
    for value in vector:
        rounded = round(float(value), VECTOR_PRECISION) + 0.0
        parts.append(f"{rounded:.{VECTOR_PRECISION}f}")
    return hash_text(",".join(parts))


def normalize_label(label: str) -> str:
    """Case- and whitespace-insensitive form of a node label."""
    return " ".join(label.split()).lower()


def node_id(node_type: str, label: str, properties: Mapping[str, Any] | None = None) -> str:
    """Short content-derived node id. Never depends on where a fact was found."""
    props = json.dumps(dict(properties or {}), sort_keys=True, separators=(",", ":"), default=str)
    payload = f"{node_type}|{normalize_label(label)}|{props}"
    return hash_text(payload)[:SHORT_ID_LENGTH]


def edge_id(source: str, target: str, edge_type: str) -> str:
    return hash_text(f"{source}->{target}:{edge_type}")[:SHORT_ID_LENGTH]


__all__ = [
    "HASH_ALGO",
    "SHORT_ID_LENGTH",
    "VECTOR_PRECISION",
    "hash_text",
    "hash_bytes",
    "hash_file",
    "normalize_content",
    "mtime_to_iso",
    "file_identity_hash",
    "chunk_content_hash",
    "chunk_id",
    "vector_hash",
    "normalize_label",
    "node_id",
    "edge_id",
]
