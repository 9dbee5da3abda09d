# graphweave/ingest/state/schema.py
"""
Persisted file index schema.

One FileIndexEntry per tracked file, keyed by workspace-relative POSIX path.
The whole table is a FileIndexState that round-trips through JSON.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from graphweave.ingest.hashing import HASH_ALGO


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HashStatus(str, Enum):
    """Outcome of the last content hash check for a file."""

    OK = "OK"
    MISMATCH = "MISMATCH"
    UNKNOWN = "UNKNOWN"


class ChunkRef(BaseModel):
    """Chunk identity as committed for a file."""

    id: str
    start_char: int = Field(ge=0)
    end_char: int = Field(gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class FileIndexEntry(BaseModel):
    """
    Index record for a single file.

    `pending_graph` is set and persisted before any graph or vector write for
    the file and cleared only by the final commit, so a crash in between
    leaves the file classified as modified on the next run.
    """

    path: str
    available: bool = True
    is_deleted: bool = False
    size_bytes: int = Field(default=0, ge=0)
    mtime_epoch: float = 0.0
    hash_algo: str = HASH_ALGO
    content_hash: Optional[str] = None
    hash_status: HashStatus = HashStatus.UNKNOWN
    last_verified_at: Optional[datetime] = None
    language: Optional[str] = None
    last_indexed_at: Optional[datetime] = None
    pending_graph: bool = False
    deleted_at: Optional[datetime] = None
    chunks: List[ChunkRef] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_tombstone(self) -> "FileIndexEntry":
        if self.is_deleted and self.chunks:
            raise ValueError(f"deleted entry {self.path!r} still references chunks")
        return self

    def is_active(self) -> bool:
        return not self.is_deleted

    def chunk_ids(self) -> List[str]:
        return [ref.id for ref in self.chunks]


class FileIndexState(BaseModel):
    """Root object of the persisted index."""

    schema_version: int = 1
    root: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
    files: Dict[str, FileIndexEntry] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def get_entry(self, path: str) -> Optional[FileIndexEntry]:
        return self.files.get(path)

    def active_paths(self) -> set[str]:
        return {path for path, entry in self.files.items() if entry.is_active()}


__all__ = [
    "HashStatus",
    "ChunkRef",
    "FileIndexEntry",
    "FileIndexState",
    "utcnow",
]
