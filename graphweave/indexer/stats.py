# graphweave/indexer/stats.py
"""
Run statistics.

A RunAccumulator is mutated on the event loop while a run is in flight;
`freeze()` turns it into the immutable IndexingRunStats handed back to the
caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from graphweave.ingest.state.schema import utcnow


class RunStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"


class ErrorKind(str, Enum):
    TRANSIENT = "transient"  # I/O, timeouts, store calls; retried next run
    STRUCTURAL = "structural"  # malformed unit; fatal to that unit only
    STATE = "state"  # file index could not be written


@dataclass(frozen=True)
class IndexingError:
    path: str
    stage: str
    message: str
    kind: ErrorKind = ErrorKind.TRANSIENT


@dataclass(frozen=True)
class IndexingRunStats:
    """
    Immutable summary of one run.

    files_modified counts every file that was (re)processed, new ones
    included; files_new is the subset that had no previous entry.
    """

    status: RunStatus
    files_scanned: int = 0
    files_modified: int = 0
    files_new: int = 0
    files_unchanged: int = 0
    files_deleted: int = 0
    chunks_added: int = 0
    chunks_modified: int = 0
    chunks_removed: int = 0
    chunks_without_embedding: int = 0
    entity_nodes_created: int = 0
    entity_nodes_linked: int = 0
    relationships_created: int = 0
    tombstones_purged: int = 0
    errors: Tuple[IndexingError, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def __str__(self) -> str:
        return (
            f"{self.status.value}: scanned {self.files_scanned}, modified {self.files_modified} "
            f"(new {self.files_new}), deleted {self.files_deleted}, chunks "
            f"+{self.chunks_added}/~{self.chunks_modified}/-{self.chunks_removed}, "
            f"errors {self.error_count}, {self.duration_seconds:.2f}s"
        )


@dataclass
class RunAccumulator:
    files_scanned: int = 0
    files_modified: int = 0
    files_new: int = 0
    files_unchanged: int = 0
    files_deleted: int = 0
    chunks_added: int = 0
    chunks_modified: int = 0
    chunks_removed: int = 0
    chunks_without_embedding: int = 0
    entity_nodes_created: int = 0
    entity_nodes_linked: int = 0
    relationships_created: int = 0
    tombstones_purged: int = 0
    errors: List[IndexingError] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)

    def error(self, path: str, stage: str, message: str, kind: ErrorKind = ErrorKind.TRANSIENT) -> None:
        self.errors.append(IndexingError(path=path, stage=stage, message=message, kind=kind))

    def freeze(self, cancelled: bool = False) -> IndexingRunStats:
        if cancelled:
            status = RunStatus.CANCELLED
        elif self.errors:
            status = RunStatus.COMPLETED_WITH_ERRORS
        else:
            status = RunStatus.COMPLETED
        return IndexingRunStats(
            status=status,
            files_scanned=self.files_scanned,
            files_modified=self.files_modified,
            files_new=self.files_new,
            files_unchanged=self.files_unchanged,
            files_deleted=self.files_deleted,
            chunks_added=self.chunks_added,
            chunks_modified=self.chunks_modified,
            chunks_removed=self.chunks_removed,
            chunks_without_embedding=self.chunks_without_embedding,
            entity_nodes_created=self.entity_nodes_created,
            entity_nodes_linked=self.entity_nodes_linked,
            relationships_created=self.relationships_created,
            tombstones_purged=self.tombstones_purged,
            errors=tuple(sorted(self.errors, key=lambda e: (e.path, e.stage, e.message))),
            started_at=self.started_at,
            finished_at=utcnow(),
        )


__all__ = ["RunStatus", "ErrorKind", "IndexingError", "IndexingRunStats", "RunAccumulator"]
