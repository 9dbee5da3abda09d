# graphweave/ingest/diff/differ.py
"""
Change detection for incremental indexing.

Compares a scan snapshot against the persisted file index and classifies
every path into exactly one of new / modified / unchanged / deleted.

Classification rules:
1. No active entry for the path (or only a tombstone) → new
2. Entry still has pending_graph set (crash mid-file) → modified
3. Same size and mtime → unchanged, stored hash reused (no read)
4. Otherwise re-hash: same hash → unchanged and "touched"; else → modified
5. Active entry not present in the scan → deleted

This module ONLY computes the classification. It never writes state: the
indexer commits each entry after that file's downstream work succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Set, runtime_checkable

from graphweave.ingest.diff.scanner import ScannedFile, ScanResult
from graphweave.ingest.hashing import hash_file
from graphweave.ingest.state.schema import FileIndexEntry, HashStatus
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import SCANNER

logger = get_logger(__name__)


@runtime_checkable
class StateReader(Protocol):
    """Read side of the file index needed for classification."""

    def get_entry(self, path: str) -> Optional[FileIndexEntry]:
        ...

    def active_entries(self) -> Dict[str, FileIndexEntry]:
        ...


@dataclass(frozen=True)
class FileCandidate:
    """A scanned file with its resolved content hash and previous entry."""

    path: str
    abs_path: str
    size_bytes: int
    mtime_epoch: float
    content_hash: Optional[str]
    hash_status: HashStatus = HashStatus.OK
    previous: Optional[FileIndexEntry] = None

    @classmethod
    def from_scanned(
        cls,
        scanned: ScannedFile,
        content_hash: Optional[str],
        previous: Optional[FileIndexEntry] = None,
        hash_status: HashStatus = HashStatus.OK,
    ) -> "FileCandidate":
        return cls(
            path=scanned.path,
            abs_path=scanned.abs_path,
            size_bytes=scanned.size_bytes,
            mtime_epoch=scanned.mtime_epoch,
            content_hash=content_hash,
            hash_status=hash_status,
            previous=previous,
        )


@dataclass(frozen=True)
class DetectionError:
    path: str
    message: str


@dataclass
class ChangeSet:
    """
    Result of change detection.

    `touched` is a subset of `unchanged`: files whose size or mtime moved but
    whose content hash did not. The caller refreshes their metadata.
    """

    new: List[FileCandidate] = field(default_factory=list)
    modified: List[FileCandidate] = field(default_factory=list)
    unchanged: List[FileCandidate] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    touched: List[FileCandidate] = field(default_factory=list)
    errors: List[DetectionError] = field(default_factory=list)

    @property
    def to_process(self) -> List[FileCandidate]:
        return sorted(self.new + self.modified, key=lambda c: c.path)

    @property
    def summary(self) -> str:
        return (
            f"new={len(self.new)}, "
            f"modified={len(self.modified)}, "
            f"unchanged={len(self.unchanged)}, "
            f"deleted={len(self.deleted)}, "
            f"errors={len(self.errors)}"
        )


class ChangeDetector:
    """
    Classifies a scan against the file index.

    Usage:
        detector = ChangeDetector(state_manager)
        changes = detector.detect(scanner.scan(root))
        for candidate in changes.to_process:
            ...
    """

    def __init__(
        self,
        state_reader: StateReader,
        *,
        verify_hashes: bool = False,
        hasher: Callable[[str], str] = hash_file,
    ) -> None:
        self._state = state_reader
        self._verify = verify_hashes
        self._hash = hasher

    def detect(self, scan: ScanResult) -> ChangeSet:
        result = ChangeSet()
        seen: Set[str] = set()

        for scanned in scan.files:
            seen.add(scanned.path)
            self._classify(scanned, result)

        # Paths the scanner could not stat are never treated as deleted
        protected = seen | {e.path for e in scan.errors}
        for err in scan.errors:
            result.errors.append(DetectionError(path=err.path, message=err.message))

        active = self._state.active_entries()
        result.deleted.extend(sorted(p for p in active if p not in protected))

        logger.info(f"{SCANNER} Changes detected: {result.summary}")
        return result

    def _classify(self, scanned: ScannedFile, result: ChangeSet) -> None:
        entry = self._state.get_entry(scanned.path)
        known = entry is not None and entry.is_active()
        same_meta = (
            known
            and entry.size_bytes == scanned.size_bytes
            and entry.mtime_epoch == scanned.mtime_epoch
        )

        if known and same_meta and not self._verify and not entry.pending_graph:
            result.unchanged.append(
                FileCandidate.from_scanned(scanned, entry.content_hash, previous=entry)
            )
            return

        try:
            content_hash = self._hash(scanned.abs_path)
        except OSError as exc:
            result.errors.append(DetectionError(path=scanned.path, message=str(exc)))
            if known:
                result.unchanged.append(
                    FileCandidate.from_scanned(
                        scanned,
                        entry.content_hash,
                        previous=entry,
                        hash_status=HashStatus.UNKNOWN,
                    )
                )
            return

        if not known:
            result.new.append(FileCandidate.from_scanned(scanned, content_hash))
            return

        if entry.pending_graph:
            result.modified.append(
                FileCandidate.from_scanned(scanned, content_hash, previous=entry)
            )
            return

        if content_hash == entry.content_hash:
            candidate = FileCandidate.from_scanned(scanned, content_hash, previous=entry)
            result.unchanged.append(candidate)
            if not same_meta:
                result.touched.append(candidate)
            return

        status = HashStatus.MISMATCH if same_meta else HashStatus.OK
        if status is HashStatus.MISMATCH:
            logger.warning(
                f"{SCANNER} Hash mismatch with identical size and mtime: {scanned.path}"
            )
        result.modified.append(
            FileCandidate.from_scanned(scanned, content_hash, previous=entry, hash_status=status)
        )


def detect_changes(
    scan: ScanResult,
    state_reader: StateReader,
    verify_hashes: bool = False,
) -> ChangeSet:
    """Convenience function to classify a scan."""
    return ChangeDetector(state_reader, verify_hashes=verify_hashes).detect(scan)


__all__ = [
    "StateReader",
    "FileCandidate",
    "DetectionError",
    "ChangeSet",
    "ChangeDetector",
    "detect_changes",
]
