# graphweave/ingest/diff/__init__.py
"""
Change detection for incremental indexing.

Key components:
- Scanner: Walks the workspace and applies include/exclude globs
- ChangeDetector: Classifies files against the persisted file index

Usage:
    from graphweave.ingest.diff import ChangeDetector, FileScanner

    scan = FileScanner(config.indexer).scan("./workspace")
    changes = ChangeDetector(state_manager).detect(scan)
    print(changes.summary)  # "new=3, modified=1, unchanged=40, deleted=0, errors=0"
"""

from .differ import (
    ChangeDetector,
    ChangeSet,
    DetectionError,
    FileCandidate,
    StateReader,
    detect_changes,
)
from .scanner import (
    FileScanner,
    ScanError,
    ScannedFile,
    ScanResult,
    matches_glob,
    scan_directory,
)

__all__ = [
    # Scanner
    "FileScanner",
    "ScannedFile",
    "ScanError",
    "ScanResult",
    "matches_glob",
    "scan_directory",
    # Differ
    "StateReader",
    "FileCandidate",
    "DetectionError",
    "ChangeSet",
    "ChangeDetector",
    "detect_changes",
]
