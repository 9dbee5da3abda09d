# graphweave/ingest/diff/scanner.py
"""
File scanner for incremental indexing.

Walks a workspace deterministically and applies include/exclude globs and a
size limit. The scanner only stats files: hashing is the ChangeDetector's
job, and only happens when size or mtime moved.

Glob semantics (matched against workspace-relative POSIX paths):
- `*` and `?` follow fnmatch and may cross directory separators
- a leading `**/` also matches zero directories, so `**/*.ts` matches
  `index.ts` as well as `src/index.ts`
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, List, Sequence

from graphweave.config.schema import IndexerConfig
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import SCANNER

logger = get_logger(__name__)


def matches_glob(rel_path: str, pattern: str) -> bool:
    """Match a workspace-relative POSIX path against one glob pattern."""
    if fnmatchcase(rel_path, pattern):
        return True
    if pattern.startswith("**/"):
        return matches_glob(rel_path, pattern[3:])
    return False


def matches_any(rel_path: str, patterns: Iterable[str]) -> bool:
    return any(matches_glob(rel_path, p) for p in patterns)


@dataclass(frozen=True)
class ScannedFile:
    """A file found during scanning. Metadata only, no content hash."""

    path: str  # Workspace-relative, POSIX separators
    abs_path: str
    size_bytes: int
    mtime_epoch: float

    @property
    def ext(self) -> str:
        return Path(self.path).suffix.lower()


@dataclass(frozen=True)
class ScanError:
    path: str
    message: str


@dataclass
class ScanResult:
    """Snapshot of one scan. `files` is sorted by path."""

    root: str
    files: List[ScannedFile] = field(default_factory=list)
    errors: List[ScanError] = field(default_factory=list)
    skipped_too_large: List[str] = field(default_factory=list)

    @property
    def paths(self) -> set[str]:
        return {f.path for f in self.files}


class FileScanner:
    """
    Scans a workspace for indexable files.

    Usage:
        scanner = FileScanner(config.indexer)
        result = scanner.scan("./workspace")
        for f in result.files:
            print(f.path, f.size_bytes)
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        *,
        include_patterns: Sequence[str] | None = None,
        exclude_patterns: Sequence[str] | None = None,
        max_file_bytes: int | None = None,
    ) -> None:
        config = config or IndexerConfig()
        self._include = tuple(include_patterns or config.include_patterns)
        self._exclude = tuple(
            exclude_patterns if exclude_patterns is not None else config.exclude_patterns
        )
        self._max_bytes = max_file_bytes or config.max_file_bytes

    def is_excluded(self, rel_path: str) -> bool:
        return matches_any(rel_path, self._exclude)

    def is_included(self, rel_path: str) -> bool:
        return matches_any(rel_path, self._include) and not self.is_excluded(rel_path)

    def scan(self, root: str | Path) -> ScanResult:
        root_path = Path(root).resolve()
        result = ScanResult(root=str(root_path))

        if not root_path.is_dir():
            result.errors.append(ScanError(path=".", message=f"Not a directory: {root_path}"))
            return result

        def on_error(exc: OSError) -> None:
            rel = _relative(root_path, Path(exc.filename)) if exc.filename else "."
            result.errors.append(ScanError(path=rel, message=str(exc)))

        for dirpath, dirnames, filenames in os.walk(root_path, onerror=on_error):
            current = Path(dirpath)
            rel_dir = _relative(root_path, current)

            # Prune excluded directories in place; keep walk order stable
            kept = []
            for name in sorted(dirnames):
                rel = f"{rel_dir}/{name}" if rel_dir != "." else name
                if not self.is_excluded(rel + "/"):
                    kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                rel = f"{rel_dir}/{name}" if rel_dir != "." else name
                if not self.is_included(rel):
                    continue

                abs_path = current / name
                try:
                    stat = abs_path.stat()
                except OSError as exc:
                    result.errors.append(ScanError(path=rel, message=str(exc)))
                    continue

                if stat.st_size > self._max_bytes:
                    result.skipped_too_large.append(rel)
                    continue

                result.files.append(
                    ScannedFile(
                        path=rel,
                        abs_path=str(abs_path),
                        size_bytes=stat.st_size,
                        mtime_epoch=stat.st_mtime,
                    )
                )

        result.files.sort(key=lambda f: f.path)
        logger.info(
            f"{SCANNER} Scanned {root_path}: {len(result.files)} files, "
            f"{len(result.errors)} errors, {len(result.skipped_too_large)} too large"
        )
        return result


def _relative(root: Path, path: Path) -> str:
    rel = path.relative_to(root).as_posix()
    return rel if rel else "."


def scan_directory(root: str | Path, config: IndexerConfig | None = None) -> ScanResult:
    """Convenience function to scan a workspace."""
    return FileScanner(config).scan(root)


__all__ = [
    "matches_glob",
    "matches_any",
    "ScannedFile",
    "ScanError",
    "ScanResult",
    "FileScanner",
    "scan_directory",
]
