# tests/test_change_detector.py
"""
Tests for graphweave.ingest.diff: scanning and change classification.

Key tests verify that:
1. Size+mtime is a pre-filter; the hash decides
2. Pending entries are always re-processed
3. Unreadable files are never treated as deleted
"""

import os
from pathlib import Path
from typing import Dict, Optional

import pytest

from graphweave.config import IndexerConfig
from graphweave.ingest.diff import (
    ChangeDetector,
    FileScanner,
    ScanError,
    ScannedFile,
    ScanResult,
    detect_changes,
    matches_glob,
    scan_directory,
)
from graphweave.ingest.state import FileIndexEntry, HashStatus


class MockStateReader:
    """In-memory state reader."""

    def __init__(self, entries: Dict[str, FileIndexEntry] | None = None):
        self._entries = entries or {}

    def get_entry(self, path: str) -> Optional[FileIndexEntry]:
        return self._entries.get(path)

    def active_entries(self) -> Dict[str, FileIndexEntry]:
        return {p: e for p, e in self._entries.items() if e.is_active()}


class CountingHasher:
    """Hasher returning canned digests and recording which files were read."""

    def __init__(self, digests: Dict[str, str], failing: tuple = ()):
        self.digests = digests
        self.failing = failing
        self.calls = []

    def __call__(self, abs_path: str) -> str:
        self.calls.append(abs_path)
        if abs_path in self.failing:
            raise PermissionError(f"denied: {abs_path}")
        return self.digests[abs_path]


def scanned(path: str, size: int = 10, mtime: float = 100.0) -> ScannedFile:
    return ScannedFile(path=path, abs_path=path, size_bytes=size, mtime_epoch=mtime)


def entry(path: str, content_hash: str, size: int = 10, mtime: float = 100.0, **kw) -> FileIndexEntry:
    return FileIndexEntry(
        path=path, size_bytes=size, mtime_epoch=mtime, content_hash=content_hash, **kw
    )


class TestGlobMatching:
    """Tests for matches_glob."""

    @pytest.mark.parametrize(
        "path, pattern, expected",
        [
            ("src/a.ts", "**/*.ts", True),
            ("a.ts", "**/*.ts", True),
            ("src/deep/x/a.ts", "**/*.ts", True),
            ("src/a.tsx", "**/*.ts", False),
            ("node_modules/", "**/node_modules/**", True),
            ("pkg/node_modules/", "**/node_modules/**", True),
        ],
    )
    def test_patterns(self, path, pattern, expected):
        assert matches_glob(path, pattern) is expected


class TestFileScanner:
    """Tests for FileScanner on a real directory."""

    def test_include_exclude(self, tmp_path: Path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.ts").write_text("export const a = 1\n")
        (tmp_path / "src" / "b.bin").write_bytes(b"\x00")
        (tmp_path / "node_modules" / "lib").mkdir(parents=True)
        (tmp_path / "node_modules" / "lib" / "c.ts").write_text("x")
        (tmp_path / "README.md").write_text("# hi\n")

        result = FileScanner(IndexerConfig()).scan(tmp_path)

        assert [f.path for f in result.files] == ["README.md", "src/a.ts"]
        assert result.errors == []

    def test_oversized_files_skipped(self, tmp_path: Path):
        (tmp_path / "big.md").write_text("x" * 100)
        (tmp_path / "small.md").write_text("x")

        result = FileScanner(max_file_bytes=10).scan(tmp_path)

        assert result.paths == {"small.md"}
        assert result.skipped_too_large == ["big.md"]

    def test_missing_root(self, tmp_path: Path):
        result = FileScanner().scan(tmp_path / "missing")
        assert result.files == []
        assert len(result.errors) == 1


class TestClassification:
    """Tests for ChangeDetector.detect."""

    def test_four_way_classification(self):
        state = MockStateReader(
            {
                "a.ts": entry("a.ts", "ha"),
                "b.ts": entry("b.ts", "hb"),
                "d.ts": entry("d.ts", "hd"),
            }
        )
        hasher = CountingHasher({"b.ts": "hb-new", "c.ts": "hc"})
        scan = ScanResult(
            root="/ws",
            files=[scanned("a.ts"), scanned("b.ts", size=11), scanned("c.ts")],
        )

        changes = ChangeDetector(state, hasher=hasher).detect(scan)

        assert [c.path for c in changes.unchanged] == ["a.ts"]
        assert [c.path for c in changes.modified] == ["b.ts"]
        assert [c.path for c in changes.new] == ["c.ts"]
        assert changes.deleted == ["d.ts"]
        assert [c.path for c in changes.to_process] == ["b.ts", "c.ts"]
        assert "a.ts" not in hasher.calls

    def test_touched_when_hash_matches(self):
        state = MockStateReader({"a.ts": entry("a.ts", "ha")})
        hasher = CountingHasher({"a.ts": "ha"})
        scan = ScanResult(root="/ws", files=[scanned("a.ts", mtime=200.0)])

        changes = ChangeDetector(state, hasher=hasher).detect(scan)

        assert [c.path for c in changes.unchanged] == ["a.ts"]
        assert [c.path for c in changes.touched] == ["a.ts"]
        assert changes.modified == []

    def test_pending_entry_is_modified(self):
        state = MockStateReader({"a.ts": entry("a.ts", "ha", pending_graph=True)})
        hasher = CountingHasher({"a.ts": "ha"})
        scan = ScanResult(root="/ws", files=[scanned("a.ts")])

        changes = ChangeDetector(state, hasher=hasher).detect(scan)

        assert [c.path for c in changes.modified] == ["a.ts"]

    def test_verify_hashes_detects_mismatch(self):
        state = MockStateReader({"a.ts": entry("a.ts", "ha")})
        hasher = CountingHasher({"a.ts": "tampered"})
        scan = ScanResult(root="/ws", files=[scanned("a.ts")])

        changes = ChangeDetector(state, verify_hashes=True, hasher=hasher).detect(scan)

        assert [c.path for c in changes.modified] == ["a.ts"]
        assert changes.modified[0].hash_status == HashStatus.MISMATCH

    def test_tombstoned_path_reappears_as_new(self):
        state = MockStateReader(
            {"a.ts": entry("a.ts", "ha", is_deleted=True, available=False)}
        )
        hasher = CountingHasher({"a.ts": "ha"})
        scan = ScanResult(root="/ws", files=[scanned("a.ts")])

        changes = ChangeDetector(state, hasher=hasher).detect(scan)

        assert [c.path for c in changes.new] == ["a.ts"]
        assert changes.deleted == []

    def test_unreadable_known_file_is_unchanged(self):
        state = MockStateReader({"a.ts": entry("a.ts", "ha")})
        hasher = CountingHasher({}, failing=("a.ts",))
        scan = ScanResult(root="/ws", files=[scanned("a.ts", size=99)])

        changes = ChangeDetector(state, hasher=hasher).detect(scan)

        assert [c.path for c in changes.unchanged] == ["a.ts"]
        assert changes.unchanged[0].hash_status == HashStatus.UNKNOWN
        assert changes.deleted == []
        assert [e.path for e in changes.errors] == ["a.ts"]

    def test_unreadable_unknown_file_is_unclassified(self):
        hasher = CountingHasher({}, failing=("x.ts",))
        scan = ScanResult(root="/ws", files=[scanned("x.ts")])

        changes = ChangeDetector(MockStateReader(), hasher=hasher).detect(scan)

        assert changes.new == [] and changes.unchanged == []
        assert len(changes.errors) == 1

    def test_scan_error_protects_from_deletion(self):
        state = MockStateReader({"a.ts": entry("a.ts", "ha")})
        scan = ScanResult(root="/ws", errors=[ScanError(path="a.ts", message="EACCES")])

        changes = ChangeDetector(state, hasher=CountingHasher({})).detect(scan)

        assert changes.deleted == []
        assert changes.summary == "new=0, modified=0, unchanged=0, deleted=0, errors=1"

    def test_real_files_hash_once(self, tmp_path: Path):
        path = tmp_path / "a.md"
        path.write_text("hello")
        stat = os.stat(path)
        file = ScannedFile(
            path="a.md", abs_path=str(path), size_bytes=stat.st_size, mtime_epoch=stat.st_mtime
        )

        changes = ChangeDetector(MockStateReader()).detect(ScanResult(root=str(tmp_path), files=[file]))

        assert changes.new[0].content_hash is not None


class TestConvenienceFunctions:
    def test_scan_then_detect(self, tmp_path: Path):
        (tmp_path / "a.md").write_text("hello")
        (tmp_path / "b.md").write_text("world")
        state = MockStateReader({"gone.md": entry("gone.md", "hx")})

        changes = detect_changes(scan_directory(tmp_path), state)

        assert [c.path for c in changes.new] == ["a.md", "b.md"]
        assert changes.deleted == ["gone.md"]
