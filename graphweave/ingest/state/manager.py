# graphweave/ingest/state/manager.py
"""
FileIndexStateManager: load, mutate and persist the file index.

The state file is rewritten atomically (temp file in the same directory,
then os.replace) so a crash mid-save never leaves a truncated index.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from graphweave.exceptions import StateError
from graphweave.ingest.state.schema import (
    ChunkRef,
    FileIndexEntry,
    FileIndexState,
    HashStatus,
    utcnow,
)
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import STATE

logger = get_logger(__name__)


class FileIndexStateManager:
    """
    Owns the persisted FileIndexState.

    Usage:
        manager = FileIndexStateManager(root / ".graphweave" / "file-index.json")
        manager.load()
        entry = manager.get_entry("src/util.ts")
        manager.commit(entry.model_copy(update={"pending_graph": False}))
        manager.save()
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._state: Optional[FileIndexState] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state(self) -> FileIndexState:
        if self._state is None:
            raise StateError("State not loaded. Call load() first.")
        return self._state

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, root: str | None = None) -> FileIndexState:
        """Load state from disk. A missing file yields an empty index."""
        if not self._path.exists():
            logger.debug(f"{STATE} No index at {self._path}, starting empty")
            self._state = FileIndexState(root=root)
            return self._state

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            self._state = FileIndexState.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise StateError(f"Cannot read file index {self._path}: {exc}") from exc

        if root is not None and self._state.root is None:
            self._state.root = root

        logger.debug(f"{STATE} Loaded {len(self._state.files)} entries from {self._path}")
        return self._state

    def save(self) -> None:
        state = self.state
        state.updated_at = utcnow()
        payload = state.model_dump_json(indent=2)

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StateError(f"Cannot write file index {self._path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entry(self, path: str) -> Optional[FileIndexEntry]:
        return self.state.get_entry(path)

    def entries(self) -> Dict[str, FileIndexEntry]:
        return dict(self.state.files)

    def active_entries(self) -> Dict[str, FileIndexEntry]:
        return {p: e for p, e in self.state.files.items() if e.is_active()}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def commit(self, entry: FileIndexEntry) -> None:
        """Insert or replace the entry for entry.path."""
        self.state.files[entry.path] = entry

    def mark_pending(
        self,
        path: str,
        *,
        size_bytes: int,
        mtime_epoch: float,
        content_hash: Optional[str],
        language: Optional[str],
    ) -> FileIndexEntry:
        """
        Flag a file as having uncommitted graph work.

        Keeps the previous content hash and chunk list so the previous
        chunks can still be diffed and tombstoned; only the pending flag and
        tombstone fields change.
        """
        existing = self.get_entry(path)
        if existing is None or existing.is_deleted:
            entry = FileIndexEntry(
                path=path,
                size_bytes=size_bytes,
                mtime_epoch=mtime_epoch,
                content_hash=content_hash,
                language=language,
                pending_graph=True,
            )
        else:
            entry = existing.model_copy(update={"pending_graph": True, "available": True})
        self.commit(entry)
        return entry

    def mark_indexed(
        self,
        path: str,
        *,
        size_bytes: int,
        mtime_epoch: float,
        content_hash: str,
        language: Optional[str],
        chunks: Iterable[ChunkRef],
        hash_status: HashStatus = HashStatus.OK,
        now: Optional[datetime] = None,
    ) -> FileIndexEntry:
        """Final commit of a successfully processed file."""
        now = now or utcnow()
        entry = FileIndexEntry(
            path=path,
            available=True,
            is_deleted=False,
            size_bytes=size_bytes,
            mtime_epoch=mtime_epoch,
            content_hash=content_hash,
            hash_status=hash_status,
            last_verified_at=now,
            language=language,
            last_indexed_at=now,
            pending_graph=False,
            chunks=list(chunks),
        )
        self.commit(entry)
        return entry

    def touch(
        self,
        path: str,
        *,
        size_bytes: int,
        mtime_epoch: float,
        now: Optional[datetime] = None,
    ) -> Optional[FileIndexEntry]:
        """Refresh size/mtime of an unchanged file whose hash was re-verified."""
        existing = self.get_entry(path)
        if existing is None:
            return None
        entry = existing.model_copy(
            update={
                "size_bytes": size_bytes,
                "mtime_epoch": mtime_epoch,
                "hash_status": HashStatus.OK,
                "last_verified_at": now or utcnow(),
            }
        )
        self.commit(entry)
        return entry

    def mark_deleted(self, path: str, now: Optional[datetime] = None) -> Optional[FileIndexEntry]:
        """Tombstone an entry. Its chunk list is dropped."""
        existing = self.get_entry(path)
        if existing is None:
            return None
        entry = existing.model_copy(
            update={
                "available": False,
                "is_deleted": True,
                "pending_graph": False,
                "deleted_at": now or utcnow(),
                "chunks": [],
            }
        )
        self.commit(entry)
        return entry

    def remove(self, path: str) -> Optional[FileIndexEntry]:
        return self.state.files.pop(path, None)

    def purge_expired(self, retention_days: int, now: Optional[datetime] = None) -> List[str]:
        """Physically drop tombstones older than the retention window."""
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        expired = [
            path
            for path, entry in self.state.files.items()
            if entry.is_deleted and entry.deleted_at is not None and entry.deleted_at <= cutoff
        ]
        for path in expired:
            del self.state.files[path]
        if expired:
            logger.info(f"{STATE} Purged {len(expired)} expired tombstones")
        return expired


__all__ = ["FileIndexStateManager"]
