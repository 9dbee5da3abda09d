# graphweave/indexer/lock.py
"""
WorkspaceLock: at most one run per workspace state file.

Two layers guard a workspace:
- a registry of claimed lock paths, so indexers sharing one process see
  each other;
- an advisory lock on a file next to the state file (fcntl on POSIX,
  msvcrt on Windows), so separate processes see each other too.

Acquisition never waits. A held lock raises IndexerBusyError.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO, Optional, Set

try:
    import fcntl  # POSIX systems

    HAVE_FCNTL = True
except ImportError:
    HAVE_FCNTL = False

try:
    import msvcrt  # Windows

    HAVE_MSVCRT = True
except ImportError:
    HAVE_MSVCRT = False

from graphweave.exceptions import IndexerBusyError, StateError
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import INDEXER

logger = get_logger(__name__)

_claimed: Set[Path] = set()


def lock_path_for(state_path: Path) -> Path:
    return state_path.parent / f"{state_path.name}.lock"


class WorkspaceLock:
    """
    Non-blocking exclusive lock keyed by the state file path.

    Usage:
        with WorkspaceLock(state_path):
            ...  # run
    """

    def __init__(self, state_path: Path) -> None:
        self.path = lock_path_for(Path(state_path).resolve())
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self.path in _claimed:
            raise IndexerBusyError(f"Workspace is already being indexed ({self.path})")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.path, "a+")
        except OSError as exc:
            raise StateError(f"Cannot open lock file {self.path}: {exc}") from exc

        try:
            _lock(handle)
        except OSError as exc:
            handle.close()
            raise IndexerBusyError(f"Workspace is locked by another process ({self.path})") from exc

        _claimed.add(self.path)
        self._handle = handle
        logger.debug(f"{INDEXER} Acquired {self.path}")

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        _claimed.discard(self.path)
        try:
            _unlock(handle)
        finally:
            handle.close()
        logger.debug(f"{INDEXER} Released {self.path}")

    def __enter__(self) -> "WorkspaceLock":
        self.acquire()
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb) -> None:
        self.release()


def _lock(handle: IO[str]) -> None:
    if HAVE_FCNTL:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    elif HAVE_MSVCRT:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)


def _unlock(handle: IO[str]) -> None:
    if HAVE_FCNTL:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    elif HAVE_MSVCRT:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


__all__ = ["WorkspaceLock", "lock_path_for"]
