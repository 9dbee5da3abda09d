# graphweave/ingest/state/__init__.py
"""
Persisted per-file index.
"""

from .manager import FileIndexStateManager
from .schema import ChunkRef, FileIndexEntry, FileIndexState, HashStatus

__all__ = [
    "FileIndexStateManager",
    "FileIndexState",
    "FileIndexEntry",
    "ChunkRef",
    "HashStatus",
]
