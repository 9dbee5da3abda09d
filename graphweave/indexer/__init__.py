# graphweave/indexer/__init__.py
from .engine import ChunkDiff, IncrementalIndexer
from .lock import WorkspaceLock
from .stats import ErrorKind, IndexingError, IndexingRunStats, RunAccumulator, RunStatus

__all__ = [
    "IncrementalIndexer",
    "ChunkDiff",
    "IndexingRunStats",
    "IndexingError",
    "ErrorKind",
    "RunStatus",
    "RunAccumulator",
    "WorkspaceLock",
]
