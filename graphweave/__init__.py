# graphweave/__init__.py
"""
graphweave - incremental indexing of a workspace into a knowledge graph and
a vector index.

Examples:
    >>> import asyncio
    >>> from graphweave import IncrementalIndexer, GraphweaveConfig
    >>> from graphweave.graph import MemoryGraphStore
    >>> from graphweave.llm import LocalEmbedder, StaticEntityExtractor
    >>> from graphweave.vector_db import MemoryVectorStore
    >>> indexer = IncrementalIndexer(
    ...     GraphweaveConfig(),
    ...     embedder=LocalEmbedder(),
    ...     extractor=StaticEntityExtractor(),
    ...     graph_store=MemoryGraphStore(),
    ...     vector_store=MemoryVectorStore(),
    ... )
    >>> stats = asyncio.run(indexer.index_workspace("./my-repo"))
    >>> print(stats)
"""

from .config import GraphweaveConfig, load_config
from .exceptions import (
    ConfigError,
    GraphweaveError,
    IndexerBusyError,
    StateError,
    StructuralError,
)
from .indexer import IncrementalIndexer, IndexingError, IndexingRunStats, RunStatus

__version__ = "0.1.0"

__all__ = [
    "IncrementalIndexer",
    "IndexingRunStats",
    "IndexingError",
    "RunStatus",
    "GraphweaveConfig",
    "load_config",
    "GraphweaveError",
    "ConfigError",
    "IndexerBusyError",
    "StateError",
    "StructuralError",
    "__version__",
]
