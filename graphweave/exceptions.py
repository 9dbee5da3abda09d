# graphweave/exceptions.py
"""
Exception hierarchy.

Only ConfigError and IndexerBusyError ever escape IncrementalIndexer; every
other failure is recorded per file in IndexingRunStats.errors.
"""

from __future__ import annotations


class GraphweaveError(Exception):
    """Base class for all graphweave errors."""


class ConfigError(GraphweaveError):
    """Invalid configuration or missing required port. Fatal at run start."""


class IndexerBusyError(GraphweaveError):
    """A run is already in progress for this indexer."""


class StateError(GraphweaveError):
    """The persisted file index cannot be read or written."""


class StructuralError(GraphweaveError):
    """A malformed unit (chunk, document) that cannot be processed."""


class EmbeddingError(GraphweaveError):
    """The embedding port failed after all retries."""


class ExtractionError(GraphweaveError):
    """The entity extraction port failed after all retries."""


class VectorStoreError(GraphweaveError):
    """A vector store call failed."""


__all__ = [
    "GraphweaveError",
    "ConfigError",
    "IndexerBusyError",
    "StateError",
    "StructuralError",
    "EmbeddingError",
    "ExtractionError",
    "VectorStoreError",
]
