# graphweave/graph/__init__.py
"""
Graph integration and the in-memory reference store.
"""

from .integration import (
    GraphEntityLookup,
    GraphIntegrationService,
    IntegrationStats,
    entity_node_id,
    normalize_code_label,
)
from .memory import MemoryGraphStore

__all__ = [
    "GraphIntegrationService",
    "GraphEntityLookup",
    "IntegrationStats",
    "MemoryGraphStore",
    "entity_node_id",
    "normalize_code_label",
]
