# graphweave/ports.py
"""
Ports: the only way the pipeline reaches the outside world.

- EmbeddingPort: text → vector
- EntityExtractionPort: chunk → raw entities + candidate relationships
- GraphStorePort: node/edge writes and the minimal query surface
- VectorStorePort: chunk records keyed by chunk id, with tombstones

All ports are async. Reference implementations live in graphweave.llm,
graphweave.graph.memory and graphweave.vector_db.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.ingest.entities.models import EnrichedEntity, RawEntity, RelationKind

# =============================================================================
# Graph records
# =============================================================================


@dataclass(frozen=True)
class GraphNode:
    """A node with a content-derived id."""

    id: str
    type: str
    label: str
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GraphRelationship:
    """
    A typed edge.

    `id` is content-derived from (source, target, type). Stores key edges by
    (id, discovered_in): the same fact found again in the same chunk is one
    edge, the same fact found in another chunk is a second edge.
    """

    id: str
    source: str
    target: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def instance_key(self) -> Tuple[str, str]:
        return self.id, str(self.properties.get("discovered_in") or "")


# =============================================================================
# Extraction records
# =============================================================================


@dataclass(frozen=True)
class CandidateRelationship:
    """A relationship proposed by an extractor, between entity names."""

    source: str
    target: str
    kind: RelationKind
    confidence: float = 1.0
    context: Optional[str] = None


@dataclass(frozen=True)
class ExtractionResult:
    """What an EntityExtractionPort found in one chunk. Empty is valid."""

    entities: Tuple[RawEntity, ...] = ()
    relationships: Tuple[CandidateRelationship, ...] = ()
    model: Optional[str] = None

    @classmethod
    def empty(cls, model: Optional[str] = None) -> "ExtractionResult":
        return cls(model=model)

    @property
    def is_empty(self) -> bool:
        return not self.entities and not self.relationships


@dataclass(frozen=True)
class ChunkExtraction:
    """Filtered entities for one chunk, ready for graph integration."""

    chunk_id: str
    entities: Tuple[EnrichedEntity, ...] = ()
    relationships: Tuple[CandidateRelationship, ...] = ()
    model: Optional[str] = None


# =============================================================================
# Ports
# =============================================================================


@runtime_checkable
class EmbeddingPort(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


@runtime_checkable
class EntityExtractionPort(Protocol):
    async def extract(self, chunk: DocumentChunk) -> ExtractionResult:
        ...


@runtime_checkable
class GraphStorePort(Protocol):
    async def create_nodes(self, nodes: Sequence[GraphNode]) -> None:
        ...

    async def create_relationships(self, edges: Sequence[GraphRelationship]) -> None:
        ...

    async def list_all_files(self) -> List[str]:
        ...

    async def get_file_chunks(self, path: str) -> List[GraphNode]:
        ...

    async def get_related_chunks(self, node_ids: Sequence[str], depth: int = 1) -> List[str]:
        ...

    async def has_node(self, node_id: str) -> bool:
        ...

    async def delete_chunks(self, chunk_ids: Sequence[str]) -> None:
        ...


@runtime_checkable
class VectorStorePort(Protocol):
    async def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        ...

    async def delete_chunks(self, chunk_ids: Sequence[str]) -> None:
        ...

    async def mark_deleted(self, chunk_ids: Sequence[str], deleted_at: datetime) -> None:
        ...

    async def purge_deleted(self, before: datetime) -> int:
        ...


__all__ = [
    "GraphNode",
    "GraphRelationship",
    "CandidateRelationship",
    "ExtractionResult",
    "ChunkExtraction",
    "EmbeddingPort",
    "EntityExtractionPort",
    "GraphStorePort",
    "VectorStorePort",
]
