# graphweave/graph/integration.py
"""
GraphIntegrationService: idempotent merge of extracted facts into the graph.

For each chunk's extraction:
1. Every entity maps to a content-derived node id. If the node already has
   a recorded mention it is linked, otherwise it is created. Either way the
   node is never created twice.
2. Every inferred or candidate relationship becomes an edge carrying
   confidence, context, discovered_in and discovered_at. Relationship
   edges are not merged across chunks. A relationship whose target is the
   entity itself (imports, exports, calls, type uses) is attributed to the
   chunk's file node instead, pointing at the typed target node.
3. `mentioned_in` (entity → chunk) and `mentions` (chunk → entity) edges
   are added for every entity, new or linked.

Chunk and file nodes are written first so mentions never dangle.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.ingest.entities.models import (
    DEFINITION_KINDS,
    EntityKind,
    NormalizedEntity,
    RawEntity,
    RelationKind,
)
from graphweave.ingest.hashing import edge_id, node_id
from graphweave.ingest.state.schema import utcnow
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import GRAPH
from graphweave.ports import (
    CandidateRelationship,
    ChunkExtraction,
    GraphNode,
    GraphRelationship,
    GraphStorePort,
)

logger = get_logger(__name__)

CHUNK_NODE = "chunk"
FILE_NODE = "file"

MENTIONED_IN = "mentioned_in"
MENTIONS = "mentions"
CONTAINS = "contains"
DEFINED_IN = "defined_in"

MAX_CODE_MATCHES = 50
DEFINED_IN_CONFIDENCE = 0.9

# Node type used for a relationship target that is not itself an entity in the chunk
TARGET_TYPE_BY_RELATION: Dict[RelationKind, str] = {
    RelationKind.IMPORTS: "module",
    RelationKind.EXPORTS: EntityKind.EXPORT.value,
    RelationKind.CALLS: EntityKind.FUNCTION.value,
    RelationKind.EXTENDS: EntityKind.CLASS.value,
    RelationKind.IMPLEMENTS: EntityKind.INTERFACE.value,
    RelationKind.USES: EntityKind.TYPE.value,
}
FALLBACK_NODE_TYPE = "entity"

_GENERIC_SUFFIX_RE = re.compile(r"<.*?>$")
_QUALIFIER_RE = re.compile(r"[.#:]")


def entity_node_type(kind: EntityKind) -> str:
    return "module" if kind is EntityKind.IMPORT else kind.value


def entity_node_id(entity: RawEntity) -> str:
    """Content-derived node id. Never depends on the file the entity came from."""
    label = getattr(entity, "normalized_name", "") or entity.name
    return node_id(entity_node_type(entity.kind), label)


def file_node_id(path: str) -> str:
    return node_id(FILE_NODE, path)


def normalize_code_label(label: str) -> str:
    """'ns.Repo<T>' → 'repo', 'Foo#bar' → 'bar'."""
    label = _GENERIC_SUFFIX_RE.sub("", label.strip())
    return _QUALIFIER_RE.split(label)[-1].strip().lower()


def chunk_node(chunk: DocumentChunk) -> GraphNode:
    meta = chunk.metadata
    label = meta.symbol_name or meta.heading or meta.file_path or chunk.document_id
    return GraphNode(
        id=chunk.id,
        type=CHUNK_NODE,
        label=label,
        properties={
            "file_path": meta.file_path or chunk.document_id,
            "document_id": chunk.document_id,
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
            "start_line": meta.start_line,
            "end_line": meta.end_line,
            "chunk_type": meta.chunk_type,
            "language": meta.language,
            "symbol_name": meta.symbol_name,
            "symbol_kind": meta.symbol_kind,
            "heading": meta.heading,
        },
    )


def _chunk_context(chunk: DocumentChunk) -> str:
    meta = chunk.metadata
    where = meta.file_path or chunk.document_id
    if meta.start_line is not None:
        where = f"{where}:{meta.start_line}-{meta.end_line}"
    return where


@dataclass
class IntegrationStats:
    chunks: int = 0
    nodes_created: int = 0
    nodes_linked: int = 0
    placeholder_nodes: int = 0
    mention_edges: int = 0
    relationship_edges: int = 0
    defined_in_edges: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "IntegrationStats") -> None:
        self.chunks += other.chunks
        self.nodes_created += other.nodes_created
        self.nodes_linked += other.nodes_linked
        self.placeholder_nodes += other.placeholder_nodes
        self.mention_edges += other.mention_edges
        self.relationship_edges += other.relationship_edges
        self.defined_in_edges += other.defined_in_edges
        self.errors.extend(other.errors)


class GraphIntegrationService:
    """
    Writes chunks, entities and relationships through a GraphStorePort.

    Usage:
        service = GraphIntegrationService(graph_store)
        stats = await service.integrate(chunks, extractions)
        await service.link_entities_to_code(entities)
    """

    def __init__(self, store: GraphStorePort) -> None:
        self._store = store

    @property
    def store(self) -> GraphStorePort:
        return self._store

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    async def integrate(
        self,
        chunks: Sequence[DocumentChunk],
        extractions: Sequence[ChunkExtraction],
        *,
        discovered_at: Optional[datetime] = None,
    ) -> IntegrationStats:
        stats = IntegrationStats(chunks=len(chunks))
        timestamp = (discovered_at or utcnow()).isoformat()
        by_id = {c.id: c for c in chunks}

        await self._write_chunks(chunks)

        known: Dict[str, str] = {}
        for extraction in extractions:
            chunk = by_id.get(extraction.chunk_id)
            if chunk is None:
                message = f"extraction references unknown chunk {extraction.chunk_id}"
                logger.warning(f"{GRAPH} {message}")
                stats.errors.append(message)
                continue
            await self._integrate_chunk(chunk, extraction, timestamp, known, stats)

        logger.debug(
            f"{GRAPH} Integrated {stats.chunks} chunks: created={stats.nodes_created}, "
            f"linked={stats.nodes_linked}, relationships={stats.relationship_edges}"
        )
        return stats

    async def _write_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        nodes: Dict[str, GraphNode] = {}
        edges: List[GraphRelationship] = []
        for chunk in chunks:
            cnode = chunk_node(chunk)
            path = cnode.properties["file_path"]
            fid = file_node_id(path)
            nodes.setdefault(fid, GraphNode(id=fid, type=FILE_NODE, label=path, properties={"path": path}))
            nodes[cnode.id] = cnode
            edges.append(
                GraphRelationship(id=edge_id(fid, cnode.id, CONTAINS), source=fid, target=cnode.id, type=CONTAINS)
            )
        await self._store.create_nodes(list(nodes.values()))
        await self._store.create_relationships(edges)

    async def _integrate_chunk(
        self,
        chunk: DocumentChunk,
        extraction: ChunkExtraction,
        timestamp: str,
        known: Dict[str, str],
        stats: IntegrationStats,
    ) -> None:
        context = _chunk_context(chunk)
        names: Dict[str, str] = {}
        edges: List[GraphRelationship] = []

        for entity in extraction.entities:
            nid = entity_node_id(entity)
            try:
                created = await self._create_or_link(entity, nid, known)
            except Exception as exc:
                logger.warning(f"{GRAPH} Skipping entity {entity.name!r} in {context}: {exc}")
                stats.errors.append(f"{entity.name}: {exc}")
                continue

            if created:
                stats.nodes_created += 1
            else:
                stats.nodes_linked += 1

            names.setdefault(entity.name, nid)
            if entity.normalized_name:
                names.setdefault(entity.normalized_name, nid)

            edges.append(
                GraphRelationship(
                    id=edge_id(nid, chunk.id, MENTIONED_IN),
                    source=nid,
                    target=chunk.id,
                    type=MENTIONED_IN,
                    properties={
                        "confidence": entity.confidence,
                        "context": context,
                        "entity_type": entity.kind.value,
                    },
                )
            )
            edges.append(
                GraphRelationship(
                    id=edge_id(chunk.id, nid, MENTIONS),
                    source=chunk.id,
                    target=nid,
                    type=MENTIONS,
                )
            )
            stats.mention_edges += 2

        file_id = file_node_id(chunk.metadata.file_path or chunk.document_id)
        for entity in extraction.entities:
            source = names.get(entity.name)
            if source is None:
                continue
            for rel in entity.relationships:
                if rel.kind is not RelationKind.REFERENCES and rel.target in (entity.name, entity.normalized_name):
                    # import/export/call/type_ref entities name their own target
                    node_type = TARGET_TYPE_BY_RELATION.get(rel.kind, FALLBACK_NODE_TYPE)
                    target = await self._placeholder(rel.target, node_type, known, stats)
                    edges.append(
                        self._relationship_edge(
                            file_id, target, rel.kind, rel.confidence, rel.evidence or context, chunk.id, timestamp
                        )
                    )
                    continue
                target = await self._resolve_target(rel.target, rel.kind, names, known, stats)
                edges.append(
                    self._relationship_edge(
                        source, target, rel.kind, rel.confidence, rel.evidence or context, chunk.id, timestamp
                    )
                )

        for candidate in extraction.relationships:
            source = names.get(candidate.source)
            if source is None:
                source = await self._placeholder(candidate.source, FALLBACK_NODE_TYPE, known, stats)
            target = await self._resolve_target(candidate.target, candidate.kind, names, known, stats)
            edges.append(
                self._relationship_edge(
                    source,
                    target,
                    candidate.kind,
                    candidate.confidence,
                    candidate.context or context,
                    chunk.id,
                    timestamp,
                )
            )

        stats.relationship_edges += sum(1 for e in edges if e.type not in (MENTIONED_IN, MENTIONS))
        if edges:
            await self._store.create_relationships(edges)

    async def _create_or_link(self, entity: NormalizedEntity, nid: str, known: Dict[str, str]) -> bool:
        """Create the entity node unless it already has a recorded mention. True if created."""
        if known.get(nid) == "entity":
            return False
        related = await self._store.get_related_chunks([nid], 1)
        known[nid] = "entity"
        if related:
            return False
        await self._store.create_nodes([self._entity_node(entity, nid)])
        return True

    @staticmethod
    def _entity_node(entity: NormalizedEntity, nid: str) -> GraphNode:
        props = {
            "name": entity.name,
            "kind": entity.kind.value,
            "category": entity.category.value,
            "confidence": getattr(entity, "confidence", entity.relevance_score),
        }
        if entity.source:
            props["source"] = entity.source
        if entity.package_info is not None:
            props["package"] = entity.package_info.name
            props["package_version"] = entity.package_info.version
            props["package_manager"] = entity.package_info.manager
            props["dev_dependency"] = entity.package_info.is_dev_dependency
        signature = getattr(entity, "signature", None)
        if signature:
            props["signature"] = signature
        documentation = getattr(entity, "documentation", None)
        if documentation:
            props["documentation"] = documentation
        return GraphNode(
            id=nid,
            type=entity_node_type(entity.kind),
            label=entity.normalized_name or entity.name,
            properties=props,
        )

    async def _resolve_target(
        self,
        target: str,
        kind: RelationKind,
        names: Dict[str, str],
        known: Dict[str, str],
        stats: IntegrationStats,
    ) -> str:
        if kind is RelationKind.REFERENCES:
            return target
        if target in names:
            return names[target]
        return await self._placeholder(
            target, TARGET_TYPE_BY_RELATION.get(kind, FALLBACK_NODE_TYPE), known, stats
        )

    async def _placeholder(self, label: str, node_type: str, known: Dict[str, str], stats: IntegrationStats) -> str:
        nid = node_id(node_type, label)
        if nid in known:
            return nid
        if not await self._store.has_node(nid):
            await self._store.create_nodes(
                [GraphNode(id=nid, type=node_type, label=label, properties={"name": label, "placeholder": True})]
            )
            stats.placeholder_nodes += 1
        known[nid] = "placeholder"
        return nid

    @staticmethod
    def _relationship_edge(
        source: str,
        target: str,
        kind: RelationKind,
        confidence: float,
        context: str,
        chunk_id: str,
        timestamp: str,
    ) -> GraphRelationship:
        return GraphRelationship(
            id=edge_id(source, target, kind.value),
            source=source,
            target=target,
            type=kind.value,
            properties={
                "confidence": confidence,
                "context": context,
                "discovered_in": chunk_id,
                "discovered_at": timestamp,
            },
        )

    # ------------------------------------------------------------------
    # Definition linking
    # ------------------------------------------------------------------

    async def link_entities_to_code(self, entities: Iterable[RawEntity]) -> IntegrationStats:
        """
        Create `defined_in` edges from definition entities to code chunks
        whose label matches, at most MAX_CODE_MATCHES per entity.
        """
        stats = IntegrationStats()
        targets = [e for e in entities if e.kind in DEFINITION_KINDS]
        if not targets:
            return stats

        index = await self._code_chunk_index(stats)
        for entity in targets:
            key = normalize_code_label(entity.name)
            matches = sorted(set(index.get(key, ())))[:MAX_CODE_MATCHES]
            if not matches:
                continue
            nid = entity_node_id(entity)
            edges = [
                GraphRelationship(
                    id=edge_id(nid, chunk_id, DEFINED_IN),
                    source=nid,
                    target=chunk_id,
                    type=DEFINED_IN,
                    properties={"confidence": DEFINED_IN_CONFIDENCE},
                )
                for chunk_id in matches
            ]
            try:
                await self._store.create_relationships(edges)
            except Exception as exc:
                logger.warning(f"{GRAPH} Cannot link {entity.name!r} to code: {exc}")
                stats.errors.append(f"{entity.name}: {exc}")
                continue
            stats.defined_in_edges += len(edges)

        return stats

    async def _code_chunk_index(self, stats: IntegrationStats) -> Dict[str, List[str]]:
        index: Dict[str, List[str]] = {}
        try:
            files = await self._store.list_all_files()
        except Exception as exc:
            logger.warning(f"{GRAPH} Cannot list files for code linking: {exc}")
            stats.errors.append(f"list_all_files: {exc}")
            return index

        for path in files:
            try:
                nodes = await self._store.get_file_chunks(path)
            except Exception as exc:
                logger.warning(f"{GRAPH} Cannot read chunks of {path}: {exc}")
                stats.errors.append(f"{path}: {exc}")
                continue
            for node in nodes:
                if node.properties.get("chunk_type") != "code" or not node.properties.get("symbol_name"):
                    continue
                index.setdefault(normalize_code_label(node.label), []).append(node.id)
        return index

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_chunks(self, chunk_ids: Sequence[str]) -> None:
        """Drop chunk nodes and every mention or relationship discovered in them."""
        if chunk_ids:
            await self._store.delete_chunks(list(chunk_ids))


class GraphEntityLookup:
    """
    Discovery callable for the enrichment stage.

    Resolves a referenced name to an existing definition node that still
    has at least one chunk attached.
    """

    CANDIDATE_TYPES = tuple(k.value for k in sorted(DEFINITION_KINDS, key=lambda k: k.value)) + (
        EntityKind.METHOD.value,
    )

    def __init__(self, store: GraphStorePort) -> None:
        self._store = store

    async def __call__(self, entity: NormalizedEntity) -> Optional[str]:
        for node_type in self.CANDIDATE_TYPES:
            nid = node_id(node_type, entity.name)
            if await self._store.has_node(nid) and await self._store.get_related_chunks([nid], 1):
                return nid
        return None


__all__ = [
    "CHUNK_NODE",
    "FILE_NODE",
    "MENTIONED_IN",
    "MENTIONS",
    "CONTAINS",
    "DEFINED_IN",
    "MAX_CODE_MATCHES",
    "IntegrationStats",
    "GraphIntegrationService",
    "GraphEntityLookup",
    "entity_node_id",
    "entity_node_type",
    "file_node_id",
    "normalize_code_label",
    "chunk_node",
]
