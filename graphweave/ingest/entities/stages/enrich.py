# graphweave/ingest/entities/stages/enrich.py
"""
Stage 4: enrichment.

Adds confidence, signature, documentation and inferred relationships.
This is the only stage that consults external context: an optional async
lookup that reports whether a referenced symbol is already defined in the
graph. A failing lookup lowers confidence and never raises.

Confidence (static evidence score):
    0.5 base
    +0.15 documentation
    +0.10 type annotations
    +0.10 tests
    +0.05 per relationship (max +0.15)
    +0.03 per usage (max +0.10)
    +0.05 exported
    × relevance_score, then the export (×1.2) and occurrence
    (×(1 + log10(n) × 0.1)) boosts, clamped to [0, 1]
"""

from __future__ import annotations

import math
import re
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from graphweave.config.schema import EntityPipelineConfig
from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.ingest.entities.models import (
    CALLABLE_KINDS,
    EnrichedEntity,
    EntityKind,
    InferredRelationship,
    NormalizedEntity,
    RelationKind,
    promote,
)
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import ENTITIES

logger = get_logger(__name__)

EntityLookup = Callable[[NormalizedEntity], Awaitable[Optional[str]]]

CALL_FACTOR = 0.8
USES_FACTOR = 0.8
REFERENCE_CONFIDENCE = 0.85
LOOKUP_FAILURE_PENALTY = 0.9
DOC_CHUNK_TYPES = frozenset({"jsdoc", "docstring", "phpdoc"})
LOOKUP_KINDS = frozenset({EntityKind.CALL, EntityKind.TYPE_REF, EntityKind.EXPORT})

_DECL_PREFIX = r"(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
_DECL_KEYWORDS = r"(?:def|class|function\*?|interface|type|enum|const|let|var)"


def _clamp(value: float) -> float:
    return round(max(0.0, min(1.0, value)), 6)


def base_confidence(entity: NormalizedEntity) -> float:
    """Relevance with the export and multi-occurrence boosts."""
    confidence = entity.relevance_score
    if entity.kind is EntityKind.EXPORT:
        confidence = min(1.0, confidence * 1.2)
    if entity.occurrences > 1:
        confidence = min(1.0, confidence * (1 + math.log10(entity.occurrences) * 0.1))
    return _clamp(confidence)


def static_confidence(
    entity: NormalizedEntity,
    *,
    has_documentation: bool,
    has_type_annotations: bool,
    relationship_count: int,
    usage_count: int,
) -> float:
    score = 0.5
    if has_documentation:
        score += 0.15
    if has_type_annotations:
        score += 0.10
    if entity.metadata.has_tests:
        score += 0.10
    score += min(relationship_count * 0.05, 0.15)
    score += min(usage_count * 0.03, 0.10)
    if entity.kind is EntityKind.EXPORT or entity.metadata.is_exported:
        score += 0.05

    score *= entity.relevance_score
    if entity.kind is EntityKind.EXPORT:
        score *= 1.2
    if entity.occurrences > 1:
        score *= 1 + math.log10(entity.occurrences) * 0.1
    return _clamp(score)


# =============================================================================
# Signatures and documentation
# =============================================================================


def _declaration_re(name: str) -> re.Pattern:
    return re.compile(
        rf"^[ \t]*{_DECL_PREFIX}{_DECL_KEYWORDS}\s+{re.escape(name)}\b[^\n]*", re.MULTILINE
    )


def _chunks_mentioning(name: str, chunks: Sequence[DocumentChunk]) -> List[DocumentChunk]:
    return sorted((c for c in chunks if name in c.content), key=lambda c: (c.start_char, c.id))


def extract_signature(entity: NormalizedEntity, chunks: Sequence[DocumentChunk]) -> Optional[str]:
    if entity.metadata.signature:
        return entity.metadata.signature
    if entity.kind not in CALLABLE_KINDS:
        return None
    pattern = _declaration_re(entity.name)
    for chunk in _chunks_mentioning(entity.name, chunks):
        m = pattern.search(chunk.content)
        if m:
            line = m.group(0).strip()
            return re.sub(r"\s*[{:]\s*$", "", line) if line.endswith(("{", ":")) else line
    return None


_JSDOC_TEMPLATE = r"/\*\*(?P<doc>(?:(?!\*/).)*)\*/\s*{prefix}{keywords}\s+{name}\b"
_PYDOC_TEMPLATE = r"(?:def|class)\s+{name}\b[^\n]*:\s*\n\s*(?P<q>\"\"\"|\'\'\')(?P<doc>.*?)(?P=q)"


def _clean_doc(raw: str) -> str:
    lines = [re.sub(r"^\s*\*\s?", "", line).rstrip() for line in raw.strip().splitlines()]
    return "\n".join(line for line in lines).strip()


def extract_documentation(
    entity: NormalizedEntity, chunks: Sequence[DocumentChunk]
) -> Optional[str]:
    if entity.metadata.documentation:
        return entity.metadata.documentation

    for chunk in chunks:
        if chunk.metadata.symbol_name == entity.name and chunk.metadata.chunk_type in DOC_CHUNK_TYPES:
            return chunk.content.strip()

    name = re.escape(entity.name)
    jsdoc = re.compile(
        _JSDOC_TEMPLATE.format(prefix=_DECL_PREFIX, keywords=_DECL_KEYWORDS, name=name), re.DOTALL
    )
    pydoc = re.compile(_PYDOC_TEMPLATE.format(name=name), re.DOTALL)
    for chunk in _chunks_mentioning(entity.name, chunks):
        for pattern in (jsdoc, pydoc):
            m = pattern.search(chunk.content)
            if m:
                doc = _clean_doc(m.group("doc"))
                if doc:
                    return doc
    return None


def _has_type_annotations(entity: NormalizedEntity, signature: Optional[str]) -> bool:
    if entity.metadata.has_type_annotations:
        return True
    if not signature:
        return False
    params = signature[signature.find("(") :] if "(" in signature else ""
    return ":" in params or "->" in signature


# =============================================================================
# Relationships
# =============================================================================


def _heritage(entity: NormalizedEntity, chunks: Sequence[DocumentChunk]) -> List[InferredRelationship]:
    """extends / implements, from metadata or from declarations in the chunks."""
    extends = set(entity.metadata.extends)
    implements = set(entity.metadata.implements)

    if entity.kind in (EntityKind.CLASS, EntityKind.INTERFACE) and chunks:
        name = re.escape(entity.name)
        class_re = re.compile(
            rf"class\s+{name}\s*(?:<[^>]*>)?\s*(?:extends\s+([\w.]+)(?:<[^>{{]*>)?\s*)?"
            rf"(?:implements\s+([\w.,\s<>]+?))?\s*\{{"
        )
        py_class_re = re.compile(rf"^class\s+{name}\s*\(([^)]*)\)\s*:", re.MULTILINE)
        iface_re = re.compile(rf"interface\s+{name}\s*(?:<[^>]*>)?\s+extends\s+([\w.,\s<>]+?)\s*\{{")
        for chunk in _chunks_mentioning(entity.name, chunks):
            for m in class_re.finditer(chunk.content):
                if m.group(1):
                    extends.add(m.group(1))
                if m.group(2):
                    implements.update(_split_names(m.group(2)))
            for m in py_class_re.finditer(chunk.content):
                extends.update(
                    n for n in _split_names(m.group(1)) if "=" not in n and n != "object"
                )
            for m in iface_re.finditer(chunk.content):
                extends.update(_split_names(m.group(1)))

    rels = [InferredRelationship(t, RelationKind.EXTENDS, 1.0, "declaration") for t in extends]
    rels += [InferredRelationship(t, RelationKind.IMPLEMENTS, 1.0, "declaration") for t in implements]
    return rels


def _split_names(text: str) -> List[str]:
    text = re.sub(r"<[^>]*>", "", text)
    return [part.strip() for part in text.split(",") if part.strip()]


def _usage_calls(
    entity: NormalizedEntity,
    chunks: Sequence[DocumentChunk],
    callable_names: Sequence[str],
) -> List[InferredRelationship]:
    """calls from the entity's own symbol chunks to other known callables."""
    own = [c for c in chunks if c.metadata.symbol_name == entity.name]
    if not own:
        return []
    rels = []
    for target in callable_names:
        if target == entity.name:
            continue
        call_re = re.compile(rf"(?<![\w$.]){re.escape(target)}\s*\(")
        count = sum(len(call_re.findall(c.content)) for c in own)
        if count:
            rels.append(
                InferredRelationship(
                    target, RelationKind.CALLS, round(min(0.7 + count * 0.05, 0.95), 6), "usage"
                )
            )
    return rels


def infer_relationships(
    entity: NormalizedEntity,
    confidence: float,
    chunks: Sequence[DocumentChunk],
    callable_names: Sequence[str],
) -> List[InferredRelationship]:
    evidence = f"line-{entity.line}" if entity.line is not None else None
    rels: List[InferredRelationship] = []

    if entity.kind is EntityKind.IMPORT and entity.name:
        target = entity.normalized_name or entity.name
        rels.append(InferredRelationship(target, RelationKind.IMPORTS, confidence, evidence))
    elif entity.kind is EntityKind.EXPORT:
        rels.append(InferredRelationship(entity.name, RelationKind.EXPORTS, confidence, evidence))
    elif entity.kind is EntityKind.CALL:
        rels.append(
            InferredRelationship(entity.name, RelationKind.CALLS, _clamp(confidence * CALL_FACTOR), evidence)
        )
    elif entity.kind is EntityKind.TYPE_REF:
        rels.append(
            InferredRelationship(entity.name, RelationKind.USES, _clamp(confidence * USES_FACTOR), evidence)
        )

    rels.extend(_heritage(entity, chunks))
    if entity.kind in CALLABLE_KINDS:
        rels.extend(_usage_calls(entity, chunks, callable_names))
    return rels


def _sorted_relationships(rels: Sequence[InferredRelationship]) -> tuple:
    unique: Dict[tuple, InferredRelationship] = {}
    for rel in rels:
        key = (rel.kind.value, rel.target)
        if key not in unique or rel.confidence > unique[key].confidence:
            unique[key] = rel
    return tuple(unique[k] for k in sorted(unique))


# =============================================================================
# Stage
# =============================================================================


async def enrich_entity(
    entity: NormalizedEntity,
    config: EntityPipelineConfig,
    *,
    chunks: Sequence[DocumentChunk] = (),
    lookup: Optional[EntityLookup] = None,
    callable_names: Sequence[str] = (),
    usage_count: int = 0,
) -> EnrichedEntity:
    base = base_confidence(entity) if config.calculate_confidence else entity.relevance_score

    relationships: List[InferredRelationship] = []
    if config.infer_relationships:
        relationships = infer_relationships(entity, base, chunks, callable_names)

    penalty = 1.0
    if config.discover_existing_entities and lookup is not None and entity.kind in LOOKUP_KINDS:
        try:
            existing = await lookup(entity)
        except Exception as exc:
            logger.warning(f"{ENTITIES} Lookup failed for {entity.name!r}: {exc}")
            existing = None
            penalty = LOOKUP_FAILURE_PENALTY
        if existing:
            relationships.append(
                InferredRelationship(existing, RelationKind.REFERENCES, REFERENCE_CONFIDENCE, "graph")
            )

    if penalty != 1.0:
        relationships = [
            InferredRelationship(r.target, r.kind, _clamp(r.confidence * penalty), r.evidence)
            for r in relationships
        ]

    signature = extract_signature(entity, chunks) if config.extract_signatures else None
    documentation = extract_documentation(entity, chunks) if config.extract_documentation else None

    if config.calculate_confidence:
        confidence = static_confidence(
            entity,
            has_documentation=documentation is not None,
            has_type_annotations=_has_type_annotations(entity, signature),
            relationship_count=len(relationships),
            usage_count=usage_count,
        )
    else:
        confidence = _clamp(entity.relevance_score)

    return promote(
        entity,
        EnrichedEntity,
        confidence=_clamp(confidence * penalty),
        relationships=_sorted_relationships(relationships),
        signature=signature,
        documentation=documentation,
    )


async def apply_enrichment(
    entities: Sequence[NormalizedEntity],
    config: EntityPipelineConfig,
    *,
    chunks: Sequence[DocumentChunk] = (),
    lookup: Optional[EntityLookup] = None,
) -> List[EnrichedEntity]:
    callable_names = sorted({e.name for e in entities if e.kind in CALLABLE_KINDS})
    usage: Dict[str, int] = {}
    for e in entities:
        if e.kind is EntityKind.CALL:
            usage[e.name] = usage.get(e.name, 0) + e.occurrences

    enriched = []
    for entity in entities:
        enriched.append(
            await enrich_entity(
                entity,
                config,
                chunks=chunks,
                lookup=lookup,
                callable_names=callable_names,
                usage_count=usage.get(entity.name, 0) if entity.kind is not EntityKind.CALL else 0,
            )
        )
    return enriched


def skip_enrichment(entities: Sequence[NormalizedEntity]) -> List[EnrichedEntity]:
    return [promote(e, EnrichedEntity, confidence=_clamp(e.relevance_score)) for e in entities]


__all__ = [
    "EntityLookup",
    "base_confidence",
    "static_confidence",
    "extract_signature",
    "extract_documentation",
    "infer_relationships",
    "enrich_entity",
    "apply_enrichment",
    "skip_enrichment",
]
