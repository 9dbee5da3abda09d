# graphweave/ingest/entities/stages/relevance.py
"""
Stage 1: relevance.

Drops noise (local variables, primitive type references, asset imports)
and de-prioritizes private members. Every decision is per entity, so the
stage is order-independent.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from graphweave.config.schema import EntityPipelineConfig
from graphweave.ingest.entities.models import (
    EntityKind,
    EntityScope,
    FilteredEntity,
    RawEntity,
    promote,
)

PRIMITIVE_TYPES = frozenset(
    {"string", "number", "boolean", "any", "void", "null", "undefined", "unknown"}
)
ASSET_IMPORT_RE = re.compile(
    r"\.(css|scss|sass|less|png|jpg|jpeg|svg|gif|woff|woff2|ttf|eot)$", re.IGNORECASE
)
PRIVATE_MEMBER_FACTOR = 0.3


def evaluate(entity: RawEntity, config: EntityPipelineConfig) -> Tuple[bool, FilteredEntity]:
    """Score one entity. Returns (keep, record); discarded records carry the reason."""
    score = 1.0
    reason: Optional[str] = None
    keep = True

    if config.skip_local_variables and entity.scope is EntityScope.LOCAL:
        keep = False
        reason = "local variable"

    if (
        config.skip_primitive_types
        and entity.kind is EntityKind.TYPE_REF
        and entity.name.lower() in PRIMITIVE_TYPES
    ):
        keep = False
        reason = "primitive type"

    if (
        config.skip_asset_imports
        and entity.kind is EntityKind.IMPORT
        and entity.source
        and ASSET_IMPORT_RE.search(entity.source)
    ):
        keep = False
        reason = "asset import"

    if config.penalize_private_members and entity.is_private:
        score *= PRIVATE_MEMBER_FACTOR
        if keep:
            reason = "private member"

    return keep, promote(entity, FilteredEntity, relevance_score=score, filter_reason=reason)


def partition(
    entities: Sequence[RawEntity], config: EntityPipelineConfig
) -> Tuple[List[FilteredEntity], List[FilteredEntity]]:
    """Split into (kept, discarded), preserving input order in both."""
    kept: List[FilteredEntity] = []
    discarded: List[FilteredEntity] = []
    for entity in entities:
        keep, record = evaluate(entity, config)
        (kept if keep else discarded).append(record)
    return kept, discarded


def apply_relevance(
    entities: Sequence[RawEntity], config: EntityPipelineConfig
) -> List[FilteredEntity]:
    return partition(entities, config)[0]


def skip_relevance(entities: Sequence[RawEntity]) -> List[FilteredEntity]:
    """Promote without filtering."""
    return [promote(e, FilteredEntity) for e in entities]


__all__ = [
    "PRIMITIVE_TYPES",
    "ASSET_IMPORT_RE",
    "PRIVATE_MEMBER_FACTOR",
    "evaluate",
    "partition",
    "apply_relevance",
    "skip_relevance",
]
