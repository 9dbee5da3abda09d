# graphweave/ingest/entities/stages/dedupe.py
"""
Stage 2: deduplication.

Entities sharing a key are merged into one DeduplicatedEntity.

Key: "{kind}:{name}[:{source}]", or "import:{source}" for imports when
merge_imports_by_source is set.

Merge rule (independent of input order):
- the representative is the member with the highest relevance_score, ties
  broken by the canonical field ordering; its fields win
- line is the smallest known line
- specifiers are the sorted union
- merged_from lists "line-N" for every member, sorted by line
- occurrences is the member count

Output order follows the first appearance of each key.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from graphweave.config.schema import EntityPipelineConfig
from graphweave.ingest.entities.models import (
    DeduplicatedEntity,
    EntityKind,
    FilteredEntity,
    canonical_key,
    promote,
)


def dedupe_key(entity: FilteredEntity, merge_imports_by_source: bool) -> str:
    if merge_imports_by_source and entity.kind is EntityKind.IMPORT and entity.source:
        return f"import:{entity.source}"
    key = f"{entity.kind.value}:{entity.name}"
    if entity.source:
        key += f":{entity.source}"
    return key


def _line_ref(line: int | None) -> str:
    return f"line-{line if line is not None else 'unknown'}"


def merge_group(group: Sequence[FilteredEntity]) -> DeduplicatedEntity:
    representative = min(group, key=lambda e: (-e.relevance_score, canonical_key(e)))
    if len(group) == 1:
        return promote(representative, DeduplicatedEntity, occurrences=1)

    lines = sorted(e.line for e in group if e.line is not None)
    specifiers = sorted({s for e in group for s in e.specifiers})
    merged_from = [
        _line_ref(line)
        for line in sorted((e.line for e in group), key=lambda v: (v is None, v or 0))
    ]
    return promote(
        representative,
        DeduplicatedEntity,
        line=lines[0] if lines else None,
        specifiers=tuple(specifiers),
        merged_from=tuple(merged_from),
        occurrences=len(group),
    )


def apply_deduplication(
    entities: Sequence[FilteredEntity], config: EntityPipelineConfig
) -> List[DeduplicatedEntity]:
    if not config.merge_identical_entities:
        return skip_deduplication(entities)

    groups: Dict[str, List[FilteredEntity]] = {}
    for entity in entities:
        groups.setdefault(dedupe_key(entity, config.merge_imports_by_source), []).append(entity)
    return [merge_group(group) for group in groups.values()]


def skip_deduplication(entities: Sequence[FilteredEntity]) -> List[DeduplicatedEntity]:
    return [promote(e, DeduplicatedEntity, occurrences=1) for e in entities]


__all__ = ["dedupe_key", "merge_group", "apply_deduplication", "skip_deduplication"]
