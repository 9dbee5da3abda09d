# graphweave/ingest/entities/models.py
"""
Entity record shapes for the four-stage filter pipeline.

Each stage output subclasses the previous shape and only adds fields:

    RawEntity → FilteredEntity → DeduplicatedEntity → NormalizedEntity → EnrichedEntity

All records are frozen. `promote()` lifts a record to the next shape while
copying every field it already has.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, TypeVar


class EntityKind(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    CLASS = "class"
    FUNCTION = "function"
    VARIABLE = "variable"
    TYPE_REF = "type_ref"
    CALL = "call"
    INTERFACE = "interface"
    TYPE = "type"
    METHOD = "method"
    COMPONENT = "component"
    SERVICE = "service"


DEFINITION_KINDS = frozenset(
    {
        EntityKind.CLASS,
        EntityKind.FUNCTION,
        EntityKind.INTERFACE,
        EntityKind.TYPE,
        EntityKind.COMPONENT,
        EntityKind.SERVICE,
    }
)

CALLABLE_KINDS = DEFINITION_KINDS | {EntityKind.METHOD}


class EntityScope(str, Enum):
    LOCAL = "local"
    MODULE = "module"
    GLOBAL = "global"


class EntityCategory(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    BUILTIN = "builtin"


class RelationKind(str, Enum):
    IMPORTS = "imports"
    EXPORTS = "exports"
    CALLS = "calls"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"
    USES = "uses"
    REFERENCES = "references"


@dataclass(frozen=True)
class EntityMetadata:
    """Well-known extractor hints. Anything else goes into `extra`."""

    signature: Optional[str] = None
    documentation: Optional[str] = None
    extends: Tuple[str, ...] = ()
    implements: Tuple[str, ...] = ()
    is_exported: bool = False
    has_type_annotations: bool = False
    has_tests: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: Optional[str] = None
    manager: Optional[str] = None  # npm | yarn | pnpm | pip
    is_dev_dependency: bool = False


@dataclass(frozen=True)
class InferredRelationship:
    target: str
    kind: RelationKind
    confidence: float
    evidence: Optional[str] = None


# =============================================================================
# Stage records
# =============================================================================


@dataclass(frozen=True)
class RawEntity:
    """An entity as reported by an extractor."""

    kind: EntityKind
    name: str
    source: Optional[str] = None  # module specifier, imports only
    specifiers: Tuple[str, ...] = ()  # imported names, imports only
    scope: EntityScope = EntityScope.MODULE
    line: Optional[int] = None
    is_private: bool = False
    metadata: EntityMetadata = field(default_factory=EntityMetadata)


@dataclass(frozen=True)
class FilteredEntity(RawEntity):
    relevance_score: float = 1.0
    filter_reason: Optional[str] = None


@dataclass(frozen=True)
class DeduplicatedEntity(FilteredEntity):
    merged_from: Tuple[str, ...] = ()
    occurrences: int = 1


@dataclass(frozen=True)
class NormalizedEntity(DeduplicatedEntity):
    normalized_name: str = ""
    category: EntityCategory = EntityCategory.INTERNAL
    package_info: Optional[PackageInfo] = None


@dataclass(frozen=True)
class EnrichedEntity(NormalizedEntity):
    confidence: float = 0.0
    relationships: Tuple[InferredRelationship, ...] = ()
    signature: Optional[str] = None
    documentation: Optional[str] = None


E = TypeVar("E", bound=RawEntity)


def promote(entity: RawEntity, target: Type[E], **updates: Any) -> E:
    """Lift `entity` to `target`, copying its fields and applying `updates`."""
    values = {f.name: getattr(entity, f.name) for f in fields(entity)}
    values.update(updates)
    return target(**values)


def canonical_key(entity: RawEntity) -> tuple:
    """Total ordering key over every RawEntity field."""
    meta = entity.metadata
    return (
        entity.kind.value,
        entity.name,
        entity.source or "",
        tuple(entity.specifiers),
        entity.scope.value,
        -1 if entity.line is None else entity.line,
        entity.is_private,
        meta.signature or "",
        meta.documentation or "",
        meta.extends,
        meta.implements,
        meta.is_exported,
        meta.has_type_annotations,
        meta.has_tests,
        json.dumps(meta.extra, sort_keys=True, default=str),
    )


__all__ = [
    "EntityKind",
    "EntityScope",
    "EntityCategory",
    "RelationKind",
    "DEFINITION_KINDS",
    "CALLABLE_KINDS",
    "EntityMetadata",
    "PackageInfo",
    "InferredRelationship",
    "RawEntity",
    "FilteredEntity",
    "DeduplicatedEntity",
    "NormalizedEntity",
    "EnrichedEntity",
    "promote",
    "canonical_key",
]
