# graphweave/ingest/entities/stages/normalize.py
"""
Stage 3: normalization.

Imports are classified:
- builtin: runtime builtin module (Node builtins or a `node:` specifier;
  stdlib modules for Python sources)
- internal: relative specifier; separators normalized to "/"
- external: anything else; package metadata comes from the injected
  PackageResolver when resolve_package_info is set

Every other kind passes through as internal with no package info.
"""

from __future__ import annotations

import sys
from typing import List, Optional, Sequence

from graphweave.config.schema import EntityPipelineConfig
from graphweave.ingest.entities.models import (
    DeduplicatedEntity,
    EntityCategory,
    EntityKind,
    NormalizedEntity,
    PackageInfo,
    promote,
)
from graphweave.ingest.entities.packages import PackageResolver

NODE_BUILTINS = frozenset({"fs", "path", "crypto", "http", "https", "os", "util", "events"})
PYTHON_BUILTINS = frozenset(sys.stdlib_module_names)


def classify_source(source: str, language: Optional[str] = None) -> EntityCategory:
    if source.startswith("node:") or source in NODE_BUILTINS:
        return EntityCategory.BUILTIN
    if source.startswith("."):
        return EntityCategory.INTERNAL
    if language == "python" and source.split(".")[0] in PYTHON_BUILTINS:
        return EntityCategory.BUILTIN
    return EntityCategory.EXTERNAL


def normalize_entity(
    entity: DeduplicatedEntity,
    config: EntityPipelineConfig,
    file_path: str,
    resolver: Optional[PackageResolver] = None,
    language: Optional[str] = None,
) -> NormalizedEntity:
    if entity.kind is not EntityKind.IMPORT or not entity.source:
        return promote(
            entity,
            NormalizedEntity,
            normalized_name=entity.name,
            category=EntityCategory.INTERNAL,
        )

    source = entity.source
    category = classify_source(source.replace("\\", "/"), language)
    normalized_name = entity.name
    package_info: Optional[PackageInfo] = None

    if category is EntityCategory.INTERNAL and config.normalize_path_separators:
        normalized_name = source.replace("\\", "/")
    elif category is EntityCategory.EXTERNAL and config.resolve_package_info and resolver:
        package_info = resolver.resolve(source, file_path)

    return promote(
        entity,
        NormalizedEntity,
        normalized_name=normalized_name,
        category=category,
        package_info=package_info,
    )


def apply_normalization(
    entities: Sequence[DeduplicatedEntity],
    config: EntityPipelineConfig,
    file_path: str,
    resolver: Optional[PackageResolver] = None,
    language: Optional[str] = None,
) -> List[NormalizedEntity]:
    return [normalize_entity(e, config, file_path, resolver, language) for e in entities]


def skip_normalization(entities: Sequence[DeduplicatedEntity]) -> List[NormalizedEntity]:
    return [promote(e, NormalizedEntity, normalized_name=e.name) for e in entities]


__all__ = [
    "NODE_BUILTINS",
    "PYTHON_BUILTINS",
    "classify_source",
    "normalize_entity",
    "apply_normalization",
    "skip_normalization",
]
