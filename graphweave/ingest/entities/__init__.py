# graphweave/ingest/entities/__init__.py
"""
Entity records and the four-stage filter pipeline.
"""

from .models import (
    DEFINITION_KINDS,
    DeduplicatedEntity,
    EnrichedEntity,
    EntityCategory,
    EntityKind,
    EntityMetadata,
    EntityScope,
    FilteredEntity,
    InferredRelationship,
    NormalizedEntity,
    PackageInfo,
    RawEntity,
    RelationKind,
)
from .packages import ManifestPackageResolver, PackageResolver
from .pipeline import EntityFilterPipeline, FilterPipelineResult, FilterPipelineStats

__all__ = [
    "EntityKind",
    "EntityScope",
    "EntityCategory",
    "RelationKind",
    "DEFINITION_KINDS",
    "EntityMetadata",
    "PackageInfo",
    "InferredRelationship",
    "RawEntity",
    "FilteredEntity",
    "DeduplicatedEntity",
    "NormalizedEntity",
    "EnrichedEntity",
    "PackageResolver",
    "ManifestPackageResolver",
    "EntityFilterPipeline",
    "FilterPipelineResult",
    "FilterPipelineStats",
]
