# graphweave/ingest/entities/pipeline.py
"""
EntityFilterPipeline: relevance → deduplication → normalization → enrichment.

Each stage can be switched off through its run_* gate; a skipped stage
still promotes records to the next shape with neutral defaults, so the
output type never depends on configuration.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from graphweave.config.schema import EntityPipelineConfig
from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.ingest.entities.models import (
    DeduplicatedEntity,
    EnrichedEntity,
    FilteredEntity,
    NormalizedEntity,
    RawEntity,
)
from graphweave.ingest.entities.packages import PackageResolver
from graphweave.ingest.entities.stages import (
    EntityLookup,
    apply_deduplication,
    apply_enrichment,
    apply_normalization,
    partition,
    skip_deduplication,
    skip_enrichment,
    skip_normalization,
    skip_relevance,
)
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import ENTITIES

logger = get_logger(__name__)


@dataclass(frozen=True)
class FilterPipelineStats:
    total_raw: int
    total_filtered: int
    discarded_count: int
    merged_count: int
    final_count: int
    processing_time_ms: float


@dataclass(frozen=True)
class FilterPipelineResult:
    original: List[RawEntity]
    filtered: List[FilteredEntity]
    discarded: List[FilteredEntity]
    deduplicated: List[DeduplicatedEntity]
    normalized: List[NormalizedEntity]
    enriched: List[EnrichedEntity]
    stats: FilterPipelineStats = field(compare=False)


class EntityFilterPipeline:
    """
    Runs the four stages over one batch of raw entities.

    Usage:
        pipeline = EntityFilterPipeline(config.entities, resolver=ManifestPackageResolver(root))
        result = await pipeline.process(raw_entities, "src/util.ts", chunks=chunks)
        for entity in result.enriched:
            print(entity.name, entity.confidence)
    """

    def __init__(
        self,
        config: EntityPipelineConfig | None = None,
        *,
        resolver: Optional[PackageResolver] = None,
        lookup: Optional[EntityLookup] = None,
    ) -> None:
        self._config = config or EntityPipelineConfig()
        self._resolver = resolver
        self._lookup = lookup

    @property
    def config(self) -> EntityPipelineConfig:
        return self._config

    async def process(
        self,
        raw_entities: Sequence[RawEntity],
        file_path: str,
        *,
        chunks: Sequence[DocumentChunk] = (),
        language: Optional[str] = None,
        lookup: Optional[EntityLookup] = None,
    ) -> FilterPipelineResult:
        cfg = self._config
        started = time.perf_counter()
        raw = list(raw_entities)

        if cfg.run_relevance:
            filtered, discarded = partition(raw, cfg)
        else:
            filtered, discarded = skip_relevance(raw), []

        deduplicated = (
            apply_deduplication(filtered, cfg) if cfg.run_deduplication else skip_deduplication(filtered)
        )

        normalized = (
            apply_normalization(deduplicated, cfg, file_path, self._resolver, language)
            if cfg.run_normalization
            else skip_normalization(deduplicated)
        )

        if cfg.run_enrichment:
            enriched = await apply_enrichment(
                normalized, cfg, chunks=chunks, lookup=lookup or self._lookup
            )
        else:
            enriched = skip_enrichment(normalized)

        stats = FilterPipelineStats(
            total_raw=len(raw),
            total_filtered=len(filtered),
            discarded_count=len(discarded),
            merged_count=len(filtered) - len(deduplicated),
            final_count=len(enriched),
            processing_time_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug(
            f"{ENTITIES} {file_path}: raw={stats.total_raw}, discarded={stats.discarded_count}, "
            f"merged={stats.merged_count}, final={stats.final_count}"
        )
        return FilterPipelineResult(
            original=raw,
            filtered=filtered,
            discarded=discarded,
            deduplicated=deduplicated,
            normalized=normalized,
            enriched=enriched,
            stats=stats,
        )


__all__ = ["EntityFilterPipeline", "FilterPipelineResult", "FilterPipelineStats"]
