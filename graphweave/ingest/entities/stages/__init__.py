# graphweave/ingest/entities/stages/__init__.py
"""
The four entity filter stages, in pipeline order.
"""

from .dedupe import apply_deduplication, skip_deduplication
from .enrich import EntityLookup, apply_enrichment, skip_enrichment
from .normalize import apply_normalization, skip_normalization
from .relevance import apply_relevance, partition, skip_relevance

__all__ = [
    "apply_relevance",
    "partition",
    "skip_relevance",
    "apply_deduplication",
    "skip_deduplication",
    "apply_normalization",
    "skip_normalization",
    "apply_enrichment",
    "skip_enrichment",
    "EntityLookup",
]
