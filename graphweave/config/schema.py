# graphweave/config/schema.py
"""
Configuration schema for graphweave.

This is the SINGLE source of truth for indexer configuration. Every model is
frozen: config objects are passed explicitly into each component and never
mutated at runtime.

Schema hierarchy:
- GraphweaveConfig: Top-level config
- IndexerConfig: Batch, concurrency, file selection and tombstone settings
- ChunkSizeConfig: Chunk size bounds
- EntityPipelineConfig: Toggles for the four entity filter stages
- RetryConfig: Retry contract for the embedding and extraction ports
- LoggingConfig: Logging settings
"""

from __future__ import annotations

import fnmatch
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# =============================================================================
# Indexer Configuration
# =============================================================================


DEFAULT_INCLUDE_PATTERNS: tuple[str, ...] = (
    "**/*.ts",
    "**/*.tsx",
    "**/*.js",
    "**/*.jsx",
    "**/*.py",
    "**/*.md",
    "**/*.json",
)

DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/out/**",
    "**/__pycache__/**",
    "**/.venv/**",
    "**/.graphweave/**",
)


class ChunkSizeConfig(BaseModel):
    """
    Chunk size bounds in characters.

    `max` is the packing limit handed to the chunker. `min` is advisory: a
    chunk shorter than `min` is still kept, since dropping it would lose
    content.
    """

    min: int = Field(default=200, ge=1)
    max: int = Field(default=800, ge=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def check_bounds(self) -> "ChunkSizeConfig":
        if self.min > self.max:
            raise ValueError(f"chunk_size.min ({self.min}) must be <= chunk_size.max ({self.max})")
        return self


class IndexerConfig(BaseModel):
    """
    Incremental indexer configuration.

    Example YAML:
        indexer:
          batch_size: 100
          max_concurrency: 3
          include_patterns: ["**/*.ts", "**/*.md"]
          exclude_patterns: ["**/node_modules/**"]
          chunk_size: {min: 200, max: 800}
          chunk_overlap: 80
          enable_tombstones: true
          tombstone_retention_days: 14
    """

    batch_size: int = Field(default=100, ge=1, description="Files per batch")
    max_concurrency: int = Field(default=3, ge=1, description="Files processed in parallel")
    include_patterns: tuple[str, ...] = Field(default=DEFAULT_INCLUDE_PATTERNS)
    exclude_patterns: tuple[str, ...] = Field(default=DEFAULT_EXCLUDE_PATTERNS)
    chunk_size: ChunkSizeConfig = Field(default_factory=ChunkSizeConfig)
    chunk_overlap: int = Field(default=80, ge=0, description="Characters shared by consecutive chunks")
    max_file_bytes: int = Field(default=2_000_000, ge=1, description="Larger files are not indexed")
    enable_tombstones: bool = Field(default=True, description="Soft-delete instead of hard delete")
    tombstone_retention_days: int = Field(default=14, ge=0)
    verify_hashes: bool = Field(
        default=False, description="Re-hash every file instead of trusting size+mtime"
    )
    state_path: str = Field(
        default=".graphweave/file-index.json",
        description="File index location, relative to the workspace root unless absolute",
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("include_patterns", "exclude_patterns")
    @classmethod
    def validate_globs(cls, patterns: tuple[str, ...]) -> tuple[str, ...]:
        """Reject patterns that cannot be compiled."""
        for pattern in patterns:
            if not pattern or not pattern.strip():
                raise ValueError("glob patterns must not be empty")
            if "\x00" in pattern:
                raise ValueError(f"glob pattern contains NUL: {pattern!r}")
            try:
                re.compile(fnmatch.translate(pattern))
            except re.error as exc:
                raise ValueError(f"invalid glob pattern {pattern!r}: {exc}") from exc
        return patterns

    @model_validator(mode="after")
    def check_overlap(self) -> "IndexerConfig":
        if self.chunk_overlap >= self.chunk_size.max:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size.max ({self.chunk_size.max})"
            )
        return self


# =============================================================================
# Entity Pipeline Configuration
# =============================================================================


class EntityPipelineConfig(BaseModel):
    """
    Flat set of toggles shared by the four entity filter stages.

    The run_* gates short-circuit a whole stage (e.g. run_normalization=False
    for offline runs); the remaining flags tune behavior inside a stage.
    """

    # Stage gates
    run_relevance: bool = True
    run_deduplication: bool = True
    run_normalization: bool = True
    run_enrichment: bool = True

    # Stage 1: relevance
    skip_local_variables: bool = True
    skip_primitive_types: bool = True
    skip_asset_imports: bool = True
    penalize_private_members: bool = True

    # Stage 2: deduplication
    merge_identical_entities: bool = True
    merge_imports_by_source: bool = True

    # Stage 3: normalization
    resolve_package_info: bool = True
    normalize_path_separators: bool = True

    # Stage 4: enrichment
    extract_signatures: bool = True
    extract_documentation: bool = True
    infer_relationships: bool = True
    calculate_confidence: bool = True
    discover_existing_entities: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)


# =============================================================================
# Retry Configuration
# =============================================================================


class RetryConfig(BaseModel):
    """
    Retry contract for external ports (embedding, extraction).

    After max_attempts the call falls back to "no result" instead of failing
    the file.
    """

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0.0, description="Seconds before first retry")
    backoff_factor: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=8.0, ge=0.0)
    timeout: float | None = Field(default=30.0, gt=0.0, description="Per-attempt timeout in seconds")

    model_config = ConfigDict(extra="forbid", frozen=True)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"

    model_config = ConfigDict(extra="forbid", frozen=True)


# =============================================================================
# Main Configuration
# =============================================================================


class GraphweaveConfig(BaseModel):
    """
    Complete configuration.

    Examples:
        Load from YAML:
        >>> from graphweave.config import load_config
        >>> config = load_config("graphweave.yaml")

        Create from dict:
        >>> config = GraphweaveConfig.from_dict({
        ...     "indexer": {"max_concurrency": 4},
        ...     "entities": {"resolve_package_info": False},
        ... })
    """

    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    entities: EntityPipelineConfig = Field(default_factory=EntityPipelineConfig)
    embedding_retry: RetryConfig = Field(default_factory=RetryConfig)
    extraction_retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_dict(cls, data: dict) -> "GraphweaveConfig":
        """Create config from a dictionary using pydantic validation."""
        return cls.model_validate(data)


__all__ = [
    "DEFAULT_INCLUDE_PATTERNS",
    "DEFAULT_EXCLUDE_PATTERNS",
    "ChunkSizeConfig",
    "IndexerConfig",
    "EntityPipelineConfig",
    "RetryConfig",
    "LoggingConfig",
    "GraphweaveConfig",
]
