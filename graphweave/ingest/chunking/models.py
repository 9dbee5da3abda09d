# graphweave/ingest/chunking/models.py
"""
Chunking data model.

ChunkMetadata replaces a free-form metadata dict: the well-known keys are
typed fields, anything else goes into `extra`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


@dataclass(frozen=True)
class Document:
    """A normalized file handed to the chunker."""

    id: str
    path: str
    content: str
    language: Optional[str] = None


class ChunkMetadata(BaseModel):
    """Typed metadata attached to every chunk."""

    chunk_type: str = "prose"
    language: Optional[str] = None
    file_path: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    # Code
    symbol_name: Optional[str] = None
    symbol_kind: Optional[str] = None

    # Structured prose
    heading: Optional[str] = None
    heading_level: Optional[int] = None

    # Attached after chunking
    content_hash: Optional[str] = None
    entity_ids: List[str] = Field(default_factory=list)
    extraction_model: Optional[str] = None
    extraction_tag: Optional[str] = None
    vector_hash: Optional[str] = None

    extra: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class DocumentChunk(BaseModel):
    """
    A bounded span of a document.

    `id` is a pure function of (document_id, start_char, end_char, content).
    `embedding` is None when the embedding port gave up on this chunk; such
    a chunk is still stored and graph-linked, just not vector-searchable.
    """

    id: str
    document_id: str
    start_char: int = Field(ge=0)
    end_char: int
    content: str
    embedding: Optional[List[float]] = None
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_span(self) -> "DocumentChunk":
        if self.start_char >= self.end_char:
            raise ValueError(
                f"start_char ({self.start_char}) must be < end_char ({self.end_char})"
            )
        return self

    @property
    def size(self) -> int:
        return self.end_char - self.start_char


__all__ = ["Document", "ChunkMetadata", "DocumentChunk"]
