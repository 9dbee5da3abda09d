# graphweave/vector_db/base.py
"""
Shared shapes for vector store adapters.

Every adapter stores one record per chunk id: the vector (possibly None)
and a payload built by `chunk_payload`. Tombstoned records keep their
payload with is_deleted=True until purged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from graphweave.ingest.chunking.models import DocumentChunk


@dataclass
class VectorRecord:
    chunk_id: str
    vector: Optional[List[float]]
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_deleted(self) -> bool:
        return bool(self.payload.get("is_deleted"))


def chunk_payload(chunk: DocumentChunk) -> Dict[str, Any]:
    """Payload stored alongside each vector."""
    meta = chunk.metadata
    return {
        "chunk_id": chunk.id,
        "document_id": chunk.document_id,
        "file_path": meta.file_path,
        "start_char": chunk.start_char,
        "end_char": chunk.end_char,
        "start_line": meta.start_line,
        "end_line": meta.end_line,
        "chunk_type": meta.chunk_type,
        "language": meta.language,
        "symbol_name": meta.symbol_name,
        "heading": meta.heading,
        "content": chunk.content,
        "content_hash": meta.content_hash,
        "vector_hash": meta.vector_hash,
        "entity_ids": list(meta.entity_ids),
        "has_vector": chunk.embedding is not None,
        "is_deleted": False,
        "deleted_at": None,
    }


def tombstone_fields(deleted_at: datetime) -> Dict[str, Any]:
    return {"is_deleted": True, "deleted_at": deleted_at.timestamp()}


__all__ = ["VectorRecord", "chunk_payload", "tombstone_fields"]
