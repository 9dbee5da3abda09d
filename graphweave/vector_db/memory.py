# graphweave/vector_db/memory.py
"""
In-memory VectorStorePort for tests and offline runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Sequence

from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import VECTOR_DB
from graphweave.vector_db.base import VectorRecord, chunk_payload, tombstone_fields

logger = get_logger(__name__)


class MemoryVectorStore:
    """Dict-backed vector store keyed by chunk id."""

    def __init__(self) -> None:
        self.records: Dict[str, VectorRecord] = {}

    async def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        for chunk in chunks:
            vector = list(chunk.embedding) if chunk.embedding is not None else None
            self.records[chunk.id] = VectorRecord(chunk.id, vector, chunk_payload(chunk))
        logger.debug(f"{VECTOR_DB} Upserted {len(chunks)} chunks")

    async def delete_chunks(self, chunk_ids: Sequence[str]) -> None:
        for cid in chunk_ids:
            self.records.pop(cid, None)

    async def mark_deleted(self, chunk_ids: Sequence[str], deleted_at: datetime) -> None:
        for cid in chunk_ids:
            record = self.records.get(cid)
            if record is not None:
                record.payload.update(tombstone_fields(deleted_at))

    async def purge_deleted(self, before: datetime) -> int:
        cutoff = before.timestamp()
        doomed = [
            cid
            for cid, r in self.records.items()
            if r.is_deleted and r.payload.get("deleted_at") is not None and r.payload["deleted_at"] <= cutoff
        ]
        for cid in doomed:
            del self.records[cid]
        return len(doomed)

    def active_ids(self) -> List[str]:
        return sorted(cid for cid, r in self.records.items() if not r.is_deleted)

    def deleted_ids(self) -> List[str]:
        return sorted(cid for cid, r in self.records.items() if r.is_deleted)


__all__ = ["MemoryVectorStore"]
