# graphweave/vector_db/qdrant.py
"""
Qdrant VectorStorePort.

- Chunk ids are mapped to deterministic UUIDs; the original id is kept in
  the payload as chunk_id
- The collection is created on first write with one named vector
  ("content"), so chunks without an embedding are stored without a vector
- Tombstones are payload flags; purge deletes by filter

Connection:
    QdrantVectorStore("chunks", dimension=384)                      # in-process, ":memory:"
    QdrantVectorStore("chunks", dimension=384, url="http://localhost:6333")
    QdrantVectorStore("chunks", dimension=384, host="qdrant", port=6333)
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointIdsList,
    PointStruct,
    Range,
    VectorParams,
)

from graphweave.exceptions import VectorStoreError
from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import VECTOR_DB
from graphweave.vector_db.base import chunk_payload, tombstone_fields

logger = get_logger(__name__)

VECTOR_NAME = "content"

_QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, ValueError, OSError)


def _string_to_uuid(s: str) -> str:
    """Convert any string to a deterministic UUID."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, s))


def _deleted_filter(before: Optional[float] = None) -> Filter:
    must: list[Any] = [FieldCondition(key="is_deleted", match=MatchValue(value=True))]
    if before is not None:
        must.append(FieldCondition(key="deleted_at", range=Range(lte=before)))
    return Filter(must=must)


class QdrantVectorStore:
    """
    VectorStorePort backed by qdrant-client's async client.

    Connection resolution (in order):
    1. explicit url / host+port
    2. QDRANT_URL, or QDRANT_HOST / QDRANT_PORT environment variables
    3. in-process storage (location=":memory:")
    """

    def __init__(
        self,
        collection: str,
        dimension: int,
        *,
        url: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        location: Optional[str] = None,
        client: Optional[AsyncQdrantClient] = None,
    ) -> None:
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        self._collection = collection
        self._dimension = dimension
        self._client = client or self._connect(url, host, port, location)
        self._ready = False

    @staticmethod
    def _connect(
        url: Optional[str], host: Optional[str], port: Optional[int], location: Optional[str]
    ) -> AsyncQdrantClient:
        if url:
            return AsyncQdrantClient(url=url)
        if host:
            return AsyncQdrantClient(host=host, port=port or 6333)
        if location:
            return AsyncQdrantClient(location=location)

        env_url = os.getenv("QDRANT_URL")
        if env_url:
            return AsyncQdrantClient(url=env_url)
        env_host = os.getenv("QDRANT_HOST")
        if env_host:
            return AsyncQdrantClient(host=env_host, port=int(os.getenv("QDRANT_PORT", "6333")))

        logger.debug(f"{VECTOR_DB} No Qdrant server configured, using in-process storage")
        return AsyncQdrantClient(location=":memory:")

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def client(self) -> AsyncQdrantClient:
        return self._client

    async def _ensure_collection(self) -> None:
        if self._ready:
            return
        try:
            if not await self._client.collection_exists(self._collection):
                logger.info(
                    f"{VECTOR_DB} Creating Qdrant collection '{self._collection}' with dim={self._dimension}"
                )
                await self._client.create_collection(
                    collection_name=self._collection,
                    vectors_config={
                        VECTOR_NAME: VectorParams(size=self._dimension, distance=Distance.COSINE)
                    },
                )
        except _QDRANT_ERRORS as exc:
            raise VectorStoreError(f"Cannot prepare collection '{self._collection}': {exc}") from exc
        self._ready = True

    # =========================================================================
    # VectorStorePort
    # =========================================================================

    async def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        await self._ensure_collection()

        points = []
        for chunk in chunks:
            vector = {}
            if chunk.embedding is not None:
                if len(chunk.embedding) != self._dimension:
                    raise VectorStoreError(
                        f"Chunk {chunk.id} has dim={len(chunk.embedding)}, expected {self._dimension}"
                    )
                vector = {VECTOR_NAME: list(chunk.embedding)}
            points.append(
                PointStruct(id=_string_to_uuid(chunk.id), vector=vector, payload=chunk_payload(chunk))
            )

        try:
            await self._client.upsert(collection_name=self._collection, points=points)
        except _QDRANT_ERRORS as exc:
            raise VectorStoreError(f"Upsert into '{self._collection}' failed: {exc}") from exc
        logger.debug(f"{VECTOR_DB} Upserted {len(points)} points to '{self._collection}'")

    async def delete_chunks(self, chunk_ids: Sequence[str]) -> None:
        if not chunk_ids:
            return
        await self._ensure_collection()
        try:
            await self._client.delete(
                collection_name=self._collection,
                points_selector=PointIdsList(points=[_string_to_uuid(cid) for cid in chunk_ids]),
            )
        except _QDRANT_ERRORS as exc:
            raise VectorStoreError(f"Delete from '{self._collection}' failed: {exc}") from exc

    async def mark_deleted(self, chunk_ids: Sequence[str], deleted_at: datetime) -> None:
        if not chunk_ids:
            return
        await self._ensure_collection()
        try:
            await self._client.set_payload(
                collection_name=self._collection,
                payload=tombstone_fields(deleted_at),
                points=[_string_to_uuid(cid) for cid in chunk_ids],
            )
        except _QDRANT_ERRORS as exc:
            raise VectorStoreError(f"Tombstoning in '{self._collection}' failed: {exc}") from exc

    async def purge_deleted(self, before: datetime) -> int:
        await self._ensure_collection()
        selector = _deleted_filter(before.timestamp())
        try:
            counted = await self._client.count(
                collection_name=self._collection, count_filter=selector, exact=True
            )
            if counted.count:
                await self._client.delete(
                    collection_name=self._collection,
                    points_selector=FilterSelector(filter=selector),
                )
        except _QDRANT_ERRORS as exc:
            raise VectorStoreError(f"Purge in '{self._collection}' failed: {exc}") from exc
        if counted.count:
            logger.info(f"{VECTOR_DB} Purged {counted.count} tombstoned points from '{self._collection}'")
        return counted.count

    async def count(self, *, deleted: Optional[bool] = None) -> int:
        """Number of points, optionally restricted to tombstoned or live ones."""
        await self._ensure_collection()
        count_filter = None
        if deleted is not None:
            count_filter = Filter(must=[FieldCondition(key="is_deleted", match=MatchValue(value=deleted))])
        result = await self._client.count(
            collection_name=self._collection, count_filter=count_filter, exact=True
        )
        return result.count

    async def close(self) -> None:
        await self._client.close()


__all__ = ["QdrantVectorStore", "VECTOR_NAME"]
