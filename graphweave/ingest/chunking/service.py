# graphweave/ingest/chunking/service.py
"""
ChunkingService: packs splitter units into bounded, overlapping chunks.

Packing rules:
- units are appended while the chunk stays within max_chunk_size
- a unit that would overflow closes the current chunk; the next chunk
  starts up to `overlap` characters before the previous chunk's end, moved
  forward when needed so the new chunk still fits
- a single unit larger than max_chunk_size becomes its own chunk, unsplit
- whitespace-only spans produce no chunk
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from graphweave.exceptions import ConfigError
from graphweave.ingest.chunking.base import Unit
from graphweave.ingest.chunking.models import ChunkMetadata, Document, DocumentChunk
from graphweave.ingest.chunking.router import ChunkingRouter
from graphweave.ingest.hashing import chunk_content_hash, chunk_id
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import CHUNKING

logger = get_logger(__name__)


class ChunkingService:
    """
    Splits documents into DocumentChunks.

    Usage:
        service = ChunkingService()
        chunks = service.chunk(document, max_chunk_size=800, overlap=80)
    """

    def __init__(self, router: ChunkingRouter | None = None) -> None:
        self._router = router or ChunkingRouter()

    def chunk(self, document: Document, max_chunk_size: int, overlap: int = 0) -> List[DocumentChunk]:
        if max_chunk_size < 1:
            raise ConfigError(f"max_chunk_size must be >= 1, got {max_chunk_size}")
        if overlap < 0:
            raise ConfigError(f"overlap must be >= 0, got {overlap}")
        if overlap >= max_chunk_size:
            raise ConfigError(f"overlap ({overlap}) must be < max_chunk_size ({max_chunk_size})")

        text = document.content
        if not text.strip():
            return []

        splitter = self._router.get_splitter(document.language)
        units = splitter.split(text)
        spans = self._pack(units, max_chunk_size, overlap)

        chunks = []
        for start, end, meta in spans:
            content = text[start:end]
            if not content.strip():
                continue
            chunks.append(self._build(document, splitter.chunk_type, start, end, content, meta))

        logger.debug(
            f"{CHUNKING} {document.path}: {len(units)} units -> {len(chunks)} chunks "
            f"({splitter.plugin_name}, max={max_chunk_size}, overlap={overlap})"
        )
        return chunks

    @staticmethod
    def _pack(units: List[Unit], max_size: int, overlap: int) -> List[tuple[int, int, Dict[str, Any]]]:
        spans: List[tuple[int, int, Dict[str, Any]]] = []
        cur_start: Optional[int] = None
        cur_end = 0
        cur_meta: Dict[str, Any] = {}

        for unit in units:
            if cur_start is None:
                cur_start, cur_end, cur_meta = unit.start, unit.end, dict(unit.meta)
                continue

            if unit.end - cur_start <= max_size:
                cur_end = unit.end
                if not cur_meta and unit.meta:
                    cur_meta = dict(unit.meta)
                continue

            spans.append((cur_start, cur_end, cur_meta))
            start = max(cur_end - overlap, cur_start, unit.end - max_size)
            cur_start = min(start, unit.start)
            cur_end = unit.end
            cur_meta = dict(unit.meta)

        if cur_start is not None:
            spans.append((cur_start, cur_end, cur_meta))
        return spans

    @staticmethod
    def _build(
        document: Document,
        chunk_type: str,
        start: int,
        end: int,
        content: str,
        meta: Dict[str, Any],
    ) -> DocumentChunk:
        text = document.content
        start_line = text.count("\n", 0, start) + 1
        end_line = text.count("\n", 0, end - 1) + 1 if end > start else start_line
        metadata = ChunkMetadata(
            chunk_type=chunk_type,
            language=document.language,
            file_path=document.path,
            start_line=start_line,
            end_line=end_line,
            symbol_name=meta.get("symbol_name"),
            symbol_kind=meta.get("symbol_kind"),
            heading=meta.get("heading"),
            heading_level=meta.get("heading_level"),
            content_hash=chunk_content_hash(content, document.path, start_line, end_line),
        )
        return DocumentChunk(
            id=chunk_id(document.id, start, end, content),
            document_id=document.id,
            start_char=start,
            end_char=end,
            content=content,
            metadata=metadata,
        )


__all__ = ["ChunkingService"]
