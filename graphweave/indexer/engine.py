# graphweave/indexer/engine.py
"""
IncrementalIndexer: end-to-end orchestration of one indexing run.

Flow:
    scan -> detect -> for each batch:
        mark pending + persist
        per file (bounded concurrency):
            read -> normalize -> chunk -> embed -> extract -> filter
            -> integrate -> upsert vectors / tombstone stale chunks
            -> commit entry
        persist
    -> refresh touched files -> tombstone deleted files -> purge expired
    -> persist

A file's graph and vector writes always happen after its entry was persisted
with pending_graph=True, and the entry is only committed after those writes
succeed. A crash in between re-classifies the file as modified on the next
run; re-integration is idempotent.

Per-file failures never escape a run: they are recorded in
IndexingRunStats.errors. Only ConfigError (bad setup) and IndexerBusyError
(a run already holds the workspace lock) are raised.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

from pydantic import ValidationError

from graphweave.config.schema import GraphweaveConfig
from graphweave.exceptions import (
    ConfigError,
    IndexerBusyError,
    StateError,
    StructuralError,
)
from graphweave.graph.integration import GraphEntityLookup, GraphIntegrationService, entity_node_id
from graphweave.indexer.lock import WorkspaceLock, lock_path_for
from graphweave.indexer.stats import ErrorKind, IndexingRunStats, RunAccumulator
from graphweave.ingest.chunking.models import Document, DocumentChunk
from graphweave.ingest.chunking.router import detect_language
from graphweave.ingest.chunking.service import ChunkingService
from graphweave.ingest.diff.differ import ChangeDetector, FileCandidate
from graphweave.ingest.diff.scanner import FileScanner
from graphweave.ingest.entities.packages import ManifestPackageResolver, PackageResolver
from graphweave.ingest.entities.pipeline import EntityFilterPipeline
from graphweave.ingest.hashing import hash_bytes, normalize_content, vector_hash
from graphweave.ingest.state.manager import FileIndexStateManager
from graphweave.ingest.state.schema import ChunkRef, utcnow
from graphweave.llm.embedding import RetryingEmbedder
from graphweave.llm.extraction import RetryingExtractor
from graphweave.llm.retry import RetryPolicy
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import INDEXER
from graphweave.ports import (
    ChunkExtraction,
    EmbeddingPort,
    EntityExtractionPort,
    GraphStorePort,
    VectorStorePort,
)

logger = get_logger(__name__)


# =============================================================================
# Chunk set diff
# =============================================================================


class ChunkDiff:
    """
    Difference between a file's committed chunk set and its new chunks.

    A fresh chunk that starts where a stale chunk started counts as a
    modification of it; the remaining fresh chunks are additions and the
    remaining stale chunks are removals. Every stale id is tombstoned.

    `leftover_ids` are chunks an uncommitted attempt wrote to the stores.
    Those no longer produced by the current content are tombstoned as well,
    without counting toward the committed removals.
    """

    def __init__(
        self,
        previous: Sequence[ChunkRef],
        current: Sequence[DocumentChunk],
        leftover_ids: Iterable[str] = (),
    ) -> None:
        old_ids = {ref.id for ref in previous}
        new_ids = {chunk.id for chunk in current}
        self.stale: List[ChunkRef] = [ref for ref in previous if ref.id not in new_ids]
        self.fresh: List[DocumentChunk] = [c for c in current if c.id not in old_ids]
        self.orphans: List[str] = sorted(
            {cid for cid in leftover_ids if cid not in new_ids and cid not in old_ids}
        )

        starts = Counter(ref.start_char for ref in self.stale)
        modified = 0
        for chunk in self.fresh:
            if starts[chunk.start_char] > 0:
                starts[chunk.start_char] -= 1
                modified += 1

        self.modified = modified
        self.added = len(self.fresh) - modified
        self.removed = len(self.stale) - modified

    @property
    def stale_ids(self) -> List[str]:
        return [ref.id for ref in self.stale] + self.orphans


# =============================================================================
# Indexer
# =============================================================================


class IncrementalIndexer:
    """
    Indexes a workspace into a graph store and a vector store.

    Usage:
        indexer = IncrementalIndexer(
            config,
            embedder=LocalEmbedder(),
            extractor=StaticEntityExtractor(),
            graph_store=MemoryGraphStore(),
            vector_store=MemoryVectorStore(),
        )
        stats = await indexer.index_workspace("/path/to/repo")
        print(stats)
    """

    def __init__(
        self,
        config: GraphweaveConfig | None = None,
        *,
        embedder: Optional[EmbeddingPort] = None,
        extractor: Optional[EntityExtractionPort] = None,
        graph_store: Optional[GraphStorePort] = None,
        vector_store: Optional[VectorStorePort] = None,
        chunker: Optional[ChunkingService] = None,
        resolver: Optional[PackageResolver] = None,
        state_path: str | Path | None = None,
    ) -> None:
        self._config = config or GraphweaveConfig()
        self._embedder_port = embedder
        self._extractor_port = extractor
        self._graph_store = graph_store
        self._vector_store = vector_store
        self._chunker = chunker or ChunkingService()
        self._resolver = resolver
        self._state_path = Path(state_path) if state_path is not None else None

        self._run_lock = asyncio.Lock()
        self._cancel_requested = False
        self._in_flight: Set[asyncio.Task] = set()

        # Bound per run in _prepare
        self._root: Optional[Path] = None
        self._state: Optional[FileIndexStateManager] = None
        self._embedder: Optional[RetryingEmbedder] = None
        self._extractor: Optional[RetryingExtractor] = None
        self._pipeline: Optional[EntityFilterPipeline] = None
        self._integration: Optional[GraphIntegrationService] = None

    @property
    def config(self) -> GraphweaveConfig:
        return self._config

    @property
    def state(self) -> Optional[FileIndexStateManager]:
        """State manager of the last run, if any."""
        return self._state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def index_workspace(self, root: str | Path) -> IndexingRunStats:
        """
        Run one incremental pass over `root`.

        Raises IndexerBusyError when any run, in this process or another,
        already holds the workspace lock.
        """
        if self._run_lock.locked():
            raise IndexerBusyError("An indexing run is already in progress")

        async with self._run_lock:
            self._cancel_requested = False
            root_path = self._validate(root)
            acc = RunAccumulator()

            workspace_lock = self._claim(root_path, acc)
            if workspace_lock is None:
                return self._finish(acc)
            try:
                await self._index(root_path, acc)
            finally:
                workspace_lock.release()
            return self._finish(acc)

    async def _index(self, root_path: Path, acc: RunAccumulator) -> None:
        if not self._prepare(root_path, acc):
            return

        cfg = self._config.indexer
        scanner = FileScanner(cfg, exclude_patterns=self._scan_excludes(root_path))
        scan = scanner.scan(root_path)
        acc.files_scanned = len(scan.files)

        detector = ChangeDetector(self._state, verify_hashes=cfg.verify_hashes)
        changes = detector.detect(scan)
        for error in changes.errors:
            acc.error(error.path, "detect", error.message)
        acc.files_unchanged = len(changes.unchanged)
        logger.info(f"{INDEXER} {root_path}: {changes.summary}")

        new_paths = {c.path for c in changes.new}
        pending = changes.to_process
        for start in range(0, len(pending), cfg.batch_size):
            if self._cancel_requested:
                break
            await self._run_batch(pending[start : start + cfg.batch_size], new_paths, acc)

        if not self._cancel_requested:
            self._refresh_touched(changes.touched)
            for path in sorted(changes.deleted):
                await self._delete_file(path, acc)
            await self._purge_expired(acc)

        self._save(acc)

    async def remove_file(self, path: str | Path, root: str | Path | None = None) -> IndexingRunStats:
        """
        Remove one file from the index regardless of whether it still exists
        on disk. `path` is workspace-relative, or absolute under `root`.
        """
        if self._run_lock.locked():
            raise IndexerBusyError("An indexing run is already in progress")

        async with self._run_lock:
            root_path = self._validate(root if root is not None else self._root)
            acc = RunAccumulator()
            workspace_lock = self._claim(root_path, acc)
            if workspace_lock is None:
                return self._finish(acc)
            try:
                if self._prepare(root_path, acc):
                    rel = self._relative(root_path, path)
                    entry = self._state.get_entry(rel)
                    if entry is None or entry.is_deleted:
                        logger.info(f"{INDEXER} remove_file: {rel} is not indexed")
                    else:
                        await self._delete_file(rel, acc)
                        self._save(acc)
            finally:
                workspace_lock.release()
            return self._finish(acc)

    def cancel(self) -> None:
        """
        Stop scheduling new files. Files already in flight are abandoned and
        keep pending_graph=True, so the next run picks them up again.
        """
        if not self._run_lock.locked():
            return
        logger.info(f"{INDEXER} Cancellation requested ({len(self._in_flight)} files in flight)")
        self._cancel_requested = True
        for task in list(self._in_flight):
            task.cancel()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _validate(self, root: str | Path | None) -> Path:
        missing = [
            name
            for name, port in (
                ("embedder", self._embedder_port),
                ("extractor", self._extractor_port),
                ("graph_store", self._graph_store),
                ("vector_store", self._vector_store),
            )
            if port is None
        ]
        if missing:
            raise ConfigError(f"Missing required ports: {', '.join(missing)}")
        if root is None:
            raise ConfigError("No workspace root given")
        root_path = Path(root).resolve()
        if not root_path.is_dir():
            raise ConfigError(f"Workspace root is not a directory: {root_path}")
        return root_path

    def _state_file(self, root: Path) -> Path:
        state_path = self._state_path or Path(self._config.indexer.state_path)
        if not state_path.is_absolute():
            state_path = root / state_path
        return state_path

    def _claim(self, root: Path, acc: RunAccumulator) -> Optional[WorkspaceLock]:
        """Take the workspace lock. None if the lock file cannot be opened."""
        workspace_lock = WorkspaceLock(self._state_file(root))
        try:
            workspace_lock.acquire()
        except StateError as exc:
            logger.error(f"{INDEXER} {exc}")
            acc.error(str(workspace_lock.path), "state", str(exc), ErrorKind.STATE)
            return None
        return workspace_lock

    def _prepare(self, root: Path, acc: RunAccumulator) -> bool:
        """Bind per-run collaborators and load state. False if state is unreadable."""
        cfg = self._config
        self._root = root

        state_path = self._state_file(root)
        self._state = FileIndexStateManager(state_path)
        try:
            self._state.load(root=str(root))
        except StateError as exc:
            logger.error(f"{INDEXER} {exc}")
            acc.error(str(state_path), "state", str(exc), ErrorKind.STATE)
            return False

        self._embedder = _retrying_embedder(self._embedder_port, cfg)
        self._extractor = _retrying_extractor(self._extractor_port, cfg)
        self._integration = GraphIntegrationService(self._graph_store)

        resolver = self._resolver
        if resolver is None and cfg.entities.resolve_package_info:
            resolver = ManifestPackageResolver(root)
        lookup = GraphEntityLookup(self._graph_store) if cfg.entities.discover_existing_entities else None
        self._pipeline = EntityFilterPipeline(cfg.entities, resolver=resolver, lookup=lookup)
        return True

    def _scan_excludes(self, root: Path) -> tuple[str, ...]:
        """Configured excludes plus the state and lock files when they live in the workspace."""
        excludes = tuple(self._config.indexer.exclude_patterns)
        state_path = self._state.path.resolve()
        try:
            rel = state_path.relative_to(root).as_posix()
            lock_rel = lock_path_for(state_path).relative_to(root).as_posix()
        except ValueError:
            return excludes
        return excludes + (rel, lock_rel)

    @staticmethod
    def _relative(root: Path, path: str | Path) -> str:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.resolve().relative_to(root)
            except ValueError as exc:
                raise ConfigError(f"{path} is not under workspace root {root}") from exc
        return p.as_posix()

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_batch(
        self, batch: Sequence[FileCandidate], new_paths: Set[str], acc: RunAccumulator
    ) -> None:
        for candidate in batch:
            self._state.mark_pending(
                candidate.path,
                size_bytes=candidate.size_bytes,
                mtime_epoch=candidate.mtime_epoch,
                content_hash=candidate.content_hash,
                language=detect_language(candidate.path),
            )
        if not self._save(acc):
            for candidate in batch:
                acc.error(candidate.path, "state", "pending flag could not be persisted", ErrorKind.STATE)
            return

        semaphore = asyncio.Semaphore(self._config.indexer.max_concurrency)

        async def guarded(candidate: FileCandidate) -> None:
            async with semaphore:
                if self._cancel_requested:
                    return
                task = asyncio.current_task()
                self._in_flight.add(task)
                try:
                    await self._process_file(candidate, candidate.path in new_paths, acc)
                finally:
                    self._in_flight.discard(task)

        results = await asyncio.gather(*(guarded(c) for c in batch), return_exceptions=True)
        for candidate, result in zip(batch, results):
            if isinstance(result, asyncio.CancelledError):
                logger.info(f"{INDEXER} {candidate.path}: abandoned, stays pending")
            elif isinstance(result, BaseException):
                acc.error(candidate.path, "process", repr(result))

        self._save(acc)

    # ------------------------------------------------------------------
    # Per file
    # ------------------------------------------------------------------

    async def _process_file(self, candidate: FileCandidate, is_new: bool, acc: RunAccumulator) -> None:
        path = candidate.path
        stage = "read"
        try:
            raw = await asyncio.to_thread(Path(candidate.abs_path).read_bytes)
            language = detect_language(path)
            document = Document(
                id=path,
                path=path,
                content=normalize_content(raw.decode("utf-8", errors="replace")),
                language=language,
            )

            stage = "chunk"
            cfg = self._config.indexer
            chunks = self._chunker.chunk(document, cfg.chunk_size.max, cfg.chunk_overlap)
            previous = candidate.previous.chunks if candidate.previous is not None else []
            diff = ChunkDiff(previous, chunks, await self._uncommitted_chunk_ids(candidate))

            stage = "embed"
            fresh = [await self._embed(chunk, acc) for chunk in diff.fresh]

            stage = "extract"
            fresh, extractions = await self._extract(fresh, chunks, document)

            stage = "graph"
            integration = await self._integration.integrate(fresh, extractions)
            linking = await self._integration.link_entities_to_code(
                entity for extraction in extractions for entity in extraction.entities
            )
            integration.merge(linking)
            for message in integration.errors:
                acc.error(path, "graph", message)

            stage = "vector"
            await self._vector_store.upsert_chunks(fresh)
            if diff.stale_ids:
                await self._tombstone_chunks(diff.stale_ids)

            stage = "commit"
            self._state.mark_indexed(
                path,
                size_bytes=candidate.size_bytes,
                mtime_epoch=candidate.mtime_epoch,
                content_hash=hash_bytes(raw),
                language=language,
                chunks=[
                    ChunkRef(id=c.id, start_char=c.start_char, end_char=c.end_char)
                    for c in chunks
                ],
                hash_status=candidate.hash_status,
            )
        except (StructuralError, ValidationError, UnicodeError) as exc:
            logger.warning(f"{INDEXER} {path}: {stage} failed: {exc}")
            acc.error(path, stage, str(exc), ErrorKind.STRUCTURAL)
            return
        except Exception as exc:
            logger.warning(f"{INDEXER} {path}: {stage} failed: {exc!r}")
            acc.error(path, stage, repr(exc), ErrorKind.TRANSIENT)
            return

        acc.files_modified += 1
        if is_new:
            acc.files_new += 1
        acc.chunks_added += diff.added
        acc.chunks_modified += diff.modified
        acc.chunks_removed += diff.removed
        acc.entity_nodes_created += integration.nodes_created
        acc.entity_nodes_linked += integration.nodes_linked
        acc.relationships_created += integration.relationship_edges
        logger.debug(
            f"{INDEXER} {path}: +{diff.added} ~{diff.modified} -{diff.removed} chunks, "
            f"{integration.nodes_created} new entities"
        )

    async def _uncommitted_chunk_ids(self, candidate: FileCandidate) -> List[str]:
        """Chunk nodes the graph holds for a file whose last attempt never committed."""
        previous = candidate.previous
        if previous is None or not previous.pending_graph:
            return []
        nodes = await self._graph_store.get_file_chunks(candidate.path)
        return [node.id for node in nodes]

    async def _embed(self, chunk: DocumentChunk, acc: RunAccumulator) -> DocumentChunk:
        vector = await self._embedder.embed_or_none(chunk.content)
        if vector is None:
            acc.chunks_without_embedding += 1
            return chunk
        metadata = chunk.metadata.model_copy(update={"vector_hash": vector_hash(vector)})
        return chunk.model_copy(update={"embedding": list(vector), "metadata": metadata})

    async def _extract(
        self,
        fresh: List[DocumentChunk],
        all_chunks: Sequence[DocumentChunk],
        document: Document,
    ) -> tuple[List[DocumentChunk], List[ChunkExtraction]]:
        """Extract and filter entities per fresh chunk; stamp entity ids on chunk metadata."""
        tagged: List[DocumentChunk] = []
        extractions: List[ChunkExtraction] = []
        for chunk in fresh:
            result = await self._extractor.extract_or_empty(chunk)
            filtered = await self._pipeline.process(
                result.entities, document.path, chunks=all_chunks, language=document.language
            )
            extraction = ChunkExtraction(
                chunk_id=chunk.id,
                entities=tuple(filtered.enriched),
                relationships=result.relationships,
                model=result.model,
            )
            extractions.append(extraction)

            metadata = chunk.metadata.model_copy(
                update={
                    "entity_ids": _entity_ids(extraction),
                    "extraction_model": result.model,
                    "extraction_tag": _extraction_tag(result.model, chunk.metadata.content_hash),
                }
            )
            tagged.append(chunk.model_copy(update={"metadata": metadata}))
        return tagged, extractions

    # ------------------------------------------------------------------
    # Deletion and tombstones
    # ------------------------------------------------------------------

    async def _tombstone_chunks(self, chunk_ids: List[str], now: Optional[datetime] = None) -> None:
        if self._config.indexer.enable_tombstones:
            await self._vector_store.mark_deleted(chunk_ids, now or utcnow())
        else:
            await self._vector_store.delete_chunks(chunk_ids)
        await self._integration.remove_chunks(chunk_ids)

    async def _delete_file(self, path: str, acc: RunAccumulator) -> None:
        entry = self._state.get_entry(path)
        if entry is None:
            return
        chunk_ids = entry.chunk_ids()
        try:
            if chunk_ids:
                await self._tombstone_chunks(chunk_ids)
        except Exception as exc:
            logger.warning(f"{INDEXER} {path}: delete failed: {exc!r}")
            acc.error(path, "delete", repr(exc))
            return

        if self._config.indexer.enable_tombstones:
            self._state.mark_deleted(path)
        else:
            self._state.remove(path)
        acc.files_deleted += 1
        acc.chunks_removed += len(chunk_ids)
        logger.debug(f"{INDEXER} {path}: deleted ({len(chunk_ids)} chunks)")

    def _refresh_touched(self, touched: Iterable[FileCandidate]) -> None:
        for candidate in touched:
            self._state.touch(
                candidate.path, size_bytes=candidate.size_bytes, mtime_epoch=candidate.mtime_epoch
            )

    async def _purge_expired(self, acc: RunAccumulator) -> None:
        cfg = self._config.indexer
        if not cfg.enable_tombstones:
            return
        now = utcnow()
        self._state.purge_expired(cfg.tombstone_retention_days, now=now)
        cutoff = now - timedelta(days=cfg.tombstone_retention_days)
        try:
            acc.tombstones_purged = await self._vector_store.purge_deleted(cutoff)
        except Exception as exc:
            logger.warning(f"{INDEXER} Tombstone purge failed: {exc!r}")
            acc.error("", "purge", repr(exc))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self, acc: RunAccumulator) -> bool:
        try:
            self._state.save()
        except StateError as exc:
            logger.error(f"{INDEXER} {exc}")
            acc.error(str(self._state.path), "state", str(exc), ErrorKind.STATE)
            return False
        return True

    def _finish(self, acc: RunAccumulator) -> IndexingRunStats:
        stats = acc.freeze(cancelled=self._cancel_requested)
        logger.info(f"{INDEXER} {stats}")
        return stats


# =============================================================================
# Helpers
# =============================================================================


def _retrying_embedder(port: EmbeddingPort, config: GraphweaveConfig) -> RetryingEmbedder:
    if isinstance(port, RetryingEmbedder):
        return port
    return RetryingEmbedder(port, RetryPolicy.from_config(config.embedding_retry))


def _retrying_extractor(port: EntityExtractionPort, config: GraphweaveConfig) -> RetryingExtractor:
    if isinstance(port, RetryingExtractor):
        return port
    return RetryingExtractor(port, RetryPolicy.from_config(config.extraction_retry))


def _entity_ids(extraction: ChunkExtraction) -> List[str]:
    return sorted({entity_node_id(e) for e in extraction.entities})


def _extraction_tag(model: Optional[str], content_hash: Optional[str]) -> Optional[str]:
    if content_hash is None:
        return None
    return f"{model or 'none'}:{content_hash[:12]}"


__all__ = ["ChunkDiff", "IncrementalIndexer"]
