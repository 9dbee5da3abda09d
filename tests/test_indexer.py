# tests/test_indexer.py
"""
End-to-end tests for IncrementalIndexer on a temporary workspace.

Key tests verify that:
1. A second run over an unchanged workspace does no work
2. New, modified, touched and deleted files are each handled once
3. A rename links existing entity nodes instead of recreating them
4. A failing file stays pending while the rest of the run commits
5. Cancellation leaves in-flight files pending for the next run
"""

import asyncio
import os
from pathlib import Path

import pytest

from graphweave.config.schema import GraphweaveConfig
from graphweave.exceptions import ConfigError, IndexerBusyError
from graphweave.graph import MemoryGraphStore, entity_node_id
from graphweave.graph.integration import CHUNK_NODE, MENTIONED_IN
from graphweave.indexer import ChunkDiff, ErrorKind, IncrementalIndexer, RunStatus
from graphweave.ingest.chunking import DocumentChunk
from graphweave.ingest.entities import EntityKind, RawEntity
from graphweave.ingest.state.schema import ChunkRef
from graphweave.llm import LocalEmbedder, LocalEmbedderConfig, StaticEntityExtractor
from graphweave.vector_db import MemoryVectorStore

MATH_TS = "export function add(a: number, b: number): number {\n  return a + b;\n}\n"
GUIDE_MD = "# Guide\n\nUse add to sum two numbers.\n"
UTIL_PY = "import os\n\n\ndef helper():\n    return os.getcwd()\n"


def run(coro):
    return asyncio.run(coro)


def make_config(**indexer) -> GraphweaveConfig:
    fast = {"max_attempts": 1, "initial_delay": 0.0, "timeout": None}
    return GraphweaveConfig.from_dict(
        {
            "indexer": {"chunk_size": {"min": 50, "max": 400}, "chunk_overlap": 40, **indexer},
            "entities": {"resolve_package_info": False},
            "embedding_retry": fast,
            "extraction_retry": fast,
        }
    )


def write(root: Path, rel: str, content: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path):
    write(tmp_path, "src/math.ts", MATH_TS)
    write(tmp_path, "docs/guide.md", GUIDE_MD)
    write(tmp_path, "lib/util.py", UTIL_PY)
    return tmp_path


class Harness:
    """An indexer wired to in-memory stores."""

    def __init__(self, config=None, *, embedder=None, extractor=None, graph_store=None, vector_store=None):
        self.graph = graph_store or MemoryGraphStore()
        self.vectors = vector_store if vector_store is not None else MemoryVectorStore()
        self.indexer = IncrementalIndexer(
            config or make_config(),
            embedder=embedder or LocalEmbedder(LocalEmbedderConfig(dim=8)),
            extractor=extractor or StaticEntityExtractor(),
            graph_store=self.graph,
            vector_store=self.vectors,
        )

    def index(self, root):
        return run(self.indexer.index_workspace(root))

    def chunk_files(self):
        return sorted({n.properties["file_path"] for n in self.graph.nodes_of_type(CHUNK_NODE)})

    def entry(self, path):
        return self.indexer.state.get_entry(path)


class FailingGraphStore(MemoryGraphStore):
    """Rejects writes for chunks of one file while `fail` is set."""

    def __init__(self, bad_path: str):
        super().__init__()
        self.bad_path = bad_path
        self.fail = True

    async def create_nodes(self, nodes):
        if self.fail and any(n.properties.get("file_path") == self.bad_path for n in nodes):
            raise ConnectionError("graph store unavailable")
        await super().create_nodes(nodes)


class FailingVectorStore(MemoryVectorStore):
    """Rejects upserts while `fail` is set."""

    def __init__(self):
        super().__init__()
        self.fail = False

    async def upsert_chunks(self, chunks):
        if self.fail:
            raise ConnectionError("vector store unavailable")
        await super().upsert_chunks(chunks)


class BrokenEmbedder:
    async def embed(self, text):
        raise TimeoutError("no embeddings today")


class CancellingExtractor:
    """Requests cancellation on its first call."""

    model_name = "cancelling"

    def __init__(self):
        self.indexer = None
        self.calls = 0

    async def extract(self, chunk):
        self.calls += 1
        self.indexer.cancel()
        await asyncio.sleep(0)
        return await StaticEntityExtractor().extract(chunk)


# =============================================================================
# Runs
# =============================================================================


class TestChunkDiff:
    @staticmethod
    def chunk(chunk_id, start):
        return DocumentChunk(id=chunk_id, document_id="a.md", start_char=start, end_char=start + 5, content="hello")

    def test_counts_against_committed_chunks(self):
        previous = [ChunkRef(id="a", start_char=0, end_char=5), ChunkRef(id="b", start_char=5, end_char=10)]
        diff = ChunkDiff(previous, [self.chunk("a", 0), self.chunk("c", 5), self.chunk("d", 10)])

        assert [c.id for c in diff.fresh] == ["c", "d"]
        assert diff.stale_ids == ["b"]
        assert (diff.added, diff.modified, diff.removed) == (1, 1, 0)

    def test_leftovers_are_tombstoned_but_not_counted(self):
        previous = [ChunkRef(id="a", start_char=0, end_char=5)]
        diff = ChunkDiff(previous, [self.chunk("c", 0)], leftover_ids=["a", "b", "c"])

        assert diff.stale_ids == ["a", "b"]
        assert diff.orphans == ["b"]
        assert (diff.added, diff.modified, diff.removed) == (0, 1, 0)


class TestFirstRun:
    def test_indexes_everything(self, workspace):
        h = Harness()
        stats = h.index(workspace)

        assert stats.status is RunStatus.COMPLETED
        assert stats.errors == ()
        assert stats.files_scanned == 3
        assert stats.files_modified == 3
        assert stats.files_new == 3
        assert stats.chunks_added > 0
        assert stats.entity_nodes_created > 0
        assert h.chunk_files() == ["docs/guide.md", "lib/util.py", "src/math.ts"]

        committed = sorted(cid for e in h.indexer.state.active_entries().values() for cid in e.chunk_ids())
        assert h.vectors.active_ids() == committed
        assert all(not e.pending_graph for e in h.indexer.state.active_entries().values())
        assert (workspace / ".graphweave" / "file-index.json").exists()

    def test_second_run_is_noop(self, workspace):
        h = Harness()
        h.index(workspace)
        nodes, edges = dict(h.graph.nodes), dict(h.graph.edges)
        vectors = dict(h.vectors.records)

        stats = h.index(workspace)

        assert stats.files_modified == 0
        assert stats.files_unchanged == 3
        assert stats.chunks_added == stats.chunks_removed == 0
        assert h.graph.nodes == nodes
        assert h.graph.edges == edges
        assert h.vectors.records == vectors

    def test_state_survives_new_indexer(self, workspace):
        Harness().index(workspace)
        stats = Harness().index(workspace)
        assert stats.files_unchanged == 3
        assert stats.files_modified == 0

    def test_chunks_carry_entity_ids(self, workspace):
        h = Harness()
        h.index(workspace)
        add = RawEntity(EntityKind.FUNCTION, "add")

        math_chunks = [r for r in h.vectors.records.values() if r.payload["file_path"] == "src/math.ts"]
        assert any(entity_node_id(add) in r.payload["entity_ids"] for r in math_chunks)
        assert all(r.payload["has_vector"] for r in math_chunks)


class TestChangeClassification:
    def test_new_modified_touched_deleted(self, workspace):
        h = Harness()
        h.index(workspace)
        util_chunks = h.entry("lib/util.py").chunk_ids()

        sub = "\nexport function sub(a: number, b: number): number {\n  return a - b;\n}\n"
        write(workspace, "src/math.ts", MATH_TS + sub)
        write(workspace, "src/new.ts", "export const answer = 42;\n")
        guide = workspace / "docs/guide.md"
        mtime = guide.stat().st_mtime + 100
        os.utime(guide, (mtime, mtime))
        (workspace / "lib/util.py").unlink()

        stats = h.index(workspace)

        assert stats.status is RunStatus.COMPLETED
        assert stats.files_scanned == 3
        assert stats.files_modified == 2
        assert stats.files_new == 1
        assert stats.files_unchanged == 1
        assert stats.files_deleted == 1
        assert stats.chunks_added + stats.chunks_modified >= 1

        assert h.entry("docs/guide.md").mtime_epoch == guide.stat().st_mtime
        assert h.entry("lib/util.py").is_deleted
        assert h.entry("lib/util.py").chunks == []
        assert set(util_chunks) <= set(h.vectors.deleted_ids())
        assert h.chunk_files() == ["docs/guide.md", "src/math.ts", "src/new.ts"]

    def test_modified_file_replaces_its_chunks(self, workspace):
        h = Harness()
        h.index(workspace)
        before = set(h.entry("docs/guide.md").chunk_ids())

        write(workspace, "docs/guide.md", "# Guide\n\nUse sub to subtract numbers instead.\n")
        h.index(workspace)

        after = set(h.entry("docs/guide.md").chunk_ids())
        stale = before - after
        assert stale
        assert stale <= set(h.vectors.deleted_ids())
        assert after <= set(h.vectors.active_ids())
        assert not stale & {n.id for n in h.graph.nodes_of_type(CHUNK_NODE)}

    def test_rename_links_existing_entities(self, workspace):
        h = Harness()
        h.index(workspace)
        (workspace / "src/math.ts").rename(workspace / "src/calc.ts")

        stats = h.index(workspace)

        assert stats.files_new == 1
        assert stats.files_deleted == 1
        assert stats.entity_nodes_created == 0
        assert stats.entity_nodes_linked > 0
        assert h.chunk_files() == ["docs/guide.md", "lib/util.py", "src/calc.ts"]

        add_id = entity_node_id(RawEntity(EntityKind.FUNCTION, "add"))
        assert add_id in h.graph.nodes
        calc_chunks = set(h.entry("src/calc.ts").chunk_ids())
        mentions = {e.target for e in h.graph.edges_of_type(MENTIONED_IN) if e.source == add_id}
        assert mentions and mentions <= calc_chunks


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    def test_failed_file_stays_pending(self, workspace):
        store = FailingGraphStore("src/math.ts")
        h = Harness(graph_store=store)

        stats = h.index(workspace)

        assert stats.status is RunStatus.COMPLETED_WITH_ERRORS
        assert [(e.path, e.stage, e.kind) for e in stats.errors] == [("src/math.ts", "graph", ErrorKind.TRANSIENT)]
        assert stats.files_modified == 2
        assert h.entry("src/math.ts").pending_graph is True
        assert h.entry("docs/guide.md").pending_graph is False
        assert h.entry("lib/util.py").pending_graph is False

        store.fail = False
        retry = h.index(workspace)

        assert retry.status is RunStatus.COMPLETED
        assert retry.files_modified == 1
        assert retry.files_new == 0
        assert h.entry("src/math.ts").pending_graph is False
        assert "src/math.ts" in h.chunk_files()

    def test_edit_after_failed_attempt_drops_uncommitted_chunks(self, workspace):
        vectors = FailingVectorStore()
        h = Harness(vector_store=vectors)
        h.index(workspace)
        first = set(h.entry("docs/guide.md").chunk_ids())

        write(workspace, "docs/guide.md", "# Guide\n\nUse sub to subtract one number from another.\n")
        vectors.fail = True
        failed = h.index(workspace)

        assert failed.status is RunStatus.COMPLETED_WITH_ERRORS
        assert [(e.path, e.stage) for e in failed.errors] == [("docs/guide.md", "vector")]
        assert h.entry("docs/guide.md").pending_graph is True
        attempted = {
            n.id for n in h.graph.nodes_of_type(CHUNK_NODE) if n.properties["file_path"] == "docs/guide.md"
        }
        assert attempted - first

        write(workspace, "docs/guide.md", "# Guide\n\nUse mul to multiply.\n")
        vectors.fail = False
        retry = h.index(workspace)

        assert retry.status is RunStatus.COMPLETED
        committed = set(h.entry("docs/guide.md").chunk_ids())
        in_graph = {
            n.id for n in h.graph.nodes_of_type(CHUNK_NODE) if n.properties["file_path"] == "docs/guide.md"
        }
        assert in_graph == committed
        live_chunks = {n.id for n in h.graph.nodes_of_type(CHUNK_NODE)}
        assert {e.target for e in h.graph.edges_of_type(MENTIONED_IN)} <= live_chunks
        assert committed <= set(h.vectors.active_ids())

    def test_embedding_failure_keeps_chunk_without_vector(self, workspace):
        h = Harness(embedder=BrokenEmbedder())

        stats = h.index(workspace)

        assert stats.status is RunStatus.COMPLETED
        assert stats.chunks_without_embedding == stats.chunks_added
        assert all(r.vector is None for r in h.vectors.records.values())
        assert h.chunk_files() == ["docs/guide.md", "lib/util.py", "src/math.ts"]

    def test_corrupt_state_is_reported(self, workspace):
        write(workspace, ".graphweave/file-index.json", "{not json")
        h = Harness()

        stats = h.index(workspace)

        assert stats.status is RunStatus.COMPLETED_WITH_ERRORS
        assert [e.kind for e in stats.errors] == [ErrorKind.STATE]
        assert stats.files_modified == 0
        assert h.graph.nodes == {}


class TestSetup:
    def test_missing_port(self, workspace):
        indexer = IncrementalIndexer(
            make_config(),
            embedder=LocalEmbedder(),
            extractor=StaticEntityExtractor(),
            graph_store=MemoryGraphStore(),
        )
        with pytest.raises(ConfigError, match="vector_store"):
            run(indexer.index_workspace(workspace))

    def test_root_must_be_directory(self, workspace):
        h = Harness()
        with pytest.raises(ConfigError):
            h.index(workspace / "src/math.ts")

    def test_busy(self, workspace):
        started = asyncio.Event()
        gate = asyncio.Event()

        class GatedEmbedder:
            async def embed(self, text):
                started.set()
                await gate.wait()
                return [1.0, 0.0]

        h = Harness(embedder=GatedEmbedder())

        async def scenario():
            first = asyncio.create_task(h.indexer.index_workspace(workspace))
            await started.wait()
            assert h.indexer.is_running
            with pytest.raises(IndexerBusyError):
                await h.indexer.index_workspace(workspace)
            with pytest.raises(IndexerBusyError):
                await h.indexer.remove_file("src/math.ts", workspace)
            gate.set()
            return await first

        stats = run(scenario())

        assert stats.status is RunStatus.COMPLETED
        assert not h.indexer.is_running

    def test_second_indexer_on_same_workspace_is_busy(self, workspace):
        started = asyncio.Event()
        gate = asyncio.Event()

        class GatedEmbedder:
            async def embed(self, text):
                started.set()
                await gate.wait()
                return [1.0, 0.0]

        first = Harness(embedder=GatedEmbedder())
        second = Harness()

        async def scenario():
            task = asyncio.create_task(first.indexer.index_workspace(workspace))
            await started.wait()
            with pytest.raises(IndexerBusyError):
                await second.indexer.index_workspace(workspace)
            with pytest.raises(IndexerBusyError):
                await second.indexer.remove_file("src/math.ts", workspace)
            assert not second.indexer.is_running
            gate.set()
            return await task

        stats = run(scenario())

        assert stats.status is RunStatus.COMPLETED
        assert stats.files_modified == 3
        after = second.index(workspace)
        assert after.status is RunStatus.COMPLETED
        assert after.files_unchanged == 3

    def test_other_workspaces_are_independent(self, workspace, tmp_path_factory):
        other = tmp_path_factory.mktemp("other")
        write(other, "notes.md", GUIDE_MD)
        started = asyncio.Event()
        gate = asyncio.Event()

        class GatedEmbedder:
            async def embed(self, text):
                started.set()
                await gate.wait()
                return [1.0, 0.0]

        first = Harness(embedder=GatedEmbedder())
        second = Harness()

        async def scenario():
            task = asyncio.create_task(first.indexer.index_workspace(workspace))
            await started.wait()
            stats = await second.indexer.index_workspace(other)
            gate.set()
            await task
            return stats

        assert run(scenario()).files_new == 1

    def test_lock_held_by_another_process(self, workspace):
        fcntl = pytest.importorskip("fcntl")
        lock_file = workspace / ".graphweave" / "file-index.json.lock"
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        h = Harness()

        with open(lock_file, "w") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            with pytest.raises(IndexerBusyError, match="another process"):
                h.index(workspace)
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

        assert h.index(workspace).files_new == 3


# =============================================================================
# Cancellation and deletion
# =============================================================================


class TestCancel:
    def test_cancelled_file_is_retried(self, workspace):
        extractor = CancellingExtractor()
        h = Harness(make_config(batch_size=1, max_concurrency=1), extractor=extractor)
        extractor.indexer = h.indexer

        stats = h.index(workspace)

        assert stats.status is RunStatus.CANCELLED
        assert stats.files_modified == 0
        assert extractor.calls == 1
        assert h.entry("docs/guide.md").pending_graph is True
        assert h.entry("lib/util.py") is None

        h2 = Harness()
        resumed = h2.index(workspace)

        assert resumed.status is RunStatus.COMPLETED
        assert resumed.files_modified == 3
        assert resumed.files_new == 2

    def test_cancel_when_idle_is_noop(self):
        h = Harness()
        h.indexer.cancel()
        assert not h.indexer.is_running


class TestDeletion:
    def test_remove_file(self, workspace):
        h = Harness()
        h.index(workspace)
        chunk_ids = h.entry("lib/util.py").chunk_ids()

        stats = run(h.indexer.remove_file("lib/util.py", workspace))

        assert stats.files_deleted == 1
        assert stats.chunks_removed == len(chunk_ids)
        assert h.entry("lib/util.py").is_deleted
        assert set(chunk_ids) <= set(h.vectors.deleted_ids())
        assert "lib/util.py" not in h.chunk_files()

        again = run(h.indexer.remove_file(workspace / "lib/util.py", workspace))
        assert again.files_deleted == 0
        assert again.status is RunStatus.COMPLETED

    def test_hard_delete_without_tombstones(self, workspace):
        h = Harness(make_config(enable_tombstones=False))
        h.index(workspace)
        (workspace / "lib/util.py").unlink()

        stats = h.index(workspace)

        assert stats.files_deleted == 1
        assert h.entry("lib/util.py") is None
        assert h.vectors.deleted_ids() == []
        assert all(r.payload["file_path"] != "lib/util.py" for r in h.vectors.records.values())

    def test_zero_retention_purges_immediately(self, workspace):
        h = Harness(make_config(tombstone_retention_days=0))
        h.index(workspace)
        chunk_ids = h.entry("lib/util.py").chunk_ids()
        (workspace / "lib/util.py").unlink()

        stats = h.index(workspace)

        assert stats.tombstones_purged == len(chunk_ids)
        assert h.vectors.deleted_ids() == []
        assert h.entry("lib/util.py") is None
