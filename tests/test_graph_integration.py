# tests/test_graph_integration.py
"""
Tests for graphweave.graph: integration service and the in-memory store.

Key tests verify that:
1. An entity node is created once and linked afterwards, never duplicated
2. Re-integrating the same extraction adds nothing
3. Relationship edges carry provenance and are kept per chunk
4. Removing chunks removes their mentions
"""

import asyncio
from datetime import datetime, timezone

import pytest

from graphweave.graph import (
    GraphEntityLookup,
    GraphIntegrationService,
    MemoryGraphStore,
    entity_node_id,
    normalize_code_label,
)
from graphweave.graph.integration import (
    CHUNK_NODE,
    CONTAINS,
    DEFINED_IN,
    FILE_NODE,
    MENTIONED_IN,
    MENTIONS,
    file_node_id,
)
from graphweave.ingest.chunking import ChunkMetadata, DocumentChunk
from graphweave.ingest.entities import (
    EnrichedEntity,
    EntityCategory,
    EntityKind,
    InferredRelationship,
    RawEntity,
    RelationKind,
)
from graphweave.ingest.entities.models import promote
from graphweave.ingest.hashing import node_id
from graphweave.ports import CandidateRelationship, ChunkExtraction, GraphNode, GraphRelationship

WHEN = datetime(2024, 5, 1, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


def make_chunk(chunk_id: str, path: str, symbol: str | None = None, start: int = 0) -> DocumentChunk:
    return DocumentChunk(
        id=chunk_id,
        document_id=path,
        start_char=start,
        end_char=start + 10,
        content="x" * 10,
        metadata=ChunkMetadata(
            chunk_type="code", file_path=path, symbol_name=symbol, start_line=1, end_line=2
        ),
    )


def enriched(kind: EntityKind, name: str, relationships=(), **kw) -> EnrichedEntity:
    return promote(
        RawEntity(kind, name, **kw),
        EnrichedEntity,
        normalized_name=name,
        category=EntityCategory.INTERNAL,
        confidence=0.8,
        relationships=tuple(relationships),
    )


class FlakyGraphStore(MemoryGraphStore):
    """Fails lookups for one node id."""

    def __init__(self, bad_id: str):
        super().__init__()
        self.bad_id = bad_id

    async def get_related_chunks(self, node_ids, depth=1):
        if self.bad_id in node_ids:
            raise ConnectionError("graph timeout")
        return await super().get_related_chunks(node_ids, depth)


class TestIdentity:
    """Node id helpers."""

    def test_entity_node_id_ignores_location(self):
        a = enriched(EntityKind.FUNCTION, "add", line=1)
        b = enriched(EntityKind.FUNCTION, "add", line=40)
        assert entity_node_id(a) == entity_node_id(b) == node_id("function", "add")

    def test_imports_are_modules(self):
        react = enriched(EntityKind.IMPORT, "react", source="react")
        assert entity_node_id(react) == node_id("module", "react")

    @pytest.mark.parametrize(
        "label, expected",
        [("ns.Repo<T>", "repo"), ("Foo#bar", "bar"), ("a::B", "b"), ("  Plain ", "plain")],
    )
    def test_normalize_code_label(self, label, expected):
        assert normalize_code_label(label) == expected


class TestIntegrate:
    """Tests for GraphIntegrationService.integrate."""

    def test_creates_chunk_file_and_entity(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        chunk = make_chunk("c1", "src/a.ts")
        add = enriched(EntityKind.FUNCTION, "add")

        stats = run(service.integrate([chunk], [ChunkExtraction("c1", (add,))], discovered_at=WHEN))

        assert stats.nodes_created == 1
        assert stats.nodes_linked == 0
        assert [n.id for n in store.nodes_of_type(CHUNK_NODE)] == ["c1"]
        assert [n.label for n in store.nodes_of_type(FILE_NODE)] == ["src/a.ts"]
        assert len(store.edges_of_type(CONTAINS)) == 1
        nid = entity_node_id(add)
        assert [(e.source, e.target) for e in store.edges_of_type(MENTIONED_IN)] == [(nid, "c1")]
        assert [(e.source, e.target) for e in store.edges_of_type(MENTIONS)] == [("c1", nid)]
        assert store.nodes[nid].properties["confidence"] == 0.8

    def test_no_duplicate_nodes_across_chunks(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        react = enriched(EntityKind.IMPORT, "react", source="react")

        first = run(service.integrate([make_chunk("c1", "a.ts")], [ChunkExtraction("c1", (react,))]))
        second = run(service.integrate([make_chunk("c2", "b.ts")], [ChunkExtraction("c2", (react,))]))

        assert (first.nodes_created, first.nodes_linked) == (1, 0)
        assert (second.nodes_created, second.nodes_linked) == (0, 1)
        assert len([n for n in store.nodes.values() if n.type == "module"]) == 1
        assert {e.target for e in store.edges_of_type(MENTIONED_IN)} == {"c1", "c2"}

    def test_same_entity_twice_in_one_batch(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        add = enriched(EntityKind.FUNCTION, "add")

        stats = run(
            service.integrate(
                [make_chunk("c1", "a.ts"), make_chunk("c2", "a.ts", start=10)],
                [ChunkExtraction("c1", (add,)), ChunkExtraction("c2", (add,))],
            )
        )

        assert (stats.nodes_created, stats.nodes_linked) == (1, 1)

    def test_reintegration_is_idempotent(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        chunk = make_chunk("c1", "a.ts")
        add = enriched(
            EntityKind.FUNCTION,
            "add",
            relationships=[InferredRelationship("sum", RelationKind.CALLS, 0.75, "usage")],
        )
        extraction = ChunkExtraction("c1", (add,))

        run(service.integrate([chunk], [extraction], discovered_at=WHEN))
        nodes, edges = dict(store.nodes), dict(store.edges)
        run(service.integrate([chunk], [extraction], discovered_at=WHEN))

        assert store.nodes == nodes
        assert store.edges == edges

    def test_relationship_edge_properties(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        dog = enriched(
            EntityKind.CLASS,
            "Dog",
            relationships=[InferredRelationship("Animal", RelationKind.EXTENDS, 1.0, "declaration")],
        )

        stats = run(
            service.integrate([make_chunk("c1", "dog.ts")], [ChunkExtraction("c1", (dog,))], discovered_at=WHEN)
        )

        (edge,) = store.edges_of_type("extends")
        assert edge.source == entity_node_id(dog)
        assert edge.target == node_id("class", "Animal")
        assert edge.properties == {
            "confidence": 1.0,
            "context": "declaration",
            "discovered_in": "c1",
            "discovered_at": WHEN.isoformat(),
        }
        assert store.nodes[edge.target].properties["placeholder"] is True
        assert stats.placeholder_nodes == 1
        assert stats.relationship_edges == 1

    def test_same_fact_in_two_chunks_is_two_edges(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        dog = enriched(
            EntityKind.CLASS,
            "Dog",
            relationships=[InferredRelationship("Animal", RelationKind.EXTENDS, 1.0)],
        )

        run(
            service.integrate(
                [make_chunk("c1", "a.ts"), make_chunk("c2", "b.ts")],
                [ChunkExtraction("c1", (dog,)), ChunkExtraction("c2", (dog,))],
            )
        )

        edges = store.edges_of_type("extends")
        assert len(edges) == 2
        assert len({e.id for e in edges}) == 1
        assert {e.properties["discovered_in"] for e in edges} == {"c1", "c2"}

    def test_self_named_relationship_attributed_to_file(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        call = enriched(
            EntityKind.CALL,
            "doThing",
            relationships=[InferredRelationship("doThing", RelationKind.CALLS, 0.8)],
        )

        run(service.integrate([make_chunk("c1", "a.ts")], [ChunkExtraction("c1", (call,))]))

        (edge,) = store.edges_of_type("calls")
        assert edge.source == file_node_id("a.ts")
        assert edge.target == node_id("function", "doThing")

    def test_placeholder_replaced_by_real_definition(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        dog = enriched(
            EntityKind.CLASS, "Dog", relationships=[InferredRelationship("Animal", RelationKind.EXTENDS, 1.0)]
        )
        animal = enriched(EntityKind.CLASS, "Animal")

        run(service.integrate([make_chunk("c1", "dog.ts")], [ChunkExtraction("c1", (dog,))]))
        stats = run(service.integrate([make_chunk("c2", "animal.ts")], [ChunkExtraction("c2", (animal,))]))

        nid = node_id("class", "Animal")
        assert stats.nodes_created == 1
        assert "placeholder" not in store.nodes[nid].properties
        assert store.nodes[nid].properties["name"] == "Animal"

    def test_candidate_relationships(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        a = enriched(EntityKind.FUNCTION, "a")
        extraction = ChunkExtraction(
            "c1",
            (a,),
            relationships=(CandidateRelationship("a", "b", RelationKind.CALLS, 0.6, "a calls b"),),
        )

        run(service.integrate([make_chunk("c1", "x.ts")], [extraction]))

        (edge,) = store.edges_of_type("calls")
        assert edge.source == entity_node_id(a)
        assert edge.target == node_id("function", "b")
        assert edge.properties["context"] == "a calls b"

    def test_unknown_chunk_is_an_error(self):
        service = GraphIntegrationService(MemoryGraphStore())
        stats = run(service.integrate([], [ChunkExtraction("ghost", ())]))
        assert len(stats.errors) == 1

    def test_failing_entity_is_skipped(self):
        bad = enriched(EntityKind.FUNCTION, "bad")
        good = enriched(EntityKind.FUNCTION, "good")
        store = FlakyGraphStore(entity_node_id(bad))
        service = GraphIntegrationService(store)

        stats = run(service.integrate([make_chunk("c1", "a.ts")], [ChunkExtraction("c1", (bad, good))]))

        assert stats.nodes_created == 1
        assert len(stats.errors) == 1
        assert entity_node_id(good) in store.nodes
        assert entity_node_id(bad) not in store.nodes


class TestLinkEntitiesToCode:
    """Tests for defined_in linking."""

    def test_links_definitions_to_matching_chunks(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        repo = enriched(EntityKind.CLASS, "UserRepo")
        helper = enriched(EntityKind.VARIABLE, "UserRepo")
        chunks = [make_chunk("c1", "repo.ts", symbol="UserRepo"), make_chunk("c2", "other.ts", symbol="Other")]
        run(service.integrate(chunks, []))

        stats = run(service.link_entities_to_code([repo, helper]))

        assert stats.defined_in_edges == 1
        (edge,) = store.edges_of_type(DEFINED_IN)
        assert (edge.source, edge.target) == (entity_node_id(repo), "c1")
        assert edge.properties["confidence"] == 0.9

    def test_match_cap(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        chunks = [make_chunk(f"c{i:03d}", f"f{i}.ts", symbol="Widget") for i in range(60)]
        run(service.integrate(chunks, []))

        stats = run(service.link_entities_to_code([enriched(EntityKind.COMPONENT, "Widget")]))

        assert stats.defined_in_edges == 50


class TestRemoval:
    """Tests for chunk removal."""

    def test_remove_chunks_drops_mentions_and_empty_files(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        add = enriched(EntityKind.FUNCTION, "add")
        run(
            service.integrate(
                [make_chunk("c1", "a.ts"), make_chunk("c2", "b.ts")],
                [ChunkExtraction("c1", (add,)), ChunkExtraction("c2", (add,))],
            )
        )

        run(service.remove_chunks(["c1"]))

        assert "c1" not in store.nodes
        assert [e.target for e in store.edges_of_type(MENTIONED_IN)] == ["c2"]
        assert [n.label for n in store.nodes_of_type(FILE_NODE)] == ["b.ts"]
        assert entity_node_id(add) in store.nodes
        assert run(store.list_all_files()) == ["b.ts"]

    def test_remove_unknown_chunk_is_noop(self):
        store = MemoryGraphStore()
        run(GraphIntegrationService(store).remove_chunks(["nope"]))
        assert store.nodes == {}


class TestGraphEntityLookup:
    """Tests for the discovery callable."""

    def test_finds_live_definition(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        add = enriched(EntityKind.FUNCTION, "add")
        run(service.integrate([make_chunk("c1", "a.ts")], [ChunkExtraction("c1", (add,))]))
        lookup = GraphEntityLookup(store)

        assert run(lookup(enriched(EntityKind.CALL, "add"))) == entity_node_id(add)
        assert run(lookup(enriched(EntityKind.CALL, "missing"))) is None

    def test_ignores_orphaned_definition(self):
        store = MemoryGraphStore()
        service = GraphIntegrationService(store)
        add = enriched(EntityKind.FUNCTION, "add")
        run(service.integrate([make_chunk("c1", "a.ts")], [ChunkExtraction("c1", (add,))]))
        run(service.remove_chunks(["c1"]))

        assert run(GraphEntityLookup(store)(enriched(EntityKind.CALL, "add"))) is None


class TestMemoryGraphStore:
    """Tests for traversal bookkeeping in the in-memory store."""

    @staticmethod
    def edge(edge_id, source, target, discovered_in="c1"):
        return GraphRelationship(edge_id, source, target, MENTIONED_IN, {"discovered_in": discovered_in})

    def test_related_chunks_follow_edge_writes(self):
        store = MemoryGraphStore()
        run(
            store.create_nodes(
                [
                    GraphNode("c1", CHUNK_NODE, "c1", {"file_path": "a.ts"}),
                    GraphNode("c2", CHUNK_NODE, "c2", {"file_path": "b.ts"}),
                    GraphNode("e1", "function", "add"),
                ]
            )
        )
        run(store.create_relationships([self.edge("m1", "e1", "c1"), self.edge("m2", "e1", "c2", "c2")]))

        assert run(store.get_related_chunks(["e1"])) == ["c1", "c2"]
        assert run(store.get_related_chunks(["c1"])) == []
        assert run(store.get_related_chunks(["c1"], depth=2)) == ["c2"]

    def test_rewriting_an_edge_does_not_double_count(self):
        store = MemoryGraphStore()
        run(store.create_nodes([GraphNode("c1", CHUNK_NODE, "c1", {"file_path": "a.ts"})]))
        run(store.create_relationships([self.edge("m1", "e1", "c1")]))
        run(store.create_relationships([self.edge("m1", "e1", "c1")]))

        run(store.delete_chunks(["c1"]))

        assert store.edges == {}
        assert store.neighbors("e1") == set()
        assert run(store.get_related_chunks(["e1"])) == []

    def test_parallel_edges_keep_neighbors_until_last_is_gone(self):
        store = MemoryGraphStore()
        run(
            store.create_nodes(
                [
                    GraphNode("c1", CHUNK_NODE, "c1", {"file_path": "a.ts"}),
                    GraphNode("c2", CHUNK_NODE, "c2", {"file_path": "a.ts"}),
                ]
            )
        )
        # Same fact discovered in two chunks: two edges between e1 and c1
        run(store.create_relationships([self.edge("m1", "e1", "c1", "c1"), self.edge("m1", "e1", "c1", "c2")]))

        run(store.delete_chunks(["c2"]))

        assert store.neighbors("e1") == {"c1"}
        assert run(store.get_related_chunks(["e1"])) == ["c1"]
