# graphweave/graph/memory.py
"""
In-memory GraphStorePort.

Reference adapter for tests and offline runs. Nodes are keyed by id, edges
by GraphRelationship.instance_key. An undirected adjacency count is kept in
step with the edge map so traversals never rescan every edge. Every method is
a single atomic step on the event loop.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Dict, List, Sequence, Set, Tuple

from graphweave.graph.integration import CHUNK_NODE, CONTAINS, FILE_NODE
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import GRAPH
from graphweave.ports import GraphNode, GraphRelationship

logger = get_logger(__name__)


class MemoryGraphStore:
    """Dict-backed graph store."""

    def __init__(self) -> None:
        self.nodes: Dict[str, GraphNode] = {}
        self.edges: Dict[Tuple[str, str], GraphRelationship] = {}
        # node id -> neighbor id -> number of edges between them
        self._adjacency: Dict[str, Counter] = {}

    # ------------------------------------------------------------------
    # GraphStorePort
    # ------------------------------------------------------------------

    async def create_nodes(self, nodes: Sequence[GraphNode]) -> None:
        for node in nodes:
            existing = self.nodes.get(node.id)
            # A placeholder never overwrites a real node
            if (
                existing is not None
                and node.properties.get("placeholder")
                and not existing.properties.get("placeholder")
            ):
                continue
            self.nodes[node.id] = node

    async def create_relationships(self, edges: Sequence[GraphRelationship]) -> None:
        for edge in edges:
            if edge.instance_key in self.edges:
                self._drop_edge(edge.instance_key)
            self.edges[edge.instance_key] = edge
            self._link(edge.source, edge.target)

    async def list_all_files(self) -> List[str]:
        return sorted(
            {
                n.properties["file_path"]
                for n in self.nodes.values()
                if n.type == CHUNK_NODE and n.properties.get("file_path")
            }
        )

    async def get_file_chunks(self, path: str) -> List[GraphNode]:
        chunks = [
            n for n in self.nodes.values() if n.type == CHUNK_NODE and n.properties.get("file_path") == path
        ]
        return sorted(chunks, key=lambda n: (n.properties.get("start_char", 0), n.id))

    async def get_related_chunks(self, node_ids: Sequence[str], depth: int = 1) -> List[str]:
        """Chunk ids reachable from node_ids within `depth` hops, ignoring direction."""
        start = set(node_ids)
        seen: Set[str] = set(start)
        queue = deque((nid, 0) for nid in start)
        found: Set[str] = set()

        while queue:
            current, dist = queue.popleft()
            if dist >= depth:
                continue
            for neighbor in self._adjacency.get(current, ()):
                if neighbor in seen:
                    continue
                seen.add(neighbor)
                node = self.nodes.get(neighbor)
                if node is not None and node.type == CHUNK_NODE:
                    found.add(neighbor)
                queue.append((neighbor, dist + 1))
        return sorted(found)

    async def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    async def delete_chunks(self, chunk_ids: Sequence[str]) -> None:
        doomed = {cid for cid in chunk_ids if cid in self.nodes and self.nodes[cid].type == CHUNK_NODE}
        if not doomed:
            return

        for key, edge in list(self.edges.items()):
            if edge.source in doomed or edge.target in doomed or key[1] in doomed:
                self._drop_edge(key)
        for cid in doomed:
            del self.nodes[cid]

        # Drop file nodes left without chunks
        live_files = {e.source for e in self.edges.values() if e.type == CONTAINS}
        for nid, node in list(self.nodes.items()):
            if node.type == FILE_NODE and nid not in live_files:
                del self.nodes[nid]
                for key, edge in list(self.edges.items()):
                    if edge.source == nid or edge.target == nid:
                        self._drop_edge(key)

        logger.debug(f"{GRAPH} Deleted {len(doomed)} chunks")

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def nodes_of_type(self, node_type: str) -> List[GraphNode]:
        return sorted((n for n in self.nodes.values() if n.type == node_type), key=lambda n: n.id)

    def edges_of_type(self, edge_type: str) -> List[GraphRelationship]:
        return sorted(
            (e for e in self.edges.values() if e.type == edge_type),
            key=lambda e: e.instance_key,
        )

    def neighbors(self, node_id: str) -> Set[str]:
        return set(self._adjacency.get(node_id, ()))

    # ------------------------------------------------------------------
    # Adjacency bookkeeping
    # ------------------------------------------------------------------

    def _drop_edge(self, key: Tuple[str, str]) -> None:
        edge = self.edges.pop(key)
        self._unlink(edge.source, edge.target)

    def _link(self, a: str, b: str) -> None:
        self._adjacency.setdefault(a, Counter())[b] += 1
        self._adjacency.setdefault(b, Counter())[a] += 1

    def _unlink(self, a: str, b: str) -> None:
        for x, y in ((a, b), (b, a)):
            neighbors = self._adjacency.get(x)
            if neighbors is None:
                continue
            neighbors[y] -= 1
            if neighbors[y] <= 0:
                del neighbors[y]
            if not neighbors:
                del self._adjacency[x]


__all__ = ["MemoryGraphStore"]
