"""Graph traversal over the persisted edge set.

Provides N-hop neighbor expansion, shortest-path search, and embedding
similarity search. The engine keeps no state between calls; each call
owns its visited set, so concurrent calls against one store are safe.

Edges may point at emails as well as entities. Traversal walks through
email vertices (a hop through an email consumes one depth level) but
only entity vertices are returned as results.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from mailgraph.graph.store import GraphStore
from mailgraph.graph.types import Edge, Node, NodeKind, NodeRef

logger = logging.getLogger(__name__)

MAX_PATH_DEPTH = 10


@dataclass
class _PathStep:
    """A queued BFS item carrying its parent pointer and the edge used to reach it."""

    ref: NodeRef
    parent: _PathStep | None
    edge: Edge | None
    depth: int


@dataclass
class SimilarNode:
    """A similarity search hit.

    Attributes:
        node: The matched entity.
        distance: Cosine distance reported by the store.
        similarity: ``1 - distance``.
    """

    node: Node
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class GraphTraversalEngine:
    """Answers neighbor, path and similarity queries against a GraphStore."""

    def __init__(self, store: GraphStore, max_path_depth: int = MAX_PATH_DEPTH) -> None:
        """Initialize the engine.

        Args:
            store: Graph store to query.
            max_path_depth: Hard depth cap for shortest-path search.
        """
        self._store = store
        self._max_path_depth = max_path_depth

    async def expand(
        self,
        source_id: int,
        edge_type: str | None = None,
        max_depth: int = 1,
    ) -> list[Node]:
        """Return entities reachable from ``source_id`` within ``max_depth`` hops.

        Level-synchronous BFS: each level expands every vertex of the
        current frontier. A vertex is reported at most once, in discovery
        order; the source itself is never reported.

        Args:
            source_id: Entity id to start from.
            edge_type: Optional edge type to follow exclusively.
            max_depth: Number of levels to expand.

        Returns:
            Reachable entity nodes (emails are traversed but not returned).
        """
        if max_depth <= 0:
            return []

        source = NodeRef(NodeKind.ENTITY, source_id)
        visited: set[NodeRef] = {source}
        frontier: list[NodeRef] = [source]
        results: list[Node] = []

        for _level in range(max_depth):
            if not frontier:
                break
            next_frontier: list[NodeRef] = []
            for ref in frontier:
                edges = await self._store.find_edges_touching(ref, edge_type)
                for edge in edges:
                    neighbor = edge.other_end(ref)
                    if neighbor is None or neighbor in visited:
                        continue
                    visited.add(neighbor)
                    next_frontier.append(neighbor)

                    if neighbor.kind is not NodeKind.ENTITY:
                        continue
                    node = await self._store.find_node_by_id(neighbor.id)
                    if node is None:
                        logger.debug("Edge %d points at missing entity %d", edge.id, neighbor.id)
                        continue
                    results.append(node)
            frontier = next_frontier

        return results

    async def shortest_path(self, from_id: int, to_id: int) -> list[Edge] | None:
        """Find the shortest edge path between two entities.

        Args:
            from_id: Starting entity id.
            to_id: Target entity id.

        Returns:
            Edges in order from ``from_id`` to ``to_id``; an empty list when
            both ids are equal; None when no path exists within the depth cap.
        """
        if from_id == to_id:
            return []

        start = NodeRef(NodeKind.ENTITY, from_id)
        target = NodeRef(NodeKind.ENTITY, to_id)
        visited: set[NodeRef] = {start}
        queue: deque[_PathStep] = deque([_PathStep(ref=start, parent=None, edge=None, depth=0)])

        while queue:
            current = queue.popleft()
            if current.depth >= self._max_path_depth:
                continue

            for edge in await self._store.find_edges_touching(current.ref):
                neighbor = edge.other_end(current.ref)
                if neighbor is None:
                    continue
                if neighbor == target:
                    return _reconstruct_path(current, edge)
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(_PathStep(ref=neighbor, parent=current, edge=edge, depth=current.depth + 1))

        logger.debug("No path between entities %d and %d", from_id, to_id)
        return None

    async def similar_nodes(
        self,
        query_vector: list[float],
        top_k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[SimilarNode]:
        """Return scored similarity hits, nearest first.

        A positive ``min_similarity`` is pushed down to the store as a
        cosine-distance bound of ``1 - min_similarity`` and re-checked here.
        """
        if top_k <= 0:
            return []

        max_distance = 1.0 - min_similarity if min_similarity > 0 else None
        hits = await self._store.vector_search(query_vector, top_k, max_distance)

        results = [
            SimilarNode(node=node, distance=distance)
            for node, distance in hits
            if max_distance is None or distance <= max_distance
        ]
        results.sort(key=lambda hit: hit.distance)
        return results[:top_k]

    async def similarity_search(
        self,
        query_vector: list[float],
        top_k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[Node]:
        """Return up to ``top_k`` entities ordered by descending similarity."""
        hits = await self.similar_nodes(query_vector, top_k=top_k, min_similarity=min_similarity)
        return [hit.node for hit in hits]


def _reconstruct_path(last: _PathStep, final_edge: Edge) -> list[Edge]:
    """Walk parent pointers back to the root and return edges in forward order."""
    path = [final_edge]
    step: _PathStep | None = last
    while step is not None and step.edge is not None:
        path.append(step.edge)
        step = step.parent
    path.reverse()
    return path
