"""Storage protocols the extraction pipeline and traversal engine depend on.

The core relies only on these semantics; ``mailgraph.graph.repository``
provides the PostgreSQL implementation.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mailgraph.graph.types import Document, Edge, EdgeInput, EntityInput, Node, NodeRef


@runtime_checkable
class GraphStore(Protocol):
    """Node/edge store for discovered entities and relationships."""

    async def create_node(self, entity: EntityInput) -> Node:
        """Create a node.

        Raises:
            DuplicateKeyError: If a node with the same unique key exists.
            ValidationError: If a required field is missing.
        """
        ...

    async def find_node_by_key(self, unique_key: str) -> Node | None:
        """Return the node with this canonical key, or None."""
        ...

    async def find_node_by_id(self, node_id: int) -> Node | None:
        """Return the node with this store id, or None."""
        ...

    async def create_edge(self, edge: EdgeInput) -> Edge:
        """Append an edge. Edges are never deduplicated."""
        ...

    async def find_edges_touching(self, ref: NodeRef, edge_type: str | None = None) -> list[Edge]:
        """Return every edge whose source or target is ``ref``, optionally of one type."""
        ...

    async def vector_search(
        self,
        vector: list[float],
        top_k: int,
        max_distance: float | None = None,
    ) -> list[tuple[Node, float]]:
        """Return up to ``top_k`` (node, cosine distance) pairs, nearest first."""
        ...

    async def distinct_entity_types(self) -> list[str]:
        """Return every type category seen so far."""
        ...

    async def distinct_relationship_types(self) -> list[str]:
        """Return every edge type seen so far."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Store for ingested emails, unique per message id."""

    async def create_document(self, document: Document) -> Document:
        """Persist a document and return it with its store id.

        Raises:
            DuplicateKeyError: If the message id has already been stored.
            ValidationError: If the message id is missing.
        """
        ...

    async def find_document_by_key(self, message_id: str) -> Document | None:
        """Return the document with this message id, or None."""
        ...
