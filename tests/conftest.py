"""Shared test fixtures for the MailGraph test suite.

Provides test settings, an in-memory graph/document store that enforces
the same uniqueness constraints as PostgreSQL, and a mock language model.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from mailgraph.core.config import Settings
from mailgraph.graph.similarity import cosine_similarity, is_zero_vector
from mailgraph.graph.types import (
    Document,
    DuplicateKeyError,
    Edge,
    EdgeInput,
    EntityInput,
    Node,
    NodeRef,
)


class InMemoryGraphStore:
    """Dict-backed GraphStore and DocumentStore.

    Every call yields to the event loop once before touching state so
    concurrent callers interleave the way they would against a real
    database.
    """

    def __init__(self) -> None:
        self.nodes: dict[int, Node] = {}
        self.edges: list[Edge] = []
        self.documents: dict[str, Document] = {}
        self._keys: dict[str, int] = {}
        self._next_node_id = 1
        self._next_edge_id = 1
        self._next_document_id = 1
        self.duplicate_rejections = 0
        self.fail_edge_types: set[str] = set()
        self.vector_search_error: Exception | None = None
        self.types_error: Exception | None = None

    # Graph store

    async def create_node(self, entity: EntityInput) -> Node:
        entity.validate()
        await asyncio.sleep(0)
        if entity.unique_key in self._keys:
            self.duplicate_rejections += 1
            raise DuplicateKeyError(entity.unique_key)
        node = Node(
            id=self._next_node_id,
            unique_key=entity.unique_key,
            type_category=entity.type_category,
            name=entity.name,
            properties=dict(entity.properties),
            embedding=list(entity.embedding) if entity.embedding is not None else None,
            confidence=entity.confidence,
            created_at=datetime.now(UTC),
        )
        self._next_node_id += 1
        self.nodes[node.id] = node
        self._keys[node.unique_key] = node.id
        return node

    async def find_node_by_key(self, unique_key: str) -> Node | None:
        await asyncio.sleep(0)
        node_id = self._keys.get(unique_key)
        return self.nodes.get(node_id) if node_id is not None else None

    async def find_node_by_id(self, node_id: int) -> Node | None:
        await asyncio.sleep(0)
        return self.nodes.get(node_id)

    async def create_edge(self, edge: EdgeInput) -> Edge:
        edge.validate()
        await asyncio.sleep(0)
        if edge.type in self.fail_edge_types:
            raise RuntimeError(f"simulated failure creating {edge.type}")
        created = Edge(
            id=self._next_edge_id,
            type=edge.type,
            from_ref=edge.from_ref,
            to_ref=edge.to_ref,
            confidence=edge.confidence,
            timestamp=edge.timestamp,
            properties=dict(edge.properties),
        )
        self._next_edge_id += 1
        self.edges.append(created)
        return created

    async def find_edges_touching(self, ref: NodeRef, edge_type: str | None = None) -> list[Edge]:
        await asyncio.sleep(0)
        return [
            e
            for e in self.edges
            if (e.from_ref == ref or e.to_ref == ref) and (edge_type is None or e.type == edge_type)
        ]

    async def vector_search(
        self,
        vector: list[float],
        top_k: int,
        max_distance: float | None = None,
    ) -> list[tuple[Node, float]]:
        await asyncio.sleep(0)
        if self.vector_search_error is not None:
            raise self.vector_search_error
        scored = [
            (node, 1.0 - cosine_similarity(vector, node.embedding))
            for node in self.nodes.values()
            if node.embedding is not None and not is_zero_vector(node.embedding)
        ]
        if max_distance is not None:
            scored = [(n, d) for n, d in scored if d <= max_distance]
        scored.sort(key=lambda pair: pair[1])
        return scored[:top_k]

    async def distinct_entity_types(self) -> list[str]:
        if self.types_error is not None:
            raise self.types_error
        return sorted({n.type_category for n in self.nodes.values()})

    async def distinct_relationship_types(self) -> list[str]:
        if self.types_error is not None:
            raise self.types_error
        return sorted({e.type for e in self.edges})

    # Document store

    async def create_document(self, document: Document) -> Document:
        document.validate()
        await asyncio.sleep(0)
        if document.message_id in self.documents:
            raise DuplicateKeyError(document.message_id)
        stored = Document(
            message_id=document.message_id,
            sender=document.sender,
            to=list(document.to),
            cc=list(document.cc),
            bcc=list(document.bcc),
            subject=document.subject,
            body=document.body,
            timestamp=document.timestamp,
            file_path=document.file_path,
            id=self._next_document_id,
        )
        self._next_document_id += 1
        self.documents[stored.message_id] = stored
        return stored

    async def find_document_by_key(self, message_id: str) -> Document | None:
        await asyncio.sleep(0)
        return self.documents.get(message_id)

    # Helpers

    def edges_of_type(self, edge_type: str) -> list[Edge]:
        return [e for e in self.edges if e.type == edge_type]

    async def add_node(
        self,
        key: str,
        type_category: str = "person",
        name: str | None = None,
        embedding: list[float] | None = None,
        confidence: float = 1.0,
    ) -> Node:
        return await self.create_node(
            EntityInput(
                unique_key=key,
                type_category=type_category,
                name=name or key,
                embedding=embedding,
                confidence=confidence,
            )
        )

    async def link(self, source: Node | Document, target: Node | Document, edge_type: str = "KNOWS") -> Edge:
        return await self.create_edge(
            EdgeInput(type=edge_type, from_ref=source.ref, to_ref=target.ref, timestamp=datetime.now(UTC))
        )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't connect to real services."""
    return Settings(
        _env_file=None,
        app_env="testing",
        postgres_db="mailgraph_test",
        postgres_user="mailgraph_test",
        postgres_password="test_password",
        llm_provider="ollama",
        embedding_dimension=3,
        extraction_workers=4,
    )


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def mock_llm() -> AsyncMock:
    """Language model stub: fixed embedding, empty extraction result."""
    llm = AsyncMock()
    llm.embed.return_value = [0.1, 0.2, 0.3]
    llm.complete.return_value = '"analysis": "none", "entities": [], "relationships": []}'
    return llm


@pytest.fixture
def sample_document() -> Document:
    return Document(
        message_id="msg-001@enron.com",
        sender="alice@enron.com",
        to=["bob@enron.com"],
        cc=["carol@enron.com"],
        subject="Q3 gas trading",
        body="Bob, please review the Q3 gas trading numbers with Carol.",
        timestamp=datetime(2001, 5, 14, 16, 39, tzinfo=UTC),
    )
