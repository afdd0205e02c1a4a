"""Tests for the PostgreSQL graph repository with a mocked session."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from mailgraph.core.models import DiscoveredEntity, Email, Relationship
from mailgraph.graph.repository import PostgresGraphRepository, _is_unique_violation
from mailgraph.graph.types import (
    Document,
    DuplicateKeyError,
    EdgeInput,
    EntityInput,
    NodeKind,
    NodeRef,
    ValidationError,
)


class _PgError(Exception):
    def __init__(self, sqlstate: str, message: str = "") -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


def _integrity_error(sqlstate: str, message: str = "") -> IntegrityError:
    return IntegrityError("INSERT ...", {}, _PgError(sqlstate, message))


@pytest.fixture
def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()

    def _refresh(row: Any) -> None:
        row.id = 1
        if getattr(row, "created_at", None) is None:
            row.created_at = datetime(2024, 1, 1, tzinfo=UTC)

    session.refresh = AsyncMock(side_effect=_refresh)
    return session


@pytest.fixture
def repository(mock_session: AsyncMock) -> PostgresGraphRepository:
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_session
    factory.return_value.__aexit__.return_value = False
    return PostgresGraphRepository(factory)


def _entity(key: str = "alice@enron.com") -> EntityInput:
    return EntityInput(
        unique_key=key,
        type_category="person",
        name="alice",
        properties={"email": key, "source": "header"},
        embedding=[0.1, 0.2],
        confidence=1.0,
    )


class TestUniqueViolation:
    """Test suite for unique-constraint detection."""

    def test_sqlstate(self) -> None:
        assert _is_unique_violation(_integrity_error("23505"))

    def test_other_sqlstate(self) -> None:
        assert not _is_unique_violation(_integrity_error("23502"))

    def test_message_fallback(self) -> None:
        err = IntegrityError("INSERT ...", {}, Exception('duplicate key value violates unique constraint "x"'))
        assert _is_unique_violation(err)


class TestCreateNode:
    """Test suite for node creation."""

    @pytest.mark.asyncio
    async def test_creates_row(self, repository, mock_session) -> None:
        node = await repository.create_node(_entity())

        row = mock_session.add.call_args[0][0]
        assert isinstance(row, DiscoveredEntity)
        assert row.unique_id == "alice@enron.com"
        mock_session.commit.assert_awaited_once()
        assert node.id == 1
        assert node.unique_key == "alice@enron.com"
        assert node.embedding == [0.1, 0.2]
        assert node.properties == {"email": "alice@enron.com", "source": "header"}

    @pytest.mark.asyncio
    async def test_unique_violation_raises_duplicate_key(self, repository, mock_session) -> None:
        mock_session.commit.side_effect = _integrity_error("23505")

        with pytest.raises(DuplicateKeyError) as exc_info:
            await repository.create_node(_entity())

        assert exc_info.value.key == "alice@enron.com"
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_integrity_error_propagates(self, repository, mock_session) -> None:
        mock_session.commit.side_effect = _integrity_error("23502")

        with pytest.raises(IntegrityError):
            await repository.create_node(_entity())

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_session(self, repository, mock_session) -> None:
        with pytest.raises(ValidationError):
            await repository.create_node(_entity(key=""))
        mock_session.add.assert_not_called()


class TestLookups:
    """Test suite for key and id lookups."""

    @pytest.mark.asyncio
    async def test_find_node_by_key_missing(self, repository, mock_session) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_session.execute.return_value = result

        assert await repository.find_node_by_key("nobody@enron.com") is None

    @pytest.mark.asyncio
    async def test_find_node_by_id(self, repository, mock_session) -> None:
        mock_session.get.return_value = DiscoveredEntity(
            id=7,
            unique_id="concept:gas",
            type_category="concept",
            name="gas",
            properties={},
            embedding=None,
            confidence_score=0.8,
        )

        node = await repository.find_node_by_id(7)

        assert node is not None
        assert node.id == 7
        assert node.embedding is None
        assert node.confidence == 0.8


class TestEdges:
    """Test suite for edge persistence."""

    @pytest.mark.asyncio
    async def test_create_edge_stores_tagged_endpoints(self, repository, mock_session) -> None:
        edge = await repository.create_edge(
            EdgeInput(
                type="SENT",
                from_ref=NodeRef(NodeKind.ENTITY, 3),
                to_ref=NodeRef(NodeKind.DOCUMENT, 9),
                timestamp=datetime(2001, 5, 14, tzinfo=UTC),
            )
        )

        row = mock_session.add.call_args[0][0]
        assert isinstance(row, Relationship)
        assert (row.from_kind, row.from_id) == ("discovered_entity", 3)
        assert (row.to_kind, row.to_id) == ("email", 9)
        assert edge.from_ref == NodeRef(NodeKind.ENTITY, 3)
        assert edge.to_ref == NodeRef(NodeKind.DOCUMENT, 9)

    @pytest.mark.asyncio
    async def test_find_edges_touching(self, repository, mock_session) -> None:
        result = MagicMock()
        result.scalars.return_value.all.return_value = [
            Relationship(
                id=1,
                type="RECEIVED",
                from_kind="email",
                from_id=9,
                to_kind="discovered_entity",
                to_id=3,
                timestamp=datetime(2001, 5, 14, tzinfo=UTC),
                confidence_score=1.0,
                properties={},
            )
        ]
        mock_session.execute.return_value = result

        edges = await repository.find_edges_touching(NodeRef(NodeKind.ENTITY, 3), "RECEIVED")

        assert len(edges) == 1
        assert edges[0].other_end(NodeRef(NodeKind.ENTITY, 3)) == NodeRef(NodeKind.DOCUMENT, 9)


class TestDocuments:
    """Test suite for document persistence."""

    @pytest.mark.asyncio
    async def test_create_document(self, repository, mock_session) -> None:
        doc = await repository.create_document(
            Document(message_id="m1", sender="alice@enron.com", to=["bob@enron.com"])
        )

        row = mock_session.add.call_args[0][0]
        assert isinstance(row, Email)
        assert row.to_addrs == ["bob@enron.com"]
        assert doc.id == 1
        assert doc.to == ["bob@enron.com"]

    @pytest.mark.asyncio
    async def test_duplicate_message_id(self, repository, mock_session) -> None:
        mock_session.commit.side_effect = _integrity_error("23505")

        with pytest.raises(DuplicateKeyError):
            await repository.create_document(Document(message_id="m1"))
