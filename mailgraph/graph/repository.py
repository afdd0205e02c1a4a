"""PostgreSQL + pgvector implementation of the graph and document stores.

Each call opens its own session from the session factory, so concurrent
extraction workers never share an ``AsyncSession``. The database's unique
constraints on ``unique_id`` and ``message_id`` are the single source of
truth for "does this key already exist"; violations surface as
``DuplicateKeyError``.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, distinct, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailgraph.core.models import DiscoveredEntity, Email, Relationship
from mailgraph.graph.types import (
    Document,
    DuplicateKeyError,
    Edge,
    EdgeInput,
    EntityInput,
    Node,
    NodeKind,
    NodeRef,
)

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """Return True when an IntegrityError was caused by a unique constraint."""
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if code:
        return code == _UNIQUE_VIOLATION
    message = str(exc.orig or exc).lower()
    return "duplicate key" in message or "unique" in message


def _to_node(row: DiscoveredEntity) -> Node:
    embedding = [float(v) for v in row.embedding] if row.embedding is not None else None
    return Node(
        id=row.id,
        unique_key=row.unique_id,
        type_category=row.type_category,
        name=row.name,
        properties=dict(row.properties or {}),
        embedding=embedding,
        confidence=row.confidence_score,
        created_at=row.created_at,
    )


def _to_document(row: Email) -> Document:
    return Document(
        id=row.id,
        message_id=row.message_id,
        sender=row.sender,
        to=list(row.to_addrs or []),
        cc=list(row.cc_addrs or []),
        bcc=list(row.bcc_addrs or []),
        subject=row.subject,
        body=row.body,
        timestamp=row.date,
        file_path=row.file_path,
    )


def _to_edge(row: Relationship) -> Edge:
    return Edge(
        id=row.id,
        type=row.type,
        from_ref=NodeRef(NodeKind(row.from_kind), row.from_id),
        to_ref=NodeRef(NodeKind(row.to_kind), row.to_id),
        confidence=row.confidence_score,
        timestamp=row.timestamp,
        properties=dict(row.properties or {}),
    )


class PostgresGraphRepository:
    """Graph and document store backed by PostgreSQL with pgvector.

    Implements both ``GraphStore`` and ``DocumentStore``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize with an async session factory.

        Args:
            session_factory: Factory producing sessions bound to the graph database.
        """
        self._session_factory = session_factory

    # -----------------------------------------------------------------
    # Entity operations
    # -----------------------------------------------------------------

    async def create_node(self, entity: EntityInput) -> Node:
        entity.validate()
        row = DiscoveredEntity(
            unique_id=entity.unique_key,
            type_category=entity.type_category,
            name=entity.name,
            properties=dict(entity.properties),
            embedding=entity.embedding,
            confidence_score=entity.confidence,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if _is_unique_violation(e):
                    raise DuplicateKeyError(entity.unique_key) from e
                raise
            await session.refresh(row)
            return _to_node(row)

    async def find_node_by_key(self, unique_key: str) -> Node | None:
        async with self._session_factory() as session:
            result = await session.execute(select(DiscoveredEntity).where(DiscoveredEntity.unique_id == unique_key))
            row = result.scalar_one_or_none()
            return _to_node(row) if row is not None else None

    async def find_node_by_id(self, node_id: int) -> Node | None:
        async with self._session_factory() as session:
            row = await session.get(DiscoveredEntity, node_id)
            return _to_node(row) if row is not None else None

    async def distinct_entity_types(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(distinct(DiscoveredEntity.type_category)).order_by(DiscoveredEntity.type_category)
            )
            return list(result.scalars().all())

    # -----------------------------------------------------------------
    # Relationship operations
    # -----------------------------------------------------------------

    async def create_edge(self, edge: EdgeInput) -> Edge:
        edge.validate()
        row = Relationship(
            type=edge.type,
            from_kind=str(edge.from_ref.kind),
            from_id=edge.from_ref.id,
            to_kind=str(edge.to_ref.kind),
            to_id=edge.to_ref.id,
            timestamp=edge.timestamp,
            confidence_score=edge.confidence,
            properties=dict(edge.properties),
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_edge(row)

    async def find_edges_touching(self, ref: NodeRef, edge_type: str | None = None) -> list[Edge]:
        kind = str(ref.kind)
        touching = or_(
            and_(Relationship.from_kind == kind, Relationship.from_id == ref.id),
            and_(Relationship.to_kind == kind, Relationship.to_id == ref.id),
        )
        query = select(Relationship).where(touching)
        if edge_type:
            query = query.where(Relationship.type == edge_type)
        query = query.order_by(Relationship.id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_edge(row) for row in result.scalars().all()]

    async def distinct_relationship_types(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(distinct(Relationship.type)).order_by(Relationship.type))
            return list(result.scalars().all())

    # -----------------------------------------------------------------
    # Vector search
    # -----------------------------------------------------------------

    async def vector_search(
        self,
        vector: list[float],
        top_k: int,
        max_distance: float | None = None,
    ) -> list[tuple[Node, float]]:
        """Find the nearest entities by pgvector cosine distance.

        Args:
            vector: Query embedding.
            top_k: Maximum number of results.
            max_distance: Optional upper bound on cosine distance.

        Returns:
            (node, distance) pairs ordered by ascending distance.
        """
        distance = DiscoveredEntity.embedding.cosine_distance(vector)
        query = select(DiscoveredEntity, distance.label("distance")).where(DiscoveredEntity.embedding.is_not(None))
        if max_distance is not None:
            query = query.where(distance <= max_distance)
        query = query.order_by(distance).limit(top_k)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [(_to_node(row), float(dist)) for row, dist in result.all()]

    # -----------------------------------------------------------------
    # Document operations
    # -----------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        document.validate()
        row = Email(
            message_id=document.message_id,
            sender=document.sender,
            to_addrs=list(document.to),
            cc_addrs=list(document.cc),
            bcc_addrs=list(document.bcc),
            subject=document.subject,
            body=document.body,
            date=document.timestamp,
            file_path=document.file_path,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if _is_unique_violation(e):
                    raise DuplicateKeyError(document.message_id) from e
                raise
            await session.refresh(row)
            return _to_document(row)

    async def find_document_by_key(self, message_id: str) -> Document | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Email).where(Email.message_id == message_id))
            row = result.scalar_one_or_none()
            return _to_document(row) if row is not None else None
