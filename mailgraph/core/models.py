"""SQLAlchemy ORM models for the MailGraph property graph.

Three tables back the graph:
- discovered_entities: resolved, deduplicated vertices with a pgvector embedding
- emails: ingested source documents, unique per Message-ID
- relationships: typed, directed edges whose endpoints are (kind, id) pairs
  pointing at either table
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mailgraph.core.database import Base

# Width of the embedding column; matches the default embedding model (mxbai-embed-large).
EMBEDDING_DIMENSION = 1024


class DiscoveredEntity(Base):
    """A resolved entity discovered in email headers or content."""

    __tablename__ = "discovered_entities"
    __table_args__ = (
        Index("ix_discovered_entities_type_category", "type_category"),
        Index("ix_discovered_entities_name", "name"),
        Index("ix_discovered_entities_confidence_score", "confidence_score"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unique_id: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    type_category: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    properties: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIMENSION), nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<DiscoveredEntity(id={self.id}, unique_id='{self.unique_id}', type={self.type_category})>"


class Email(Base):
    """An ingested email. Created once per Message-ID and never mutated."""

    __tablename__ = "emails"
    __table_args__ = (
        Index("ix_emails_date", "date"),
        Index("ix_emails_sender", "sender"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    sender: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    to_addrs: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    cc_addrs: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    bcc_addrs: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<Email(id={self.id}, message_id='{self.message_id}')>"


class Relationship(Base):
    """A directed edge between two graph references. Append-only."""

    __tablename__ = "relationships"
    __table_args__ = (
        Index("ix_relationships_type", "type"),
        Index("ix_relationships_from", "from_kind", "from_id"),
        Index("ix_relationships_to", "to_kind", "to_id"),
        Index("ix_relationships_timestamp", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(128), nullable=False)
    from_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    from_id: Mapped[int] = mapped_column(Integer, nullable=False)
    to_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    to_id: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    properties: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Relationship(id={self.id}, "
            f"{self.from_kind}:{self.from_id}-[{self.type}]->{self.to_kind}:{self.to_id})>"
        )
