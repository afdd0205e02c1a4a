"""Value types shared by the store, the extraction pipeline and traversal.

Edge endpoints are tagged references (``NodeRef``) so an edge can point at
either a discovered entity or an email without ambiguity between the two
id spaces.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


class NodeKind(enum.StrEnum):
    """Kinds of graph vertices an edge endpoint may reference."""

    ENTITY = "discovered_entity"
    DOCUMENT = "email"


@dataclass(frozen=True)
class NodeRef:
    """Tagged reference to a graph vertex."""

    kind: NodeKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GraphError(Exception):
    """Base exception for graph store errors."""


class DuplicateKeyError(GraphError):
    """Raised when a create call violates a uniqueness constraint.

    Attributes:
        key: The unique key that already exists.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"duplicate key: {key!r}")


class NotFoundError(GraphError):
    """Raised when a referenced vertex does not exist."""


class ValidationError(GraphError, ValueError):
    """Raised when a create call is missing a required field."""


# ---------------------------------------------------------------------------
# Stored values
# ---------------------------------------------------------------------------


@dataclass
class Node:
    """A resolved, deduplicated graph vertex (discovered entity).

    Attributes:
        id: Store-assigned identifier.
        unique_key: Canonical identity; at most one node per key.
        type_category: Open-ended type (person, organization, concept, ...).
        name: Display name.
        properties: Heterogeneous property bag.
        embedding: Name embedding, if one was stored.
        confidence: Extraction confidence in [0, 1].
        created_at: Creation timestamp.
    """

    id: int
    unique_key: str
    type_category: str
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    confidence: float = 1.0
    created_at: datetime | None = None

    @property
    def ref(self) -> NodeRef:
        return NodeRef(NodeKind.ENTITY, self.id)


@dataclass
class Document:
    """An email. ``id`` is None until the document has been persisted."""

    message_id: str
    sender: str = ""
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    file_path: str | None = None
    id: int | None = None

    @property
    def recipients(self) -> list[str]:
        """To, Cc and Bcc combined, in that order."""
        return [*self.to, *self.cc, *self.bcc]

    @property
    def ref(self) -> NodeRef:
        if self.id is None:
            raise ValidationError(f"document {self.message_id!r} has not been persisted")
        return NodeRef(NodeKind.DOCUMENT, self.id)

    def validate(self) -> None:
        if not self.message_id or not self.message_id.strip():
            raise ValidationError("document must have a message_id")


@dataclass
class Edge:
    """A directed, typed, confidence-scored connection between two references."""

    id: int
    type: str
    from_ref: NodeRef
    to_ref: NodeRef
    confidence: float = 1.0
    timestamp: datetime | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    def other_end(self, ref: NodeRef) -> NodeRef | None:
        """Return the endpoint opposite ``ref``, or None if the edge does not touch it."""
        if self.from_ref == ref:
            return self.to_ref
        if self.to_ref == ref:
            return self.from_ref
        return None


# ---------------------------------------------------------------------------
# Create inputs
# ---------------------------------------------------------------------------


@dataclass
class EntityInput:
    """Input for creating a discovered entity."""

    unique_key: str
    type_category: str
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    confidence: float = 1.0

    def validate(self) -> None:
        if not self.unique_key:
            raise ValidationError("entity must have a unique_key")
        if not self.type_category:
            raise ValidationError("entity must have a type_category")
        if not self.name:
            raise ValidationError("entity must have a name")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(f"entity confidence must be in [0, 1], got {self.confidence}")


@dataclass
class EdgeInput:
    """Input for creating an edge."""

    type: str
    from_ref: NodeRef
    to_ref: NodeRef
    timestamp: datetime
    confidence: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.type:
            raise ValidationError("edge must have a type")
