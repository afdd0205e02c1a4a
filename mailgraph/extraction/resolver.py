"""Entity resolution: canonical keys and deduplication against stored nodes.

Identity rules:
    * persons with an email property are keyed by the normalized address;
    * persons without one by ``person:<name>``;
    * organization-like types by ``<type>:<normalized org name>``;
    * everything else by ``<type>:<name>``, name lowercased and trimmed.

Concurrent resolution of the same key converges on one node: the store's
uniqueness constraint rejects the losing create, and the loser re-fetches
the winner's node.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from mailgraph.graph.similarity import is_zero_vector, zero_vector
from mailgraph.graph.store import GraphStore
from mailgraph.graph.traversal import GraphTraversalEngine
from mailgraph.graph.types import DuplicateKeyError, EntityInput, Node
from mailgraph.llm.client import LanguageModelClient

logger = logging.getLogger(__name__)

PERSON_TYPE = "person"
ORGANIZATION_TYPES = frozenset({"organization", "org", "company"})

# Checked in order; the first matching suffix is stripped.
ORG_SUFFIXES = (" inc.", " inc", " corp.", " corp", " corporation", " llc", " l.l.c.", " ltd.", " ltd")

DEFAULT_FUZZY_MATCH_THRESHOLD = 0.85
FUZZY_CANDIDATES = 5

EntityConstructor = Callable[[EntityInput], Awaitable[Node]]


def normalize_org_name(name: str) -> str:
    """Normalize an organization name for identity comparison.

    Lowercases, collapses whitespace, then strips at most one legal-entity
    suffix.

    Example:
        ``normalize_org_name("Big   Corp")`` returns ``"big"``.
    """
    normalized = " ".join(name.lower().split())
    for suffix in ORG_SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)].strip()
            break
    return normalized


def normalize_type(type_category: str) -> str:
    return type_category.strip().lower()


def normalize_email(address: str) -> str:
    return address.strip().lower()


def canonical_key(type_category: str, name: str, properties: Mapping[str, Any] | None = None) -> str:
    """Derive the canonical unique key for an entity.

    Args:
        type_category: Entity type; compared case-insensitively.
        name: Entity name.
        properties: Entity properties; ``email`` is used for persons.

    Returns:
        The key under which at most one node may exist.
    """
    category = normalize_type(type_category)
    if category == PERSON_TYPE:
        email = (properties or {}).get("email")
        if isinstance(email, str) and email.strip():
            return normalize_email(email)
        return f"{PERSON_TYPE}:{name.strip().lower()}"

    if category in ORGANIZATION_TYPES:
        return f"{category}:{normalize_org_name(name)}"

    return f"{category}:{name.strip().lower()}"


def local_part(address: str) -> str:
    """Return the part of an address before ``@``, or the address itself."""
    address = address.strip()
    if "@" in address:
        return address.split("@", 1)[0]
    return address


@dataclass
class MergePlan:
    """What merging new evidence into an existing node would change.

    Merging is not applied; the plan is only logged.

    Attributes:
        node_id: The existing node.
        current_confidence: Stored confidence.
        proposed_confidence: Confidence of the new evidence.
        new_property_keys: Property keys the node does not have yet.
        changed_property_keys: Keys whose values differ.
    """

    node_id: int
    current_confidence: float
    proposed_confidence: float
    new_property_keys: list[str] = field(default_factory=list)
    changed_property_keys: list[str] = field(default_factory=list)

    @property
    def confidence_would_rise(self) -> bool:
        return self.proposed_confidence > self.current_confidence

    @property
    def has_changes(self) -> bool:
        return self.confidence_would_rise or bool(self.new_property_keys) or bool(self.changed_property_keys)


def plan_merge(existing: Node, properties: Mapping[str, Any] | None, confidence: float) -> MergePlan:
    """Compare new evidence with a stored node."""
    incoming = dict(properties or {})
    return MergePlan(
        node_id=existing.id,
        current_confidence=existing.confidence,
        proposed_confidence=confidence,
        new_property_keys=sorted(k for k in incoming if k not in existing.properties),
        changed_property_keys=sorted(
            k for k, v in incoming.items() if k in existing.properties and existing.properties[k] != v
        ),
    )


class EntityResolver:
    """Resolves extracted mentions to deduplicated graph nodes."""

    def __init__(
        self,
        store: GraphStore,
        llm: LanguageModelClient,
        *,
        embedding_dimension: int = 1024,
        fuzzy_match_types: Iterable[str] = ("concept",),
        fuzzy_match_threshold: float = DEFAULT_FUZZY_MATCH_THRESHOLD,
        promoted_types: Mapping[str, EntityConstructor] | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Graph store holding discovered entities.
            llm: Client used to embed entity names.
            embedding_dimension: Length of the zero-vector fallback.
            fuzzy_match_types: Types deduplicated by embedding similarity.
            fuzzy_match_threshold: Minimum cosine similarity for a fuzzy match.
            promoted_types: Constructors for promoted types, tried before
                the generic create path.
        """
        self._store = store
        self._llm = llm
        self._traversal = GraphTraversalEngine(store)
        self._embedding_dimension = embedding_dimension
        self._fuzzy_match_types = frozenset(normalize_type(t) for t in fuzzy_match_types)
        self._fuzzy_match_threshold = fuzzy_match_threshold
        self._promoted_types = {normalize_type(k): v for k, v in (promoted_types or {}).items()}

    async def resolve(
        self,
        unique_key: str,
        type_category: str,
        name: str,
        properties: Mapping[str, Any] | None = None,
        confidence: float = 1.0,
    ) -> Node:
        """Return the node for ``unique_key``, creating it if needed.

        Args:
            unique_key: Canonical key (see ``canonical_key``).
            type_category: Entity type.
            name: Display name; also the text that gets embedded.
            properties: Properties stored on a newly created node.
            confidence: Confidence stored on a newly created node.

        Returns:
            The existing or newly created node.

        Raises:
            ValidationError: If key, type or name is empty.
            GraphError: If the store rejects the create for another reason.
        """
        category = normalize_type(type_category)

        existing = await self._store.find_node_by_key(unique_key)
        if existing is not None:
            self._log_merge_plan(existing, properties, confidence)
            return existing

        embedding = await self._embed(name)

        if category in self._fuzzy_match_types and not is_zero_vector(embedding):
            similar = await self._find_similar(category, name, embedding)
            if similar is not None:
                self._log_merge_plan(similar, properties, confidence)
                return similar

        entity = EntityInput(
            unique_key=unique_key,
            type_category=category,
            name=name,
            properties=dict(properties or {}),
            embedding=embedding,
            confidence=confidence,
        )

        constructor = self._promoted_types.get(category)
        if constructor is not None:
            node = await self._create_promoted(constructor, entity)
            if node is not None:
                return node

        return await self._create(entity)

    async def resolve_entity(
        self,
        type_category: str,
        name: str,
        properties: Mapping[str, Any] | None = None,
        confidence: float = 1.0,
    ) -> Node:
        """Resolve an entity under its derived canonical key."""
        return await self.resolve(
            canonical_key(type_category, name, properties),
            type_category,
            name,
            properties,
            confidence,
        )

    async def resolve_person(self, address: str, confidence: float = 1.0) -> Node:
        """Resolve a person seen in an email header.

        The node is keyed by the normalized address and named after its
        local part.
        """
        email = normalize_email(address)
        return await self.resolve(
            email,
            PERSON_TYPE,
            local_part(address) or email,
            {"email": email, "source": "header"},
            confidence,
        )

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    async def _embed(self, name: str) -> list[float]:
        try:
            return await self._llm.embed(name)
        except Exception as e:
            logger.warning("Failed to generate embedding for %r, using zero vector: %s", name, e)
            return zero_vector(self._embedding_dimension)

    async def _find_similar(self, category: str, name: str, embedding: list[float]) -> Node | None:
        try:
            hits = await self._traversal.similar_nodes(
                embedding,
                top_k=FUZZY_CANDIDATES,
                min_similarity=self._fuzzy_match_threshold,
            )
        except Exception as e:
            # Exact key lookup already ran; fall through to creation.
            logger.warning("Similarity search failed for %s %r, using exact name match: %s", category, name, e)
            return None

        for hit in hits:
            if normalize_type(hit.node.type_category) != category:
                continue
            if hit.similarity >= self._fuzzy_match_threshold:
                logger.debug(
                    "Fuzzy matched %s %r to existing %r (id=%d, similarity=%.3f)",
                    category, name, hit.node.name, hit.node.id, hit.similarity,
                )
                return hit.node
        return None

    async def _create_promoted(self, constructor: EntityConstructor, entity: EntityInput) -> Node | None:
        try:
            node = await constructor(entity)
        except DuplicateKeyError:
            return await self._refetch(entity.unique_key)
        except Exception as e:
            logger.warning(
                "Promoted type constructor failed for %s %r, using generic entity: %s",
                entity.type_category, entity.name, e,
            )
            return None
        logger.debug("Created promoted %s entity %r", entity.type_category, entity.name)
        return node

    async def _create(self, entity: EntityInput) -> Node:
        try:
            node = await self._store.create_node(entity)
        except DuplicateKeyError:
            return await self._refetch(entity.unique_key)
        logger.debug("Created %s entity %r (key=%s)", entity.type_category, entity.name, entity.unique_key)
        return node

    async def _refetch(self, unique_key: str) -> Node:
        """Return the node another worker created first."""
        existing = await self._store.find_node_by_key(unique_key)
        if existing is None:
            raise DuplicateKeyError(unique_key)
        logger.debug("Lost create race for %s, using existing node %d", unique_key, existing.id)
        return existing

    def _log_merge_plan(self, existing: Node, properties: Mapping[str, Any] | None, confidence: float) -> None:
        plan = plan_merge(existing, properties, confidence)
        if plan.has_changes:
            logger.debug(
                "Entity %d not merged: confidence %.2f -> %.2f, new properties %s, changed %s",
                plan.node_id,
                plan.current_confidence,
                plan.proposed_confidence,
                plan.new_property_keys,
                plan.changed_property_keys,
            )
