"""Relationship synthesis from email headers and model extraction output."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from mailgraph.extraction.prompts import ExtractedRelationship
from mailgraph.extraction.resolver import PERSON_TYPE, normalize_email
from mailgraph.graph.store import GraphStore
from mailgraph.graph.types import Document, Edge, EdgeInput, Node

logger = logging.getLogger(__name__)

SENT = "SENT"
RECEIVED = "RECEIVED"
MENTIONS = "MENTIONS"
COMMUNICATES_WITH = "COMMUNICATES_WITH"

HEADER_CONFIDENCE = 1.0
COMMUNICATION_CONFIDENCE = 0.9


def plan_header_edges(document: Document, nodes_by_key: Mapping[str, Node]) -> list[EdgeInput]:
    """Derive the structural edges for one persisted document.

    Args:
        document: The email; must have a store id.
        nodes_by_key: Resolved nodes keyed by canonical key.

    Returns:
        SENT, RECEIVED, MENTIONS and COMMUNICATES_WITH edge inputs, in that order.
    """
    doc_ref = document.ref
    edges: list[EdgeInput] = []

    sender = nodes_by_key.get(normalize_email(document.sender)) if document.sender.strip() else None
    if sender is not None:
        edges.append(
            EdgeInput(
                type=SENT,
                from_ref=sender.ref,
                to_ref=doc_ref,
                timestamp=document.timestamp,
                confidence=HEADER_CONFIDENCE,
            )
        )

    recipients: list[Node] = []
    for address in document.recipients:
        if not address.strip():
            continue
        node = nodes_by_key.get(normalize_email(address))
        if node is None:
            continue
        recipients.append(node)
        edges.append(
            EdgeInput(
                type=RECEIVED,
                from_ref=doc_ref,
                to_ref=node.ref,
                timestamp=document.timestamp,
                confidence=HEADER_CONFIDENCE,
            )
        )

    mentioned: set[int] = set()
    for node in nodes_by_key.values():
        if node.type_category == PERSON_TYPE or node.id in mentioned:
            continue
        mentioned.add(node.id)
        edges.append(
            EdgeInput(
                type=MENTIONS,
                from_ref=doc_ref,
                to_ref=node.ref,
                timestamp=document.timestamp,
                confidence=node.confidence,
            )
        )

    if sender is not None:
        for recipient in recipients:
            if recipient.id == sender.id:
                continue
            edges.append(
                EdgeInput(
                    type=COMMUNICATES_WITH,
                    from_ref=sender.ref,
                    to_ref=recipient.ref,
                    timestamp=document.timestamp,
                    confidence=COMMUNICATION_CONFIDENCE,
                    properties={"via_email": document.message_id},
                )
            )

    return edges


def plan_extracted_edges(
    document: Document,
    relationships: Iterable[ExtractedRelationship],
    nodes_by_slug: Mapping[str, Node],
) -> list[EdgeInput]:
    """Turn model-proposed relationships into edges between resolved nodes.

    A relationship is kept only when both endpoint slugs resolved in this
    document. Confidence is the product of the endpoint confidences.
    """
    edges: list[EdgeInput] = []
    for rel in relationships:
        source = nodes_by_slug.get(rel.source_id)
        target = nodes_by_slug.get(rel.target_id)
        if source is None or target is None:
            logger.debug(
                "Relationship %s not matched: source %r matched=%s, target %r matched=%s",
                rel.predicate, rel.source_id, source is not None, rel.target_id, target is not None,
            )
            continue
        edges.append(
            EdgeInput(
                type=rel.predicate,
                from_ref=source.ref,
                to_ref=target.ref,
                timestamp=document.timestamp,
                confidence=source.confidence * target.confidence,
                properties={"context": rel.context},
            )
        )
    return edges


class RelationshipSynthesizer:
    """Writes derived edges to the graph store, one best-effort call per edge."""

    def __init__(self, store: GraphStore) -> None:
        self._store = store

    async def synthesize(self, document: Document, nodes_by_key: Mapping[str, Node]) -> list[Edge]:
        """Create the structural edges for a document.

        Args:
            document: The persisted email.
            nodes_by_key: Nodes resolved for this email, keyed by canonical key.

        Returns:
            The edges that were created; failed edges are logged and omitted.
        """
        return await self._create_all(plan_header_edges(document, nodes_by_key), document)

    async def synthesize_extracted(
        self,
        document: Document,
        relationships: Iterable[ExtractedRelationship],
        nodes_by_slug: Mapping[str, Node],
    ) -> list[Edge]:
        """Create edges for model-proposed relationships."""
        return await self._create_all(plan_extracted_edges(document, relationships, nodes_by_slug), document)

    async def _create_all(self, inputs: list[EdgeInput], document: Document) -> list[Edge]:
        created: list[Edge] = []
        for edge_input in inputs:
            try:
                created.append(await self._store.create_edge(edge_input))
            except Exception as e:
                logger.warning(
                    "Failed to create %s relationship %s -> %s for %s: %s",
                    edge_input.type, edge_input.from_ref, edge_input.to_ref, document.message_id, e,
                )
        return created
