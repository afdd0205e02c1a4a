"""Per-email extraction: header persons, model-extracted content, then edges.

Within one email the order is fixed: header resolution, content
extraction, relationship synthesis. Synthesis needs the full set of
nodes resolved by the first two steps.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from mailgraph.extraction.prompts import ExtractionResult, build_extraction_prompt, parse_extraction_result
from mailgraph.extraction.relationships import RelationshipSynthesizer
from mailgraph.extraction.resolver import EntityResolver, normalize_email
from mailgraph.graph.store import GraphStore
from mailgraph.graph.types import Document, Node
from mailgraph.llm.client import LanguageModelClient

logger = logging.getLogger(__name__)

DEFAULT_MIN_ENTITY_CONFIDENCE = 0.7


@dataclass
class ExtractionSummary:
    """Outcome of extracting one email.

    Attributes:
        entities_created: Distinct nodes resolved for the email.
        relationships_created: Edges written for the email.
        content_error: Set when content extraction failed; header nodes
            and structural edges are still written.
        nodes: The distinct nodes resolved for the email.
    """

    entities_created: int = 0
    relationships_created: int = 0
    content_error: Exception | None = None
    nodes: list[Node] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.content_error is not None


class DocumentExtractor:
    """Extracts entities and relationships from one persisted email."""

    def __init__(
        self,
        store: GraphStore,
        llm: LanguageModelClient,
        resolver: EntityResolver,
        synthesizer: RelationshipSynthesizer,
        *,
        min_entity_confidence: float = DEFAULT_MIN_ENTITY_CONFIDENCE,
        max_body_chars: int = 2000,
    ) -> None:
        self._store = store
        self._llm = llm
        self._resolver = resolver
        self._synthesizer = synthesizer
        self._min_entity_confidence = min_entity_confidence
        self._max_body_chars = max_body_chars

    async def extract(self, document: Document) -> ExtractionSummary:
        """Resolve every entity in ``document`` and write its edges.

        Args:
            document: An email that already has a store id.

        Returns:
            Counts for the email plus the content error, if any.
        """
        summary = ExtractionSummary()
        nodes_by_key = await self.extract_headers(document)

        nodes_by_slug: dict[str, Node] = {}
        result = ExtractionResult()
        try:
            result = await self._complete(document)
            nodes_by_slug = await self._resolve_content(document, result)
        except Exception as e:
            summary.content_error = e
            logger.warning("Content extraction failed for %s, keeping header entities: %s", document.message_id, e)

        for node in nodes_by_slug.values():
            nodes_by_key.setdefault(node.unique_key, node)

        edges = await self._synthesizer.synthesize(document, nodes_by_key)
        if result.relationships:
            edges.extend(await self._synthesizer.synthesize_extracted(document, result.relationships, nodes_by_slug))

        distinct = {node.id: node for node in nodes_by_key.values()}
        summary.nodes = list(distinct.values())
        summary.entities_created = len(distinct)
        summary.relationships_created = len(edges)
        logger.debug(
            "Extracted %s: entities=%d relationships=%d",
            document.message_id, summary.entities_created, summary.relationships_created,
        )
        return summary

    async def extract_headers(self, document: Document) -> dict[str, Node]:
        """Resolve the sender and every recipient as person nodes.

        Returns:
            Person nodes keyed by normalized address.
        """
        nodes: dict[str, Node] = {}
        for address in [document.sender, *document.recipients]:
            key = normalize_email(address)
            if not key or key in nodes:
                continue
            try:
                nodes[key] = await self._resolver.resolve_person(address)
            except Exception as e:
                logger.warning("Failed to resolve header person %r in %s: %s", address, document.message_id, e)
        return nodes

    async def _complete(self, document: Document) -> ExtractionResult:
        entity_types = await self._known_types(self._store.distinct_entity_types, "entity")
        relationship_types = await self._known_types(self._store.distinct_relationship_types, "relationship")

        prompt = build_extraction_prompt(
            document.sender,
            ", ".join(document.to),
            document.subject,
            document.body,
            entity_types,
            relationship_types,
            max_body_chars=self._max_body_chars,
        )
        response = await self._llm.complete(prompt)
        return parse_extraction_result(response)

    async def _known_types(self, query: Callable[[], Awaitable[list[str]]], label: str) -> list[str]:
        try:
            return list(await query())
        except Exception as e:
            logger.warning("Failed to load discovered %s types, proceeding without them: %s", label, e)
            return []

    async def _resolve_content(self, document: Document, result: ExtractionResult) -> dict[str, Node]:
        """Resolve model-extracted entities above the confidence floor.

        Returns:
            Resolved nodes keyed by the model's entity slug.
        """
        nodes_by_slug: dict[str, Node] = {}
        for entity in result.entities:
            if entity.confidence < self._min_entity_confidence:
                logger.debug(
                    "Skipping %s %r below confidence floor (%.2f)", entity.type, entity.name, entity.confidence
                )
                continue

            properties = {**entity.properties, "source": "content"}
            try:
                node = await self._resolver.resolve_entity(
                    entity.type,
                    entity.name,
                    properties,
                    min(entity.confidence, 1.0),
                )
            except Exception as e:
                logger.debug("Failed to resolve %s %r in %s: %s", entity.type, entity.name, document.message_id, e)
                continue
            nodes_by_slug[entity.id] = node
        return nodes_by_slug
