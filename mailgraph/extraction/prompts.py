"""Entity extraction prompt and model-response parsing.

The prompt ends with an opening brace so the model continues a JSON object
instead of writing prose; the response is re-prefixed with that brace
before parsing.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_CHARS = 2000
TRUNCATION_MARKER = "...[truncated]"
RESPONSE_PREFIX = "{"

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_ANALYSIS_OBJECT_START = '{\n  "analysis"'


class ExtractionParseError(ValueError):
    """Raised when a model response cannot be parsed into an ExtractionResult."""


@dataclass
class ExtractedEntity:
    """An entity proposed by the model.

    Attributes:
        id: Model-assigned slug, used only to match relationship endpoints.
        type: Open-ended type category.
        name: Display name.
        properties: Extra attributes reported by the model.
        confidence: Model confidence in [0, 1].
    """

    id: str
    type: str
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0


@dataclass
class ExtractedRelationship:
    """A relationship proposed by the model between two entity slugs."""

    source_id: str
    target_id: str
    predicate: str
    context: str = ""


@dataclass
class ExtractionResult:
    """Structured output of one extraction call."""

    analysis: str = ""
    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[ExtractedRelationship] = field(default_factory=list)


def truncate_body(body: str, max_chars: int = DEFAULT_MAX_BODY_CHARS) -> str:
    if len(body) <= max_chars:
        return body
    return body[:max_chars] + TRUNCATION_MARKER


def build_extraction_prompt(
    sender: str,
    recipients: str,
    subject: str,
    body: str,
    entity_types: list[str],
    relationship_types: list[str],
    max_body_chars: int = DEFAULT_MAX_BODY_CHARS,
) -> str:
    """Build the entity extraction prompt for one email.

    Args:
        sender: From header.
        recipients: To header, comma separated.
        subject: Subject header.
        body: Email body; truncated to ``max_body_chars``.
        entity_types: Previously discovered entity types, offered as the ontology.
        relationship_types: Previously discovered relationship types.
        max_body_chars: Body truncation limit.

    Returns:
        Prompt text ending with the JSON opening brace.
    """
    return f"""### ROLE
You are a headless Knowledge Graph Extraction Service. You output ONLY valid JSON. No conversational filler, no preamble, no markdown formatting.

### ONTOLOGY
Types: [{", ".join(entity_types)}]
Relationships: [{", ".join(relationship_types)}]

### INPUT EMAIL
From: {sender}
To: {recipients}
Subject: {subject}
Content: {truncate_body(body, max_body_chars)}

### TASK
1. Extract entities and relationships into the schema below.
2. Normalize names (e.g., "John Doe").
3. Use 'VERB_FORM' for predicates (e.g., 'WORKS_ON').
4. If a type is missing from the ontology, create a specific one.

### JSON SCHEMA
{{
  "analysis": "1-sentence summary of the email intent",
  "entities": [{{"id": "slug", "type": "type", "name": "Name", "properties": {{}}, "confidence": 0.0-1.0}}],
  "relationships": [{{"source_id": "slug", "target_id": "slug", "predicate": "VERB", "context": "reasoning"}}]
}}

### DATA OUTPUT
{RESPONSE_PREFIX}"""


def clean_json_response(response: str) -> str:
    """Extract the JSON object from a model response.

    A fenced ```json block wins. Otherwise the span runs from the last
    object that opens with an ``"analysis"`` key (or the first brace) to
    the last closing brace. Input without such a span is returned as is.
    """
    match = _FENCED_JSON.search(response)
    if match:
        return match.group(1).strip()

    start = response.rfind(_ANALYSIS_OBJECT_START)
    if start == -1:
        start = response.find("{")

    end = response.rfind("}")
    if start >= 0 and end > start:
        return response[start : end + 1]
    return response


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_entity(raw: Any) -> ExtractedEntity | None:
    if not isinstance(raw, dict):
        return None
    entity_type = str(raw.get("type") or "").strip()
    name = str(raw.get("name") or "").strip()
    slug = str(raw.get("id") or "").strip()
    if not entity_type or not (name or slug):
        return None
    properties = raw.get("properties")
    return ExtractedEntity(
        id=slug or name,
        type=entity_type,
        name=name or slug,
        properties=dict(properties) if isinstance(properties, dict) else {},
        confidence=_as_float(raw.get("confidence")),
    )


def _parse_relationship(raw: Any) -> ExtractedRelationship | None:
    if not isinstance(raw, dict):
        return None
    source_id = str(raw.get("source_id") or "").strip()
    target_id = str(raw.get("target_id") or "").strip()
    predicate = str(raw.get("predicate") or "").strip()
    if not source_id or not target_id or not predicate:
        return None
    return ExtractedRelationship(
        source_id=source_id,
        target_id=target_id,
        predicate=predicate,
        context=str(raw.get("context") or ""),
    )


def parse_extraction_result(response: str) -> ExtractionResult:
    """Parse a model continuation into an ExtractionResult.

    The prompt's opening brace is restored unless the model repeated it.
    Malformed entity or relationship entries are dropped individually.

    Raises:
        ExtractionParseError: If no JSON object can be decoded.
    """
    text = response.strip()
    if not text.startswith(("{", "```")):
        text = RESPONSE_PREFIX + text

    cleaned = clean_json_response(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"model response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionParseError(f"expected a JSON object, got {type(data).__name__}")

    entities = [e for e in (_parse_entity(raw) for raw in data.get("entities") or []) if e is not None]
    relationships = [
        r for r in (_parse_relationship(raw) for raw in data.get("relationships") or []) if r is not None
    ]
    dropped = len(data.get("entities") or []) - len(entities)
    if dropped:
        logger.debug("Dropped %d malformed extracted entities", dropped)

    return ExtractionResult(
        analysis=str(data.get("analysis") or ""),
        entities=entities,
        relationships=relationships,
    )
