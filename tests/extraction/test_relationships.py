"""Tests for header and extracted relationship synthesis."""

from __future__ import annotations

import pytest

from mailgraph.extraction.prompts import ExtractedRelationship
from mailgraph.extraction.relationships import (
    COMMUNICATES_WITH,
    MENTIONS,
    RECEIVED,
    SENT,
    RelationshipSynthesizer,
    plan_extracted_edges,
    plan_header_edges,
)
from mailgraph.graph.types import Document, NodeKind, ValidationError


@pytest.fixture
def synthesizer(store) -> RelationshipSynthesizer:
    return RelationshipSynthesizer(store)


async def _persons(store, *addresses: str) -> dict:
    return {address: await store.add_node(address) for address in addresses}


class TestHeaderEdges:
    """Test suite for SENT / RECEIVED / MENTIONS / COMMUNICATES_WITH."""

    @pytest.mark.asyncio
    async def test_one_sender_two_recipients(self, store, synthesizer) -> None:
        doc = await store.create_document(
            Document(message_id="m1", sender="a@enron.com", to=["b@enron.com", "c@enron.com"])
        )
        nodes = await _persons(store, "a@enron.com", "b@enron.com", "c@enron.com")

        edges = await synthesizer.synthesize(doc, nodes)

        assert len(edges) == 5
        assert len(store.edges_of_type(SENT)) == 1
        assert len(store.edges_of_type(RECEIVED)) == 2
        communicates = store.edges_of_type(COMMUNICATES_WITH)
        assert len(communicates) == 2
        assert {e.to_ref.id for e in communicates} == {nodes["b@enron.com"].id, nodes["c@enron.com"].id}
        assert all(e.confidence == 0.9 for e in communicates)
        assert all(e.properties == {"via_email": "m1"} for e in communicates)

    @pytest.mark.asyncio
    async def test_edge_directions(self, store) -> None:
        doc = await store.create_document(Document(message_id="m1", sender="a@enron.com", to=["b@enron.com"]))
        nodes = await _persons(store, "a@enron.com", "b@enron.com")

        planned = {e.type: e for e in plan_header_edges(doc, nodes)}

        assert planned[SENT].from_ref == nodes["a@enron.com"].ref
        assert planned[SENT].to_ref.kind is NodeKind.DOCUMENT
        assert planned[RECEIVED].from_ref == doc.ref
        assert planned[RECEIVED].to_ref == nodes["b@enron.com"].ref
        assert planned[SENT].timestamp == doc.timestamp

    @pytest.mark.asyncio
    async def test_cc_and_bcc_receive(self, store) -> None:
        doc = await store.create_document(
            Document(message_id="m1", sender="a@enron.com", cc=["b@enron.com"], bcc=["c@enron.com"])
        )
        nodes = await _persons(store, "a@enron.com", "b@enron.com", "c@enron.com")

        planned = plan_header_edges(doc, nodes)

        assert sum(1 for e in planned if e.type == RECEIVED) == 2

    @pytest.mark.asyncio
    async def test_recipient_lookup_is_case_insensitive(self, store) -> None:
        doc = await store.create_document(Document(message_id="m1", sender="A@Enron.com", to=["B@ENRON.COM"]))
        nodes = await _persons(store, "a@enron.com", "b@enron.com")

        planned = plan_header_edges(doc, nodes)

        assert [e.type for e in planned] == [SENT, RECEIVED, COMMUNICATES_WITH]

    @pytest.mark.asyncio
    async def test_self_addressed_skips_communication(self, store) -> None:
        doc = await store.create_document(Document(message_id="m1", sender="a@enron.com", to=["a@enron.com"]))
        nodes = await _persons(store, "a@enron.com")

        planned = plan_header_edges(doc, nodes)

        assert [e.type for e in planned] == [SENT, RECEIVED]

    @pytest.mark.asyncio
    async def test_no_recipients(self, store) -> None:
        doc = await store.create_document(Document(message_id="m1", sender="a@enron.com", to=["", "  "]))
        nodes = await _persons(store, "a@enron.com")

        planned = plan_header_edges(doc, nodes)

        assert [e.type for e in planned] == [SENT]

    @pytest.mark.asyncio
    async def test_mentions_non_person_nodes(self, store) -> None:
        doc = await store.create_document(Document(message_id="m1", sender="a@enron.com"))
        nodes = await _persons(store, "a@enron.com")
        project = await store.add_node("project:dabhol", "project", confidence=0.8)
        nodes["project:dabhol"] = project
        nodes["dabhol"] = project

        mentions = [e for e in plan_header_edges(doc, nodes) if e.type == MENTIONS]

        assert len(mentions) == 1
        assert mentions[0].to_ref == project.ref
        assert mentions[0].confidence == 0.8

    def test_unpersisted_document_rejected(self) -> None:
        with pytest.raises(ValidationError):
            plan_header_edges(Document(message_id="m1"), {})

    @pytest.mark.asyncio
    async def test_edge_failures_tolerated(self, store, synthesizer) -> None:
        doc = await store.create_document(
            Document(message_id="m1", sender="a@enron.com", to=["b@enron.com", "c@enron.com"])
        )
        nodes = await _persons(store, "a@enron.com", "b@enron.com", "c@enron.com")
        store.fail_edge_types = {RECEIVED}

        edges = await synthesizer.synthesize(doc, nodes)

        assert [e.type for e in edges] == [SENT, COMMUNICATES_WITH, COMMUNICATES_WITH]
        assert store.edges_of_type(RECEIVED) == []


class TestExtractedEdges:
    """Test suite for model-proposed relationships."""

    @pytest.mark.asyncio
    async def test_confidence_is_product_of_endpoints(self, store, synthesizer) -> None:
        doc = await store.create_document(Document(message_id="m1"))
        skilling = await store.add_node("person:jeff skilling", confidence=0.9)
        dabhol = await store.add_node("project:dabhol", "project", confidence=0.8)

        edges = await synthesizer.synthesize_extracted(
            doc,
            [ExtractedRelationship("jeff", "dabhol", "WORKS_ON", "asked for the numbers")],
            {"jeff": skilling, "dabhol": dabhol},
        )

        assert len(edges) == 1
        assert edges[0].type == "WORKS_ON"
        assert edges[0].confidence == pytest.approx(0.72)
        assert edges[0].properties == {"context": "asked for the numbers"}
        assert edges[0].from_ref == skilling.ref

    @pytest.mark.asyncio
    async def test_unmatched_endpoints_dropped(self, store) -> None:
        doc = await store.create_document(Document(message_id="m1"))
        dabhol = await store.add_node("project:dabhol", "project")

        planned = plan_extracted_edges(
            doc,
            [ExtractedRelationship("ghost", "dabhol", "WORKS_ON")],
            {"dabhol": dabhol},
        )

        assert planned == []
