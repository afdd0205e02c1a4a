"""Tests for the extraction prompt and response parsing."""

from __future__ import annotations

import pytest

from mailgraph.extraction.prompts import (
    TRUNCATION_MARKER,
    ExtractionParseError,
    build_extraction_prompt,
    clean_json_response,
    parse_extraction_result,
    truncate_body,
)


class TestBuildPrompt:
    """Test suite for prompt construction."""

    def test_contains_headers_and_ontology(self) -> None:
        prompt = build_extraction_prompt(
            "alice@enron.com",
            "bob@enron.com, carol@enron.com",
            "Q3 gas trading",
            "Numbers attached.",
            ["person", "project"],
            ["WORKS_ON"],
        )

        assert "From: alice@enron.com" in prompt
        assert "To: bob@enron.com, carol@enron.com" in prompt
        assert "Subject: Q3 gas trading" in prompt
        assert "Types: [person, project]" in prompt
        assert "Relationships: [WORKS_ON]" in prompt
        assert prompt.endswith("### DATA OUTPUT\n{")

    def test_empty_ontology(self) -> None:
        prompt = build_extraction_prompt("a", "b", "s", "body", [], [])
        assert "Types: []" in prompt

    def test_body_truncated(self) -> None:
        prompt = build_extraction_prompt("a", "b", "s", "x" * 50, [], [], max_body_chars=10)
        assert f"Content: {'x' * 10}{TRUNCATION_MARKER}\n" in prompt


class TestTruncateBody:
    """Test suite for body truncation."""

    def test_short_body_unchanged(self) -> None:
        assert truncate_body("hello", 10) == "hello"

    def test_exact_limit_unchanged(self) -> None:
        assert truncate_body("x" * 10, 10) == "x" * 10

    def test_long_body(self) -> None:
        assert truncate_body("x" * 11, 10) == "x" * 10 + TRUNCATION_MARKER


class TestCleanJsonResponse:
    """Test suite for JSON span extraction."""

    def test_fenced_block(self) -> None:
        text = 'Sure!\n```json\n{"analysis": "x"}\n```\nDone.'
        assert clean_json_response(text) == '{"analysis": "x"}'

    def test_last_analysis_object_wins(self) -> None:
        text = '{"draft": 1}\n{\n  "analysis": "final"}'
        assert clean_json_response(text) == '{\n  "analysis": "final"}'

    def test_trailing_prose_removed(self) -> None:
        assert clean_json_response('{"a": 1} hope this helps') == '{"a": 1}'

    def test_no_object(self) -> None:
        assert clean_json_response("no json here") == "no json here"


class TestParseExtractionResult:
    """Test suite for parsing model continuations."""

    def test_continuation_without_brace(self) -> None:
        response = (
            '"analysis": "Budget review", '
            '"entities": [{"id": "dabhol", "type": "project", "name": "Dabhol", "confidence": 0.9}], '
            '"relationships": [{"source_id": "jeff", "target_id": "dabhol", "predicate": "WORKS_ON", '
            '"context": "owns it"}]}'
        )

        result = parse_extraction_result(response)

        assert result.analysis == "Budget review"
        assert len(result.entities) == 1
        assert result.entities[0].id == "dabhol"
        assert result.entities[0].confidence == 0.9
        assert result.relationships[0].predicate == "WORKS_ON"
        assert result.relationships[0].context == "owns it"

    def test_model_repeated_brace(self) -> None:
        result = parse_extraction_result('{"analysis": "x", "entities": [], "relationships": []}')
        assert result.analysis == "x"

    def test_fenced_response(self) -> None:
        result = parse_extraction_result('```json\n{"analysis": "x", "entities": []}\n```')
        assert result.analysis == "x"
        assert result.relationships == []

    def test_malformed_entries_dropped(self) -> None:
        response = (
            '"entities": ['
            '{"type": "project", "name": "Dabhol", "confidence": "high"}, '
            '{"name": "no type"}, '
            '"not an object", '
            '{"id": "gas", "type": "concept"}'
            '], "relationships": [{"source_id": "a"}]}'
        )

        result = parse_extraction_result(response)

        assert [(e.id, e.name) for e in result.entities] == [("Dabhol", "Dabhol"), ("gas", "gas")]
        assert result.entities[0].confidence == 0.0
        assert result.relationships == []

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(ExtractionParseError):
            parse_extraction_result("I could not find any entities.")

    def test_non_object_raises(self) -> None:
        with pytest.raises(ExtractionParseError):
            parse_extraction_result("```json\n[1, 2]\n```")
