"""Tests for parsing and the validation pipeline."""

import json

import pytest

from infrasim.models.level import Level
from infrasim.validation.pipeline import (
    LevelValidationError,
    load_level,
    parse_level_text,
    validate_document,
    validate_level,
)


def _make_document() -> dict:
    return {
        "id": "pipeline",
        "nodes": [
            {"id": "gw", "kind": "gateway", "capacity": 100, "physics": {}},
            {"id": "app", "kind": "compute", "capacity": 100, "physics": {}},
        ],
        "edges": [{"source": "gw", "target": "app"}],
        "flows": [{"name": "main", "volume": 10, "path": ["gw", "app"]}],
        "jobs": [],
        "incidents": [],
    }


class TestParseLevelText:
    def test_valid_json(self):
        result = parse_level_text(json.dumps(_make_document()))
        assert result.ok
        assert result.document["id"] == "pipeline"

    def test_bytes_input(self):
        result = parse_level_text(json.dumps(_make_document()).encode("utf-8"))
        assert result.ok

    def test_invalid_json(self):
        result = parse_level_text('{"id": "broken",')
        assert not result.ok
        assert result.error.startswith("invalid JSON")
        assert result.document is None

    def test_non_finite_constants_rejected(self):
        for constant in ("NaN", "Infinity", "-Infinity"):
            result = parse_level_text('{"id": "x", "nodes": [{"capacity": ' + constant + '}]}')
            assert not result.ok
            assert result.error == f"invalid JSON: non-finite number {constant} is not allowed"
            assert result.document is None

    def test_overflowing_literal_rejected(self):
        result = parse_level_text('{"id": "x", "capacity": 1e999}')
        assert result.error == "invalid JSON: number 1e999 is out of range"

    def test_large_finite_numbers_still_parse(self):
        result = parse_level_text('{"id": "x", "capacity": 1e308}')
        assert result.ok
        assert result.document["capacity"] == 1e308

    def test_invalid_encoding(self):
        result = parse_level_text(b"\xff\xfe{")
        assert result.error.startswith("invalid encoding")

    def test_non_object_root(self):
        result = parse_level_text("[1, 2]")
        assert not result.ok
        assert "must be a JSON object" in result.error


class TestPipeline:
    def test_load_valid_level(self):
        level = load_level(_make_document())
        assert isinstance(level, Level)
        assert level.name == "pipeline"

    def test_load_invalid_level_raises_with_errors(self):
        doc = _make_document()
        doc["nodes"][1]["capacity"] = 0
        doc["flows"][0]["volume"] = -1
        with pytest.raises(LevelValidationError) as exc_info:
            load_level(doc)
        assert [e.path for e in exc_info.value.errors] == ["nodes[1].capacity", "flows[0].volume"]
        assert "nodes[1].capacity" in str(exc_info.value)

    def test_validate_document_drops_level_on_semantic_errors(self):
        doc = _make_document()
        doc["nodes"][1]["capacity"] = 0
        outcome = validate_document(doc)
        assert outcome.level is None
        assert not outcome.ok

    def test_validate_level_returns_empty_list_for_valid_level(self):
        assert validate_level(_make_document()) == []

    def test_validate_level_does_not_mutate_input(self):
        doc = _make_document()
        snapshot = json.dumps(doc, sort_keys=True)
        validate_level(doc)
        assert json.dumps(doc, sort_keys=True) == snapshot

    def test_non_finite_values_never_reach_semantic_rules(self):
        doc = _make_document()
        doc["nodes"][1]["capacity"] = float("nan")
        doc["flows"][0]["volume"] = float("inf")
        errors = validate_level(doc)
        assert [e.path for e in errors] == ["nodes[1].capacity", "flows[0].volume"]
        assert all("finite number" in e.message for e in errors)
