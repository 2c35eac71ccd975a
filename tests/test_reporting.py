"""Tests for per-file level reports."""

import json

from infrasim.models.config import ValidatorConfig
from infrasim.reporting.report import format_report, summarize, validate_directory, validate_file


def _make_document() -> dict:
    return {
        "id": "report-level",
        "nodes": [
            {"id": "gw", "kind": "gateway", "capacity": 100, "physics": {}},
            {"id": "app", "kind": "compute", "capacity": 100, "physics": {}},
        ],
        "edges": [{"source": "gw", "target": "app"}],
        "flows": [{"name": "main", "volume": 10, "path": ["gw", "app"]}],
        "jobs": [],
        "incidents": [],
    }


def _write_levels(directory):
    valid = _make_document()
    invalid = _make_document()
    invalid["nodes"][1]["capacity"] = 0
    (directory / "b-valid.json").write_text(json.dumps(valid))
    (directory / "c-invalid.json").write_text(json.dumps(invalid))
    (directory / "a-broken.json").write_text("{not json")
    (directory / "notes.txt").write_text("ignored")


class TestValidateFile:
    def test_valid_file(self, tmp_path):
        path = tmp_path / "level.json"
        path.write_text(json.dumps(_make_document()))
        report = validate_file(path)
        assert report.ok
        assert report.level_id == "report-level"
        assert format_report(report) == ["level.json is valid."]

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        report = validate_file(path)
        assert report.parse_failed
        assert report.errors[0].path == "document"
        assert format_report(report)[0].startswith("Failed to parse broken.json: invalid JSON")

    def test_nan_literal_is_a_parse_failure(self, tmp_path):
        path = tmp_path / "nan.json"
        path.write_text(json.dumps(_make_document()).replace('"volume": 10', '"volume": NaN'))
        report = validate_file(path)
        assert report.parse_failed
        assert format_report(report) == [
            "Failed to parse nan.json: invalid JSON: non-finite number NaN is not allowed"
        ]

    def test_missing_file(self, tmp_path):
        report = validate_file(tmp_path / "missing.json")
        assert not report.ok
        assert report.errors[0].message.startswith("cannot read file")

    def test_invalid_file_lists_every_error(self, tmp_path):
        doc = _make_document()
        doc["nodes"][1]["capacity"] = 0
        doc["flows"][0]["volume"] = -5
        path = tmp_path / "invalid.json"
        path.write_text(json.dumps(doc))
        lines = format_report(validate_file(path))
        assert lines[0] == "Errors in invalid.json:"
        assert lines[1].startswith("  - [nodes[1].capacity]: capacity must be positive")
        assert lines[2].startswith("  - [flows[0].volume]: volume must be >= 0")
        assert len(lines) == 3

    def test_config_is_applied(self, tmp_path):
        doc = _make_document()
        doc["incidents"].append({
            "name": "slow", "type": "component", "trigger_probability_per_tick": 0.1,
            "warning_delay_ticks": 5, "duration_ticks": 10, "targets": ["app"],
            "impacts": [{"metric": "latency", "direction": "amplify", "magnitude": 2}],
        })
        path = tmp_path / "level.json"
        path.write_text(json.dumps(doc))
        assert validate_file(path).ok
        assert not validate_file(path, ValidatorConfig(max_lifecycle_ticks=10)).ok


class TestValidateDirectory:
    def test_reports_in_file_name_order(self, tmp_path):
        _write_levels(tmp_path)
        reports = validate_directory(tmp_path)
        assert [r.file for r in reports] == ["a-broken.json", "b-valid.json", "c-invalid.json"]
        assert [r.ok for r in reports] == [False, True, False]

    def test_summary(self, tmp_path):
        _write_levels(tmp_path)
        summary = summarize(validate_directory(tmp_path))
        assert (summary.files, summary.passed, summary.failed) == (3, 1, 2)
        assert not summary.ok

    def test_empty_directory(self, tmp_path):
        summary = summarize(validate_directory(tmp_path))
        assert summary.files == 0
        assert summary.ok
