"""Tests for the Semantic Validator and domain rules."""

import json
from pathlib import Path

import pytest

from infrasim.models.config import ValidatorConfig
from infrasim.models.effects import Impact
from infrasim.models.validation import ValidationError
from infrasim.validation.pipeline import validate_level
from infrasim.validation.semantic import SemanticValidator, check_magnitude
from infrasim.validation.structural import StructuralValidator

LEVELS_DIR = Path(__file__).resolve().parent.parent / "levels"


def _make_document() -> dict:
    return {
        "id": "tiny-shop",
        "name": "Tiny Shop",
        "nodes": [
            {"id": "gw", "kind": "gateway", "capacity": 1000, "physics": {}},
            {"id": "app", "kind": "compute", "capacity": 500, "physics": {}},
            {"id": "db", "kind": "database", "capacity": 1000, "physics": {}},
            {"id": "disk", "kind": "storage", "capacity": 100, "physics": {}},
        ],
        "edges": [
            {"source": "gw", "target": "app"},
            {"source": "app", "target": "db"},
            {"source": "app", "target": "disk"},
        ],
        "flows": [
            {"name": "main", "volume": 100, "path": ["gw", "app", "db"]},
        ],
        "jobs": [],
        "incidents": [],
    }


def _make_incident(**overrides) -> dict:
    incident = {
        "name": "slow-db",
        "type": "component",
        "trigger_probability_per_tick": 0.01,
        "warning_delay_ticks": 0,
        "duration_ticks": 10,
        "targets": ["db"],
        "impacts": [{"metric": "latency", "mode": "multiply", "direction": "amplify", "magnitude": 3}],
    }
    incident.update(overrides)
    return incident


def _chain_document(length: int) -> dict:
    """A gateway followed by a straight line of compute nodes."""
    ids = [f"svc-{i}" for i in range(length)]
    nodes = [{"id": ids[0], "kind": "gateway", "capacity": 1000, "physics": {}}]
    nodes += [{"id": node_id, "kind": "compute", "capacity": 1000, "physics": {}} for node_id in ids[1:]]
    return {
        "id": "long-chain",
        "nodes": nodes,
        "edges": [{"source": a, "target": b} for a, b in zip(ids, ids[1:])],
        "jobs": [],
        "incidents": [],
    }


def _paths(errors):
    return [e.path for e in errors]


class TestExampleLevels:
    @pytest.mark.parametrize("name", ["ecommerce-megastore.json", "archive-storage.json"])
    def test_shipped_levels_are_valid(self, name):
        document = json.loads((LEVELS_DIR / name).read_text())
        assert validate_level(document) == []


class TestNodeRules:
    def test_non_positive_capacity(self):
        doc = _make_document()
        doc["nodes"][1]["capacity"] = 0
        assert _paths(validate_level(doc)) == ["nodes[1].capacity"]

    def test_negative_physics(self):
        doc = _make_document()
        doc["nodes"][1]["physics"]["base_latency_ms"] = -5
        assert _paths(validate_level(doc)) == ["nodes[1].physics.base_latency_ms"]

    def test_threshold_out_of_range(self):
        doc = _make_document()
        doc["nodes"][2]["physics"]["critical_threshold"] = 150
        assert _paths(validate_level(doc)) == ["nodes[2].physics.critical_threshold"]

    def test_storage_cannot_use_utilization_basis(self):
        doc = _make_document()
        doc["nodes"][3]["physics"]["threshold_basis"] = "utilization"
        errors = validate_level(doc)
        assert _paths(errors) == ["nodes[3].physics.threshold_basis"]
        assert "fullness" in errors[0].message

    def test_fullness_basis_only_for_storage(self):
        doc = _make_document()
        doc["nodes"][2]["physics"]["threshold_basis"] = "fullness"
        assert _paths(validate_level(doc)) == ["nodes[2].physics.threshold_basis"]

    def test_consumption_rate_only_for_storage(self):
        doc = _make_document()
        doc["nodes"][1]["physics"]["consumption_rate"] = 0.5
        assert _paths(validate_level(doc)) == ["nodes[1].physics.consumption_rate"]

    def test_alert_rules(self):
        doc = _make_document()
        doc["nodes"][2]["alerts"] = [
            {"name": "slow", "metric": "latency", "warning": 500, "critical": 100},
            {"name": "slow", "metric": "storage_usage", "warning": 1, "critical": 2},
        ]
        errors = validate_level(doc)
        assert _paths(errors) == [
            "nodes[2].alerts[0]",
            "nodes[2].alerts[1].name",
            "nodes[2].alerts[1].metric",
        ]

    def test_below_alert_ordering(self):
        doc = _make_document()
        doc["nodes"][3]["alerts"] = [
            {"name": "idle", "metric": "requests", "warning": 5, "critical": 10, "direction": "below"},
        ]
        assert _paths(validate_level(doc)) == ["nodes[3].alerts[0]"]


class TestScalingRules:
    def test_valid_scaling_fields(self):
        doc = _make_document()
        doc["budget"] = 1000
        doc["nodes"][1].update({"cost_per_unit": 0.5, "min_capacity": 100, "max_capacity": 1000})
        assert validate_level(doc) == []

    def test_negative_cost_and_delay(self):
        doc = _make_document()
        doc["nodes"][1].update({"cost_per_unit": -1, "apply_delay_ticks": -2})
        assert _paths(validate_level(doc)) == ["nodes[1].cost_per_unit", "nodes[1].apply_delay_ticks"]

    def test_inverted_range(self):
        doc = _make_document()
        doc["nodes"][1].update({"min_capacity": 800, "max_capacity": 200})
        errors = validate_level(doc)
        assert _paths(errors) == ["nodes[1].max_capacity"]

    def test_capacity_outside_range(self):
        doc = _make_document()
        doc["nodes"][1].update({"min_capacity": 600})
        errors = validate_level(doc)
        assert _paths(errors) == ["nodes[1].capacity"]
        assert errors[0].message == "capacity 500.0 lies outside the scaling range [600.0, unbounded]"

    def test_negative_base_variance(self):
        doc = _make_document()
        doc["flows"][0]["base_variance"] = -3
        assert _paths(validate_level(doc)) == ["flows[0].base_variance"]

    def test_budget_must_be_positive(self):
        doc = _make_document()
        doc["budget"] = 0
        assert _paths(validate_level(doc)) == ["budget"]

    def test_initial_spend_over_budget(self):
        doc = _make_document()
        doc["budget"] = 200
        doc["nodes"][1]["cost_per_unit"] = 0.5
        errors = validate_level(doc)
        assert _paths(errors) == ["budget"]
        assert errors[0].message == "initial spend of 250 per tick exceeds the budget of 200"


class TestEdgeAndFlowRules:
    def test_cycle_detected(self):
        doc = _make_document()
        doc["edges"].append({"source": "db", "target": "gw"})
        errors = validate_level(doc)
        assert len(errors) == 1
        assert errors[0].path == "edges"
        assert errors[0].message == "circular traffic dependency: gw -> app -> db -> gw"

    def test_long_dependency_chain(self):
        doc = _chain_document(1500)
        assert validate_level(doc) == []

    def test_cycle_closing_a_long_chain(self):
        doc = _chain_document(1500)
        doc["edges"].append({"source": "svc-1499", "target": "svc-0"})
        errors = validate_level(doc)
        assert _paths(errors) == ["edges"]
        assert errors[0].message.startswith("circular traffic dependency: svc-0 -> svc-1 -> ")
        assert errors[0].message.endswith("svc-1498 -> svc-1499 -> svc-0")

    def test_self_loop(self):
        doc = _make_document()
        doc["edges"].append({"source": "db", "target": "db"})
        assert _paths(validate_level(doc)) == ["edges[3]"]

    def test_non_positive_multiplier(self):
        doc = _make_document()
        doc["edges"][1]["multiplier"] = 0
        assert _paths(validate_level(doc)) == ["edges[1].multiplier"]

    def test_unrealizable_path(self):
        doc = _make_document()
        doc["flows"][0]["path"] = ["gw", "db"]
        errors = validate_level(doc)
        assert _paths(errors) == ["flows[0].path[1]"]
        assert "no edge from 'gw' to 'db'" in errors[0].message

    def test_flow_must_enter_at_gateway(self):
        doc = _make_document()
        doc["flows"][0]["path"] = ["app", "db"]
        assert _paths(validate_level(doc)) == ["flows[0].path[0]"]

    def test_duplicate_flow_names(self):
        doc = _make_document()
        doc["flows"].append({"name": "main", "volume": 5, "path": ["gw", "app"]})
        errors = validate_level(doc)
        assert _paths(errors) == ["flows[1].name"]


class TestJobRules:
    def _with_job(self, **effect) -> dict:
        doc = _make_document()
        doc["jobs"].append({"name": "job", "target": "disk", "interval_ticks": 10, "effect": effect})
        return doc

    def test_valid_storage_cleanup(self):
        doc = self._with_job(kind="metric", metric="storage_usage", mode="percent",
                             direction="dampen", magnitude=20)
        assert validate_level(doc) == []

    def test_interval_must_be_positive(self):
        doc = self._with_job(kind="inject", volume=10)
        doc["jobs"][0]["interval_ticks"] = 0
        assert _paths(validate_level(doc)) == ["jobs[0].interval_ticks"]

    def test_interval_beyond_horizon(self):
        doc = self._with_job(kind="inject", volume=10)
        doc["jobs"][0]["interval_ticks"] = 500
        errors = validate_level(doc, ValidatorConfig(horizon_ticks=100))
        assert _paths(errors) == ["jobs[0].interval_ticks"]

    def test_metric_not_exposed_by_target(self):
        doc = self._with_job(kind="metric", metric="connections", direction="amplify", magnitude=2)
        errors = validate_level(doc)
        assert _paths(errors) == ["jobs[0].effect.metric"]
        assert "storage node 'disk'" in errors[0].message

    def test_storage_add_beyond_capacity(self):
        doc = self._with_job(kind="metric", metric="storage_usage", mode="add",
                             direction="amplify", magnitude=500)
        assert _paths(validate_level(doc)) == ["jobs[0].effect.magnitude"]


class TestIncidentRules:
    def test_zero_probability_never_fires(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(trigger_probability_per_tick=0))
        errors = validate_level(doc)
        assert len(errors) == 1
        assert errors[0].path == "incidents[0].trigger_probability_per_tick"
        assert "never fires" in errors[0].message

    def test_probability_above_one(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(trigger_probability_per_tick=1.5))
        assert _paths(validate_level(doc)) == ["incidents[0].trigger_probability_per_tick"]

    def test_negative_delay_and_zero_duration(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(warning_delay_ticks=-1, duration_ticks=0))
        assert _paths(validate_level(doc)) == [
            "incidents[0].warning_delay_ticks",
            "incidents[0].duration_ticks",
        ]

    def test_lifecycle_bound_is_configurable(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(warning_delay_ticks=10, duration_ticks=20))
        assert validate_level(doc) == []
        errors = validate_level(doc, ValidatorConfig(max_lifecycle_ticks=25))
        assert _paths(errors) == ["incidents[0]"]
        assert "30" in errors[0].message

    def test_traffic_incident_only_touches_volume(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(
            type="traffic", targets=[], flow="main",
            impacts=[{"metric": "latency", "direction": "amplify", "magnitude": 2}],
        ))
        assert _paths(validate_level(doc)) == ["incidents[0].impacts[0].metric"]

    def test_component_metric_checked_per_target(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(
            targets=["db", "disk"],
            impacts=[{"metric": "connections", "direction": "amplify", "magnitude": 2}],
        ))
        errors = validate_level(doc)
        assert _paths(errors) == ["incidents[0].impacts[0].metric"]
        assert "'disk'" in errors[0].message

    def test_amplify_below_one_rejected(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(
            impacts=[{"metric": "latency", "mode": "multiply", "direction": "amplify", "magnitude": 0.5}],
        ))
        assert _paths(validate_level(doc)) == ["incidents[0].impacts[0].magnitude"]

    def test_dampen_below_one_accepted(self):
        doc = _make_document()
        doc["incidents"].append(_make_incident(
            impacts=[{"metric": "latency", "mode": "multiply", "direction": "dampen", "magnitude": 0.5}],
        ))
        assert validate_level(doc) == []


class TestCheckMagnitude:
    @pytest.mark.parametrize("mode,direction,magnitude", [
        ("multiply", "amplify", 1),
        ("multiply", "amplify", 10),
        ("multiply", "dampen", 0.2),
        ("percent", "dampen", 100),
        ("percent", "amplify", 250),
        ("add", "dampen", 5),
    ])
    def test_accepted(self, mode, direction, magnitude):
        impact = Impact(metric="latency", mode=mode, direction=direction, magnitude=magnitude)
        assert check_magnitude(impact) is None

    @pytest.mark.parametrize("mode,direction,magnitude", [
        ("multiply", "amplify", 0.9),
        ("multiply", "dampen", 0),
        ("multiply", "dampen", 1.5),
        ("percent", "dampen", 120),
        ("add", "amplify", -3),
    ])
    def test_rejected(self, mode, direction, magnitude):
        impact = Impact(metric="latency", mode=mode, direction=direction, magnitude=magnitude)
        assert check_magnitude(impact) is not None


class TestSemanticValidator:
    def setup_method(self):
        self.level = StructuralValidator().validate(_make_document()).level

    def test_none_raises(self):
        with pytest.raises(TypeError):
            SemanticValidator().validate(None)

    def test_custom_rule_runs_last(self):
        validator = SemanticValidator()
        validator.register_rule(
            lambda level, config: [ValidationError(path="id", message=f"{level.id} is reserved")]
        )
        errors = validator.validate(self.level)
        assert [str(e) for e in errors] == ["[id]: tiny-shop is reserved"]

    def test_skipped_when_structure_is_broken(self):
        doc = _make_document()
        doc["edges"].append({"source": "app", "target": "ghost"})
        doc["incidents"].append(_make_incident(trigger_probability_per_tick=0))
        errors = validate_level(doc)
        assert _paths(errors) == ["edges[3].target"]

    def test_deterministic(self):
        doc = _make_document()
        doc["nodes"][1]["capacity"] = -1
        doc["edges"].append({"source": "db", "target": "gw"})
        assert validate_level(doc) == validate_level(doc)
