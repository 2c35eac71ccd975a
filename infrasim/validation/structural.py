"""
Structural Validator — schema-level checks on a raw level document.

Behavioral Contract:
- Accepts a parsed, untyped document (the mapping produced by JSON parsing)
- Returns a ValidationOutcome: the typed Level when the document is clean,
  plus every structural error found, in check order
- Never raises for malformed input; raises TypeError only when called
  without a document at all
- Never short-circuits: a single run reports the complete set of problems

Field presence and types come from the level models themselves: each item is
validated against its model and pydantic's errors are mapped onto document
paths. Only what the models cannot express is checked by hand.

Checks, in order:
  1. Top-level shape (id, collections present and list-typed)
  2. Per-node fields, kind and kind-specific physics
  3. Node id uniqueness (first occurrence wins)
  4. Per-edge fields
  5. Per-flow, per-job and per-incident fields
  6. Cross-reference pass over every node and flow reference
"""

import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from infrasim.models.effects import InjectEffect, MetricEffect
from infrasim.models.fields import Name, Number, Text
from infrasim.models.level import (
    CONNECTION_FIELDS,
    Edge,
    Incident,
    IncidentType,
    Job,
    Level,
    Node,
    NodeKind,
    TrafficFlow,
)
from infrasim.models.validation import ValidationError, ValidationOutcome

logger = logging.getLogger(__name__)

EFFECT_MODELS = {
    "inject": InjectEffect,
    "metric": MetricEffect,
}


class LevelShell(BaseModel):
    """Top-level fields of a level document; collection items are checked one by one."""

    id: Name
    name: Optional[Name] = None
    description: Optional[Text] = None
    budget: Optional[Number] = None
    nodes: List[Any]
    edges: List[Any]
    flows: Optional[List[Any]] = None
    jobs: List[Any]
    incidents: List[Any]


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _is_name(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def format_loc(prefix: str, loc: Tuple) -> str:
    """Render a pydantic error location under a document path prefix."""
    path = prefix
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f".{part}"
        else:
            path = str(part)
    return path


def format_message(err: Dict[str, Any]) -> str:
    """Render one pydantic error. A null required field reads as a missing one."""
    field = err["loc"][-1] if err["loc"] else None
    type_error = err["type"].endswith("_type")
    if err["type"] == "missing" or (type_error and err.get("input") is None and isinstance(field, str)):
        return f"missing required field '{field}'"
    if type_error:
        return f"{err['msg']}, got {_describe(err.get('input'))}"
    return err["msg"]


def _enum_values(enum_cls, exclude=()) -> List[str]:
    return [m.value for m in enum_cls if m not in exclude]


class _Collector:
    """Accumulates errors in insertion order."""

    def __init__(self):
        self.errors: List[ValidationError] = []

    def add(self, path: str, message: str) -> None:
        self.errors.append(ValidationError(path=path, message=message))

    def check_choice(self, raw: Mapping, name: str, allowed: List[str], path: str, label: str) -> bool:
        """Check a required string field against a closed set of values."""
        value = raw.get(name)
        field_path = f"{path}.{name}" if path else name
        if value is None:
            self.add(field_path, f"missing required field '{name}'")
            return False
        if not isinstance(value, str):
            self.add(field_path, f"{label} must be a string, got {_describe(value)}")
            return False
        if value not in allowed:
            self.add(
                field_path,
                f"unrecognized {label} '{value}' (expected one of: {', '.join(allowed)})",
            )
            return False
        return True

    def build(
        self,
        model: type,
        raw: Any,
        path: str,
        checked: Tuple[str, ...] = (),
    ) -> Optional[BaseModel]:
        """
        Construct a typed model, mapping any pydantic errors onto document paths.

        Errors under a field named in `checked` are dropped: the caller has
        already reported that field by hand.
        """
        if not isinstance(raw, Mapping):
            self.add(path, f"expected an object, got {_describe(raw)}")
            return None
        try:
            return model.model_validate(dict(raw))
        except PydanticValidationError as exc:
            for err in exc.errors():
                if err["loc"] and err["loc"][0] in checked:
                    continue
                self.add(format_loc(path, err["loc"]), format_message(err))
            return None


class StructuralValidator:
    """
    Checks a raw level document against the level schema and builds the typed Level.

    Stateless between calls: every validate() call uses a fresh collector.
    """

    def validate(self, document: Any) -> ValidationOutcome:
        if document is None:
            raise TypeError("StructuralValidator.validate() requires a document, got None")

        out = _Collector()
        refs: List[Tuple[str, str, str]] = []   # (path, "node" | "flow", referenced id)

        # 1. Top-level shape
        if not isinstance(document, Mapping):
            out.add("document", f"level document must be an object, got {_describe(document)}")
            return ValidationOutcome(errors=out.errors)

        shell = out.build(LevelShell, document, "")

        def collection(key: str) -> list:
            value = document.get(key)
            return value if isinstance(value, list) else []

        # 2 + 3. Nodes and id uniqueness
        nodes, node_ids = self._check_nodes(collection("nodes"), out)

        # 4. Edges
        edges = []
        for i, raw in enumerate(collection("edges")):
            path = f"edges[{i}]"
            edge = out.build(Edge, raw, path)
            if isinstance(raw, Mapping):
                for end in ("source", "target"):
                    if _is_name(raw.get(end)):
                        refs.append((f"{path}.{end}", "node", raw[end]))
            if edge is not None:
                edges.append(edge)

        # 5. Flows, jobs, incidents
        flows, flow_names = self._check_flows(collection("flows"), out, refs)
        jobs = self._check_jobs(collection("jobs"), out, refs)
        incidents = self._check_incidents(collection("incidents"), out, refs)

        # 6. Cross-reference pass
        for path, kind, ref in refs:
            known = node_ids if kind == "node" else flow_names
            if ref not in known:
                out.add(path, f"unresolved reference: {kind} '{ref}' is not declared")

        logger.debug(
            "Structural validation of level %r: %d error(s)",
            document.get("id"),
            len(out.errors),
        )

        if out.errors or shell is None:
            return ValidationOutcome(errors=out.errors)

        level = Level(
            id=shell.id,
            name=shell.name or shell.id,
            description=shell.description or "",
            budget=shell.budget,
            nodes=nodes,
            edges=edges,
            flows=flows,
            jobs=jobs,
            incidents=incidents,
        )
        return ValidationOutcome(level=level, errors=[])

    def _check_nodes(self, raw_nodes: list, out: _Collector) -> Tuple[List[Node], Set[str]]:
        nodes: List[Node] = []
        first_seen: Dict[str, int] = {}
        kinds = _enum_values(NodeKind, (NodeKind.UNRECOGNIZED,))

        for i, raw in enumerate(raw_nodes):
            path = f"nodes[{i}]"
            if not isinstance(raw, Mapping):
                out.add(path, f"expected an object, got {_describe(raw)}")
                continue

            ok = out.check_choice(raw, "kind", kinds, path, "node kind")
            node = out.build(Node, raw, path, checked=("kind",))

            physics = raw.get("physics")
            if raw.get("kind") == NodeKind.STORAGE.value and isinstance(physics, Mapping):
                ok = self._check_storage_physics(physics, f"{path}.physics", out) and ok

            node_id = raw.get("id")
            if _is_name(node_id):
                if node_id in first_seen:
                    out.add(
                        f"{path}.id",
                        f"duplicate node id '{node_id}' (first declared at nodes[{first_seen[node_id]}])",
                    )
                    continue
                first_seen[node_id] = i

            if ok and node is not None:
                nodes.append(node)

        return nodes, set(first_seen)

    def _check_storage_physics(self, physics: Mapping, path: str, out: _Collector) -> bool:
        ok = True
        for name in CONNECTION_FIELDS:
            if name in physics:
                out.add(
                    f"{path}.{name}",
                    f"storage nodes have no connection concept; remove '{name}'",
                )
                ok = False
        return ok

    def _check_flows(self, raw_flows: list, out: _Collector, refs: list) -> Tuple[List[TrafficFlow], Set[str]]:
        flows: List[TrafficFlow] = []
        names: Set[str] = set()

        for i, raw in enumerate(raw_flows):
            path = f"flows[{i}]"
            flow = out.build(TrafficFlow, raw, path)
            if not isinstance(raw, Mapping):
                continue
            if _is_name(raw.get("name")):
                names.add(raw["name"])

            hops = raw.get("path")
            for j, hop in enumerate(hops if isinstance(hops, list) else []):
                if _is_name(hop):
                    refs.append((f"{path}.path[{j}]", "node", hop))

            if flow is not None:
                flows.append(flow)

        return flows, names

    def _check_jobs(self, raw_jobs: list, out: _Collector, refs: list) -> List[Job]:
        jobs: List[Job] = []

        for i, raw in enumerate(raw_jobs):
            path = f"jobs[{i}]"
            job = out.build(Job, raw, path, checked=("effect",))
            if not isinstance(raw, Mapping):
                continue
            if _is_name(raw.get("target")):
                refs.append((f"{path}.target", "node", raw["target"]))

            # The effect is validated against the model its kind selects, so
            # errors land on jobs[i].effect.<field> rather than a union branch.
            effect = raw.get("effect")
            effect_path = f"{path}.effect"
            typed_effect = None
            if effect is None:
                out.add(effect_path, "missing required field 'effect'")
            elif not isinstance(effect, Mapping):
                out.add(effect_path, f"expected an object, got {_describe(effect)}")
            elif out.check_choice(effect, "kind", list(EFFECT_MODELS), effect_path, "effect kind"):
                typed_effect = out.build(EFFECT_MODELS[effect["kind"]], effect, effect_path)

            if job is not None and typed_effect is not None:
                jobs.append(job)

        return jobs

    def _check_incidents(self, raw_incidents: list, out: _Collector, refs: list) -> List[Incident]:
        incidents: List[Incident] = []
        types = _enum_values(IncidentType, (IncidentType.UNRECOGNIZED,))

        for i, raw in enumerate(raw_incidents):
            path = f"incidents[{i}]"
            if not isinstance(raw, Mapping):
                out.add(path, f"expected an object, got {_describe(raw)}")
                continue
            ok = out.check_choice(raw, "type", types, path, "incident type")

            targets = raw.get("targets")
            for j, target in enumerate(targets if isinstance(targets, list) else []):
                if _is_name(target):
                    refs.append((f"{path}.targets[{j}]", "node", target))
            if _is_name(raw.get("flow")):
                refs.append((f"{path}.flow", "flow", raw["flow"]))

            incident_type = raw.get("type")
            if incident_type == IncidentType.TRAFFIC.value and raw.get("flow") is None:
                out.add(f"{path}.flow", "traffic incidents must name the flow they affect")
                ok = False
            if incident_type == IncidentType.COMPONENT.value and not targets:
                out.add(f"{path}.targets", "component incidents must target at least one node")
                ok = False

            incident = out.build(Incident, raw, path, checked=("type",))
            if ok and incident is not None:
                incidents.append(incident)

        return incidents
