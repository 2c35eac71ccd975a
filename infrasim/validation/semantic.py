"""
Semantic Validator — domain rules beyond the level schema.

Behavioral Contract:
- Accepts a typed Level that already passed structural validation
- Returns additional ValidationErrors, collected exhaustively in rule order
- Pure: no side effects, no state carried between calls
- Limits that are policy rather than physics (lifecycle bound, horizon)
  come from ValidatorConfig, never from constants in the rules
"""

import logging
from typing import Callable, Dict, List, Optional

from infrasim.models.config import ValidatorConfig
from infrasim.models.effects import EffectDirection, EffectMode, Impact, InjectEffect
from infrasim.models.level import (
    FLOW_METRICS,
    AlertDirection,
    IncidentType,
    Level,
    Node,
    NodeKind,
    ThresholdBasis,
)
from infrasim.models.validation import ValidationError

logger = logging.getLogger(__name__)

Rule = Callable[[Level, ValidatorConfig], List[ValidationError]]

NON_NEGATIVE_PHYSICS = (
    "base_latency_ms",
    "latency_load_factor",
    "saturation_penalty",
    "connections",
    "consumption_rate",
)


def _error(path: str, message: str) -> ValidationError:
    return ValidationError(path=path, message=message)


def check_magnitude(impact: Impact) -> Optional[str]:
    """
    Return a message if the magnitude sits on the wrong side of 1.0 (or 0)
    for the impact's declared mode and direction, else None.
    """
    m = impact.magnitude
    amplify = impact.direction == EffectDirection.AMPLIFY

    if impact.mode == EffectMode.MULTIPLY:
        if amplify and m < 1:
            return (
                f"amplifying multiplier must be >= 1, got {m}; "
                f"use direction 'dampen' to reduce '{impact.metric}'"
            )
        if not amplify and not 0 < m <= 1:
            return f"dampening multiplier must lie in (0, 1], got {m}"
    elif impact.mode == EffectMode.PERCENT:
        if amplify and m < 0:
            return f"percent increase must be >= 0, got {m}"
        if not amplify and not 0 <= m <= 100:
            return f"percent reduction must lie in [0, 100], got {m}"
    elif m < 0:
        return f"additive magnitude must be >= 0, got {m}; the direction sets the sign"
    return None


def _unknown_metric(metric: str, node: Node) -> str:
    return (
        f"metric '{metric}' is not recognized for {node.kind.value} node '{node.id}' "
        f"(expected one of: {', '.join(node.metric_names())})"
    )


def _check_unique_names(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """Flow, job and incident names are unique within their collection."""
    errors = []
    for collection, items in (
        ("flows", level.flows),
        ("jobs", level.jobs),
        ("incidents", level.incidents),
    ):
        seen: Dict[str, int] = {}
        for i, item in enumerate(items):
            if item.name in seen:
                errors.append(_error(
                    f"{collection}[{i}].name",
                    f"duplicate name '{item.name}' (first declared at {collection}[{seen[item.name]}])",
                ))
            else:
                seen[item.name] = i
    return errors


def _check_scaling(node: Node, path: str) -> List[ValidationError]:
    errors = []
    if node.cost_per_unit < 0:
        errors.append(_error(f"{path}.cost_per_unit", f"cost_per_unit must be >= 0, got {node.cost_per_unit}"))
    if node.apply_delay_ticks < 0:
        errors.append(_error(
            f"{path}.apply_delay_ticks", f"apply_delay_ticks must be >= 0, got {node.apply_delay_ticks}"
        ))

    low, high = node.min_capacity, node.max_capacity
    if low is not None and low <= 0:
        errors.append(_error(f"{path}.min_capacity", f"min_capacity must be positive, got {low}"))
    if low is not None and high is not None and high < low:
        errors.append(_error(
            f"{path}.max_capacity", f"max_capacity {high} is below min_capacity {low}"
        ))
    elif node.capacity > 0 and not node.allows_capacity(node.capacity):
        lower = low if low is not None else 0
        upper = high if high is not None else "unbounded"
        errors.append(_error(
            f"{path}.capacity",
            f"capacity {node.capacity} lies outside the scaling range [{lower}, {upper}]",
        ))
    return errors


def _check_nodes(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """Capacities, physics ranges and kind-appropriate thresholds."""
    errors = []
    for i, node in enumerate(level.nodes):
        path = f"nodes[{i}]"
        physics = node.physics

        if node.capacity <= 0:
            errors.append(_error(f"{path}.capacity", f"capacity must be positive, got {node.capacity}"))
        errors.extend(_check_scaling(node, path))

        for name in NON_NEGATIVE_PHYSICS:
            value = getattr(physics, name)
            if value is not None and value < 0:
                errors.append(_error(f"{path}.physics.{name}", f"'{name}' must be >= 0, got {value}"))

        threshold = physics.critical_threshold
        if threshold is not None and not 0 < threshold <= 100:
            errors.append(_error(
                f"{path}.physics.critical_threshold",
                f"critical_threshold must be a fraction in (0, 1] or a percentage in (1, 100], got {threshold}",
            ))

        if node.kind == NodeKind.STORAGE:
            if physics.threshold_basis == ThresholdBasis.UTILIZATION:
                errors.append(_error(
                    f"{path}.physics.threshold_basis",
                    f"storage node '{node.id}' may only declare a fullness threshold; "
                    f"connection utilization does not apply to storage",
                ))
        else:
            if physics.threshold_basis == ThresholdBasis.FULLNESS:
                errors.append(_error(
                    f"{path}.physics.threshold_basis",
                    f"fullness thresholds apply only to storage nodes, '{node.id}' is {node.kind.value}",
                ))
            if physics.consumption_rate is not None:
                errors.append(_error(
                    f"{path}.physics.consumption_rate",
                    f"consumption_rate applies only to storage nodes, '{node.id}' is {node.kind.value}",
                ))

        alert_names: Dict[str, int] = {}
        for j, alert in enumerate(node.alerts):
            alert_path = f"{path}.alerts[{j}]"
            if alert.name in alert_names:
                errors.append(_error(
                    f"{alert_path}.name",
                    f"node '{node.id}' has duplicate alert name '{alert.name}'",
                ))
            alert_names.setdefault(alert.name, j)

            if alert.metric not in node.metric_names():
                errors.append(_error(f"{alert_path}.metric", _unknown_metric(alert.metric, node)))

            if alert.direction == AlertDirection.ABOVE and alert.warning > alert.critical:
                errors.append(_error(
                    alert_path,
                    f"alert '{alert.name}' warns above {alert.warning} but is critical above "
                    f"{alert.critical}; warning must not exceed critical",
                ))
            if alert.direction == AlertDirection.BELOW and alert.warning < alert.critical:
                errors.append(_error(
                    alert_path,
                    f"alert '{alert.name}' warns below {alert.warning} but is critical below "
                    f"{alert.critical}; warning must not be under critical",
                ))
    return errors


def _check_edges(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """Positive multipliers, no self loops, and an acyclic dependency graph."""
    errors = []
    adjacency: Dict[str, List[str]] = {n.id: [] for n in level.nodes}

    for i, edge in enumerate(level.edges):
        if edge.multiplier <= 0:
            errors.append(_error(f"edges[{i}].multiplier", f"multiplier must be positive, got {edge.multiplier}"))
        if edge.source == edge.target:
            errors.append(_error(f"edges[{i}]", f"node '{edge.source}' cannot send traffic to itself"))
        elif edge.target not in adjacency[edge.source]:
            adjacency[edge.source].append(edge.target)

    # Depth-first search over an explicit stack of neighbor iterators.
    visited = set()
    for node in level.nodes:
        if node.id in visited:
            continue
        visited.add(node.id)
        trail = [node.id]
        on_trail = {node.id}
        stack = [iter(adjacency[node.id])]
        while stack:
            neighbor = next(stack[-1], None)
            if neighbor is None:
                stack.pop()
                on_trail.discard(trail.pop())
            elif neighbor in on_trail:
                cycle = trail[trail.index(neighbor):] + [neighbor]
                errors.append(_error("edges", f"circular traffic dependency: {' -> '.join(cycle)}"))
                break
            elif neighbor not in visited:
                visited.add(neighbor)
                trail.append(neighbor)
                on_trail.add(neighbor)
                stack.append(iter(adjacency[neighbor]))
    return errors


def _check_flows(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """Every documented flow enters at a gateway and follows declared edges."""
    errors = []
    for i, flow in enumerate(level.flows):
        path = f"flows[{i}]"
        if flow.volume < 0:
            errors.append(_error(f"{path}.volume", f"volume must be >= 0, got {flow.volume}"))
        if flow.base_variance < 0:
            errors.append(_error(
                f"{path}.base_variance", f"base_variance must be >= 0, got {flow.base_variance}"
            ))

        entry = level.node_by_id(flow.path[0])
        if entry.kind != NodeKind.GATEWAY:
            errors.append(_error(
                f"{path}.path[0]",
                f"flow '{flow.name}' must enter at a gateway node; '{entry.id}' is {entry.kind.value}",
            ))

        for j in range(1, len(flow.path)):
            source, target = flow.path[j - 1], flow.path[j]
            if level.edge_between(source, target) is None:
                errors.append(_error(
                    f"{path}.path[{j}]",
                    f"unrealizable traffic path for flow '{flow.name}': "
                    f"no edge from '{source}' to '{target}'",
                ))
    return errors


def _check_jobs(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """Intervals fire within the horizon and effects fit the target's physics."""
    errors = []
    for i, job in enumerate(level.jobs):
        path = f"jobs[{i}]"
        target = level.node_by_id(job.target)

        if job.interval_ticks <= 0:
            errors.append(_error(f"{path}.interval_ticks", f"interval_ticks must be > 0, got {job.interval_ticks}"))
        elif job.interval_ticks > config.horizon_ticks:
            errors.append(_error(
                f"{path}.interval_ticks",
                f"interval of {job.interval_ticks} ticks never fires within the "
                f"{config.horizon_ticks}-tick simulation horizon",
            ))

        effect = job.effect
        if isinstance(effect, InjectEffect):
            if effect.volume < 0:
                errors.append(_error(f"{path}.effect.volume", f"injected volume must be >= 0, got {effect.volume}"))
            continue

        if effect.metric not in target.metric_names():
            errors.append(_error(f"{path}.effect.metric", _unknown_metric(effect.metric, target)))

        message = check_magnitude(effect)
        if message:
            errors.append(_error(f"{path}.effect.magnitude", message))
        elif (
            effect.metric == "storage_usage"
            and effect.mode == EffectMode.ADD
            and effect.direction == EffectDirection.AMPLIFY
            and effect.magnitude > target.capacity
        ):
            errors.append(_error(
                f"{path}.effect.magnitude",
                f"job '{job.name}' adds {effect.magnitude} to storage_usage, more than "
                f"the {target.capacity} capacity of '{target.id}'",
            ))
    return errors


def _check_incidents(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """Probabilities, lifecycle bounds and kind-appropriate impacts."""
    errors = []
    for i, incident in enumerate(level.incidents):
        path = f"incidents[{i}]"
        p = incident.trigger_probability_per_tick

        if p == 0:
            errors.append(_error(
                f"{path}.trigger_probability_per_tick",
                f"incident '{incident.name}' has trigger probability 0 and never fires; "
                f"remove it or fix the probability",
            ))
        elif not 0 < p <= 1:
            errors.append(_error(
                f"{path}.trigger_probability_per_tick",
                f"trigger probability must lie in (0, 1], got {p}",
            ))

        if incident.warning_delay_ticks < 0:
            errors.append(_error(
                f"{path}.warning_delay_ticks",
                f"warning_delay_ticks must be >= 0, got {incident.warning_delay_ticks}",
            ))
        if incident.duration_ticks <= 0:
            errors.append(_error(
                f"{path}.duration_ticks",
                f"duration_ticks must be > 0, got {incident.duration_ticks}",
            ))
        if incident.lifecycle_ticks > config.max_lifecycle_ticks:
            errors.append(_error(
                path,
                f"warning_delay_ticks + duration_ticks = {incident.lifecycle_ticks} exceeds "
                f"the maximum lifecycle of {config.max_lifecycle_ticks} ticks",
            ))

        targets = [level.node_by_id(t) for t in incident.targets]
        for j, impact in enumerate(incident.impacts):
            impact_path = f"{path}.impacts[{j}]"
            if incident.type == IncidentType.TRAFFIC:
                if impact.metric not in FLOW_METRICS:
                    errors.append(_error(
                        f"{impact_path}.metric",
                        f"traffic incidents may only affect {', '.join(FLOW_METRICS)}, "
                        f"got '{impact.metric}'",
                    ))
            else:
                for node in targets:
                    if impact.metric not in node.metric_names():
                        errors.append(_error(f"{impact_path}.metric", _unknown_metric(impact.metric, node)))

            message = check_magnitude(impact)
            if message:
                errors.append(_error(f"{impact_path}.magnitude", message))
    return errors


def _check_budget(level: Level, config: ValidatorConfig) -> List[ValidationError]:
    """The starting fleet must be affordable."""
    if level.budget is None:
        return []
    if level.budget <= 0:
        return [_error("budget", f"budget must be positive, got {level.budget}")]

    spend = level.spend()
    if spend > level.budget:
        return [_error(
            "budget",
            f"initial spend of {spend:g} per tick exceeds the budget of {level.budget:g}",
        )]
    return []


class SemanticValidator:
    """
    Evaluates domain rules against a structurally valid Level.

    Rules run in registration order; each returns its own error list so
    that one broken rule never hides the findings of another.
    """

    def __init__(self, config: Optional[ValidatorConfig] = None):
        self.config = config or ValidatorConfig()
        self._rules: List[Rule] = []
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        self._rules = [
            _check_unique_names,
            _check_nodes,
            _check_edges,
            _check_flows,
            _check_jobs,
            _check_incidents,
            _check_budget,
        ]

    def register_rule(self, rule: Rule) -> None:
        """Append a custom rule; it runs after the built-in rules."""
        self._rules.append(rule)

    def validate(self, level: Level) -> List[ValidationError]:
        if level is None:
            raise TypeError("SemanticValidator.validate() requires a Level, got None")

        errors: List[ValidationError] = []
        for rule in self._rules:
            errors.extend(rule(level, self.config))

        logger.debug("Semantic validation of level %r: %d error(s)", level.id, len(errors))
        return errors
