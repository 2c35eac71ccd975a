"""
Node physics — how load turns into latency, failures and breaches.

Compute and gateway nodes degrade smoothly past their critical threshold.
Database nodes jump: once utilization crosses the threshold, latency is
multiplied by (1 + saturation_penalty) in a single step. Storage nodes have
no connection concept; they fail only when completely full.
"""

from typing import Dict, List, Optional

from infrasim.models.level import Node, NodeKind, ThresholdBasis, threshold_fraction
from infrasim.models.simulation import Breach, NodeMetrics, NodeStatus

DEFAULT_PHYSICS: Dict[NodeKind, Dict[str, float]] = {
    NodeKind.COMPUTE: {
        "base_latency_ms": 20.0,
        "latency_load_factor": 0.01,
        "saturation_penalty": 0.1,
        "critical_threshold": 0.8,
        "connections": 0,
    },
    NodeKind.DATABASE: {
        "base_latency_ms": 10.0,
        "latency_load_factor": 0.02,
        "saturation_penalty": 4.0,
        "critical_threshold": 0.9,
        "connections": 0,
    },
    NodeKind.GATEWAY: {
        "base_latency_ms": 5.0,
        "latency_load_factor": 0.0,
        "saturation_penalty": 0.1,
        "critical_threshold": 0.8,
        "connections": 0,
    },
    NodeKind.STORAGE: {
        "base_latency_ms": 15.0,
        "latency_load_factor": 0.0,
        "saturation_penalty": 0.0,
        "critical_threshold": 1.0,
        "consumption_rate": 0.05,
    },
}

# Upper bound of the smooth saturation curve.
MAX_SMOOTH_PENALTY = 100.0


def physics_value(node: Node, name: str) -> float:
    """Declared physics value, falling back to the kind default."""
    value = getattr(node.physics, name)
    if value is None:
        value = DEFAULT_PHYSICS[node.kind].get(name, 0.0)
    return float(value)


def critical_fraction(node: Node) -> float:
    return threshold_fraction(physics_value(node, "critical_threshold"))


def local_latency(node: Node, requests: float, utilization: float) -> float:
    """Latency contributed by the node itself, before downstream latency is added."""
    latency = physics_value(node, "base_latency_ms") + physics_value(node, "latency_load_factor") * requests
    threshold = critical_fraction(node)
    penalty = physics_value(node, "saturation_penalty")

    if node.kind == NodeKind.DATABASE:
        if utilization > threshold:
            latency *= 1 + penalty
    elif node.kind in (NodeKind.COMPUTE, NodeKind.GATEWAY):
        if utilization > threshold:
            over_percent = (utilization - threshold) * 100
            latency *= min(1 + (over_percent * penalty) ** 2, MAX_SMOOTH_PENALTY)
    return latency


def failure_rate(node: Node, metrics: NodeMetrics) -> float:
    """Percent of requests failing this tick."""
    if node.kind == NodeKind.STORAGE:
        return 100.0 if metrics.fullness >= 1.0 else 0.0
    if metrics.utilization > 1.0:
        return (metrics.utilization - 1.0) / metrics.utilization * 100
    return 0.0


def detect_breach(node: Node, metrics: NodeMetrics, capacity: Optional[float] = None) -> Optional[Breach]:
    """
    Hard-limit breach for the node, if any. Storage breaches only when full.
    `capacity` is the live capacity when it differs from the declared one.
    """
    if capacity is None:
        capacity = node.capacity
    if node.kind == NodeKind.STORAGE:
        if metrics.fullness >= 1.0:
            return Breach(
                node_id=node.id,
                metric="storage_usage",
                value=metrics.storage_usage,
                limit=capacity,
                message=f"{node.display_name} is full ({metrics.storage_usage:g}/{capacity:g})",
            )
        return None

    if metrics.utilization > 1.0:
        return Breach(
            node_id=node.id,
            metric="utilization",
            value=metrics.utilization,
            limit=1.0,
            message=f"{node.display_name} is over capacity ({metrics.utilization:.0%} utilization)",
        )
    return None


def local_status(node: Node, metrics: NodeMetrics, breached: bool) -> NodeStatus:
    if breached:
        return NodeStatus.CRITICAL
    if node.basis == ThresholdBasis.FULLNESS:
        level = metrics.fullness
    else:
        level = metrics.utilization
    if level > critical_fraction(node):
        return NodeStatus.WARNING
    return NodeStatus.HEALTHY


def worst(statuses: List[NodeStatus]) -> NodeStatus:
    order = [NodeStatus.HEALTHY, NodeStatus.WARNING, NodeStatus.CRITICAL]
    return max(statuses, key=order.index, default=NodeStatus.HEALTHY)
