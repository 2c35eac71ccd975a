"""Level — the declarative description of a simulated infrastructure."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from infrasim.models.effects import Impact, JobEffect
from infrasim.models.fields import Count, Name, Number, Text


class NodeKind(str, Enum):
    COMPUTE = "compute"
    DATABASE = "database"
    STORAGE = "storage"
    GATEWAY = "gateway"
    UNRECOGNIZED = "unrecognized"   # Parsed but rejected by validation

    @classmethod
    def _missing_(cls, value):
        return cls.UNRECOGNIZED

    @classmethod
    def recognized(cls) -> List["NodeKind"]:
        return [k for k in cls if k != cls.UNRECOGNIZED]


class IncidentType(str, Enum):
    TRAFFIC = "traffic"       # Impacts a whole traffic flow
    COMPONENT = "component"   # Impacts metrics on specific nodes
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def _missing_(cls, value):
        return cls.UNRECOGNIZED

    @classmethod
    def recognized(cls) -> List["IncidentType"]:
        return [t for t in cls if t != cls.UNRECOGNIZED]


class ThresholdBasis(str, Enum):
    UTILIZATION = "utilization"   # Connection / request utilization of capacity
    FULLNESS = "fullness"         # Fill level of a storage node


class AlertDirection(str, Enum):
    ABOVE = "above"   # value > threshold is bad
    BELOW = "below"   # value < threshold is bad


# Metric names each node kind exposes at runtime.
NODE_METRICS: Dict[NodeKind, List[str]] = {
    NodeKind.COMPUTE: ["requests", "utilization", "latency", "error_rate"],
    NodeKind.DATABASE: ["requests", "connections", "utilization", "latency", "error_rate"],
    NodeKind.GATEWAY: ["requests", "connections", "utilization", "latency", "error_rate"],
    NodeKind.STORAGE: ["requests", "storage_usage", "latency", "error_rate"],
}

# Metric names a traffic incident may touch on its flow.
FLOW_METRICS = ["volume"]

# Physics keys that only make sense for nodes with a connection concept.
CONNECTION_FIELDS = ("connections",)


def threshold_fraction(value: float) -> float:
    """Normalize a threshold given as a fraction (<= 1) or a percentage (> 1)."""
    return value if value <= 1 else value / 100.0


class NodePhysics(BaseModel):
    """Kind-specific behavior parameters. Unset fields take kind defaults at runtime."""

    base_latency_ms: Optional[Number] = None
    latency_load_factor: Optional[Number] = None    # ms added per request
    saturation_penalty: Optional[Number] = None     # Penalty factor past the critical threshold
    critical_threshold: Optional[Number] = None     # Fraction (0-1] or percent (1-100]
    threshold_basis: Optional[ThresholdBasis] = None
    connections: Optional[Count] = None             # Baseline held-open connections
    consumption_rate: Optional[Number] = None       # Storage only: GB per request


class AlertRule(BaseModel):
    """Warning/critical thresholds on a node metric."""

    name: Name
    metric: Name
    warning: Number
    critical: Number
    direction: AlertDirection = AlertDirection.ABOVE


class Node(BaseModel):
    """A simulated infrastructure element."""

    id: Name
    kind: NodeKind
    name: Optional[Name] = None
    capacity: Number                        # Connections, requests/tick or GB depending on kind
    physics: NodePhysics
    alerts: List[AlertRule] = []

    # Scaling and cost
    cost_per_unit: Number = 0.0             # Spend per unit of capacity per tick
    min_capacity: Optional[Number] = None
    max_capacity: Optional[Number] = None
    apply_delay_ticks: Count = 5            # Ticks before a queued capacity change lands

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def basis(self) -> ThresholdBasis:
        if self.physics.threshold_basis is not None:
            return self.physics.threshold_basis
        if self.kind == NodeKind.STORAGE:
            return ThresholdBasis.FULLNESS
        return ThresholdBasis.UTILIZATION

    def metric_names(self) -> List[str]:
        return NODE_METRICS.get(self.kind, [])

    def allows_capacity(self, value: float) -> bool:
        if self.min_capacity is not None and value < self.min_capacity:
            return False
        if self.max_capacity is not None and value > self.max_capacity:
            return False
        return True


class Edge(BaseModel):
    """Directed traffic relation: source sends requests to target."""

    source: Name
    target: Name
    multiplier: Number = 1.0                # Calls to target per call received by source


class TrafficFlow(BaseModel):
    """A documented request path entering at a gateway (e.g. search, cart, checkout)."""

    name: Name
    volume: Number                          # Base requests per tick at path[0]
    path: List[Name] = Field(min_length=1)
    base_variance: Number = 0.0             # Volume noise drawn from [-v, v] each tick


class Job(BaseModel):
    """A recurring scheduled action."""

    name: Name
    target: Name
    interval_ticks: Count
    effect: JobEffect = Field(discriminator="kind")

    def fires_at(self, tick: int) -> bool:
        return tick > 0 and self.interval_ticks > 0 and tick % self.interval_ticks == 0


class Incident(BaseModel):
    """A probabilistic, time-bounded perturbation ("status effect")."""

    name: Name
    type: IncidentType
    trigger_probability_per_tick: Number
    warning_delay_ticks: Count = 0
    duration_ticks: Count
    warning_message: Optional[Text] = None
    targets: List[Name] = []                # Node ids, for component incidents
    flow: Optional[Name] = None             # Flow name, for traffic incidents
    impacts: List[Impact] = Field(min_length=1)

    @property
    def lifecycle_ticks(self) -> int:
        return self.warning_delay_ticks + self.duration_ticks


class Level(BaseModel):
    """The aggregate root: one level document."""

    id: Name
    name: Name
    description: Text = ""
    budget: Optional[Number] = None         # Spend ceiling per tick; unlimited when unset
    nodes: List[Node] = []
    edges: List[Edge] = []
    flows: List[TrafficFlow] = []
    jobs: List[Job] = []
    incidents: List[Incident] = []

    def node_by_id(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def flow_by_name(self, name: str) -> Optional[TrafficFlow]:
        return next((f for f in self.flows if f.name == name), None)

    def successors(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def edge_between(self, source: str, target: str) -> Optional[Edge]:
        return next(
            (e for e in self.edges if e.source == source and e.target == target),
            None,
        )

    def spend(self, capacities: Optional[Dict[str, float]] = None) -> float:
        """Per-tick spend: capacity times unit cost, summed over nodes."""
        capacities = capacities or {}
        return sum(capacities.get(n.id, n.capacity) * n.cost_per_unit for n in self.nodes)
