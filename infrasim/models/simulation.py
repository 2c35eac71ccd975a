"""Simulation runtime state — live metrics, incident occurrences and tick snapshots."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from infrasim.models.level import Incident


class IncidentState(str, Enum):
    DORMANT = "dormant"
    WARNING = "warning"
    ACTIVE = "active"
    RESOLVED = "resolved"


class NodeStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class EventKind(str, Enum):
    JOB_FIRED = "job_fired"
    INCIDENT_WARNING = "incident_warning"
    INCIDENT_ACTIVE = "incident_active"
    INCIDENT_RESOLVED = "incident_resolved"
    BREACH = "breach"
    ALERT = "alert"
    TICKET_OPENED = "ticket_opened"
    CAPACITY_CHANGED = "capacity_changed"
    BUDGET_EXCEEDED = "budget_exceeded"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class IncidentOccurrence(BaseModel):
    """Lifecycle of one incident definition. At most one occurrence is in flight."""

    incident: Incident
    state: IncidentState = IncidentState.DORMANT
    triggered_at: Optional[int] = None
    activated_at: Optional[int] = None
    resolved_at: Optional[int] = None
    occurrences: int = 0

    def trigger(self, tick: int) -> None:
        self.triggered_at = tick
        self.activated_at = None
        self.resolved_at = None
        self.occurrences += 1
        if self.incident.warning_delay_ticks > 0:
            self.state = IncidentState.WARNING
        else:
            self.activate(tick)

    def activate(self, tick: int) -> None:
        self.state = IncidentState.ACTIVE
        self.activated_at = tick

    def resolve(self, tick: int) -> None:
        self.state = IncidentState.RESOLVED
        self.resolved_at = tick

    def reset(self) -> None:
        self.state = IncidentState.DORMANT


class NodeMetrics(BaseModel):
    """Live metrics for one node, recomputed every tick."""

    requests: float = 0.0
    connections: float = 0.0
    utilization: float = 0.0                # Fraction of capacity, may exceed 1.0
    latency_ms: float = 0.0
    error_rate: float = 0.0                 # Percent of failed requests
    storage_usage: float = 0.0              # GB, storage nodes only
    fullness: float = 0.0                   # Fraction of capacity, storage nodes only
    status: NodeStatus = NodeStatus.HEALTHY

    def value_of(self, metric: str) -> float:
        if metric == "latency":
            return self.latency_ms
        return getattr(self, metric)


class Breach(BaseModel):
    """A node exceeding its hard limit. Reported, never raised."""

    node_id: str
    metric: str
    value: float
    limit: float
    message: str


class Ticket(BaseModel):
    """An on-call ticket raised when a node goes critical."""

    id: str
    node_id: str
    source: str                             # Alert name, or "breach"
    title: str
    description: str
    status: TicketStatus = TicketStatus.OPEN
    created_at: int
    resolved_at: Optional[int] = None


class QueuedAction(BaseModel):
    """A capacity change waiting out its apply delay."""

    id: str
    node_id: str
    new_capacity: float
    queued_at: int
    ticks_remaining: int
    applied_at: Optional[int] = None


class SimulationEvent(BaseModel):
    tick: int
    kind: EventKind
    subject: str                            # Job, incident or node name
    message: str


class TickSnapshot(BaseModel):
    """Externally observable state after a complete tick."""

    tick: int
    nodes: Dict[str, NodeMetrics]
    incidents: Dict[str, IncidentState]
    breaches: List[Breach] = []
    events: List[SimulationEvent] = []
    capacities: Dict[str, float] = {}
    spend: float = 0.0
    tickets: List[Ticket] = []              # Unresolved tickets after the tick
