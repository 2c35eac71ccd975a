"""Infrasim data models."""

from infrasim.models.config import SimulationConfig, ValidatorConfig
from infrasim.models.effects import (
    EffectDirection,
    EffectMode,
    Impact,
    InjectEffect,
    JobEffect,
    MetricEffect,
    Overlay,
)
from infrasim.models.level import (
    AlertDirection,
    AlertRule,
    Edge,
    Incident,
    IncidentType,
    Job,
    Level,
    Node,
    NodeKind,
    NodePhysics,
    ThresholdBasis,
    TrafficFlow,
)
from infrasim.models.simulation import (
    Breach,
    EventKind,
    IncidentOccurrence,
    IncidentState,
    NodeMetrics,
    NodeStatus,
    QueuedAction,
    SimulationEvent,
    Ticket,
    TicketStatus,
    TickSnapshot,
)
from infrasim.models.validation import ParseResult, ValidationError, ValidationOutcome

__all__ = [
    "AlertDirection",
    "AlertRule",
    "Breach",
    "Edge",
    "EffectDirection",
    "EffectMode",
    "EventKind",
    "Impact",
    "Incident",
    "IncidentOccurrence",
    "IncidentState",
    "IncidentType",
    "InjectEffect",
    "Job",
    "JobEffect",
    "Level",
    "MetricEffect",
    "Node",
    "NodeKind",
    "NodeMetrics",
    "NodePhysics",
    "NodeStatus",
    "Overlay",
    "ParseResult",
    "QueuedAction",
    "SimulationConfig",
    "SimulationEvent",
    "ThresholdBasis",
    "Ticket",
    "TicketStatus",
    "TickSnapshot",
    "TrafficFlow",
    "ValidationError",
    "ValidationOutcome",
    "ValidatorConfig",
]
