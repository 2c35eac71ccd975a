"""
Simulation Engine — the tick loop that runs an accepted level.

Per tick:
  1. Advance the tick counter
  2. Fire jobs whose interval divides the tick
  3. Roll dormant incidents against their trigger probability
  4. Promote elapsed warnings to active, resolve elapsed actives
  5. Apply queued capacity changes whose delay has run out
  6. Recompute every node's metrics from flows (with their variance),
     injected volume, active impacts and physics; cascade latency and
     degradation upstream
  7. Raise breach, alert, ticket and budget events on transitions
  8. Publish an immutable TickSnapshot

The engine assumes a validated Level (all references resolve, the edge graph
is acyclic). Out-of-range live metrics are reported as breaches, never raised.
A tick is atomic: metrics are computed into fresh state and swapped in only
once the whole tick is done. Stop and pause take effect between ticks.
"""

import asyncio
import logging
import random
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from infrasim.models.config import SimulationConfig, ValidatorConfig
from infrasim.models.effects import InjectEffect, Impact, Overlay
from infrasim.models.level import AlertDirection, IncidentType, Job, Level, NodeKind
from infrasim.models.simulation import (
    Breach,
    EventKind,
    IncidentState,
    NodeMetrics,
    NodeStatus,
    QueuedAction,
    SimulationEvent,
    Ticket,
    TickSnapshot,
)
from infrasim.simulation import physics
from infrasim.simulation.incidents import IncidentTracker
from infrasim.simulation.tickets import TicketDesk
from infrasim.validation.pipeline import load_level

logger = logging.getLogger(__name__)


class SimulationError(Exception):
    """Raised for anything but an accepted Level, and for capacity changes the level does not allow."""
    pass


def topological_order(level: Level) -> List[str]:
    """Node ids ordered so every edge source precedes its target."""
    indegree = {n.id: 0 for n in level.nodes}
    for edge in level.edges:
        indegree[edge.target] += 1

    ready = [n.id for n in level.nodes if indegree[n.id] == 0]
    order = []
    while ready:
        node_id = ready.pop(0)
        order.append(node_id)
        for edge in level.successors(node_id):
            indegree[edge.target] -= 1
            if indegree[edge.target] == 0:
                ready.append(edge.target)
    return order


def _crossed(direction: AlertDirection, value: float, threshold: float) -> bool:
    if direction == AlertDirection.ABOVE:
        return value >= threshold
    return value <= threshold


class SimulationEngine:
    """
    Ticks one accepted level.

    Randomness comes only from the engine's own random.Random instance,
    seeded from SimulationConfig.seed unless one is passed in, so a run is
    fully reproducible from (level, seed).
    """

    def __init__(
        self,
        level: Level,
        config: Optional[SimulationConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        if not isinstance(level, Level):
            raise SimulationError(
                f"SimulationEngine requires a validated Level, got {type(level).__name__}"
            )

        self.level = level
        self.config = config or SimulationConfig()
        self.rng = rng if rng is not None else random.Random(self.config.seed)

        self.tick = 0
        self.incidents = IncidentTracker(level.incidents)
        self.metrics: Dict[str, NodeMetrics] = {n.id: NodeMetrics() for n in level.nodes}
        self.history: List[TickSnapshot] = []
        self.capacities: Dict[str, float] = {n.id: n.capacity for n in level.nodes}
        self.pending: List[QueuedAction] = []
        self.tickets = TicketDesk()

        self._order = topological_order(level)
        self._storage: Dict[str, float] = {
            n.id: 0.0 for n in level.nodes if n.kind == NodeKind.STORAGE
        }
        self._actions_queued = 0
        self._over_budget = False
        self._breached: set = set()
        self._alert_levels: Dict[Tuple[str, str], Optional[str]] = {}
        self._running = False
        self._paused = False
        self._stop_requested = False

    @classmethod
    def from_document(
        cls,
        document: Any,
        config: Optional[SimulationConfig] = None,
        validator_config: Optional[ValidatorConfig] = None,
    ) -> "SimulationEngine":
        """Validate a raw document and build an engine for it. Raises LevelValidationError."""
        return cls(load_level(document, validator_config), config=config)

    @property
    def status(self) -> str:
        if self._paused:
            return "paused"
        return "running" if self._running else "stopped"

    # --- Control ---

    def stop(self) -> None:
        """Request the run loop to stop before the next tick. A request made before run() is honored."""
        self._stop_requested = True

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    # --- Scaling, budget and tickets ---

    @property
    def current_spend(self) -> float:
        return self.level.spend(self.capacities)

    def queue_capacity_change(
        self, node_id: str, capacity: float, delay: Optional[int] = None
    ) -> QueuedAction:
        """
        Queue a capacity change for a node.

        The change lands `delay` ticks from now (the node's apply_delay_ticks
        when not given), and never on the current tick: a delay of 0 or 1
        both apply on the next tick.
        """
        node = self.level.node_by_id(node_id)
        if node is None:
            raise SimulationError(f"unknown node '{node_id}'")
        if capacity <= 0 or not node.allows_capacity(capacity):
            raise SimulationError(
                f"capacity {capacity:g} is outside the allowed range for '{node_id}'"
            )
        if delay is None:
            delay = node.apply_delay_ticks
        if delay < 0:
            raise SimulationError(f"delay must be >= 0, got {delay}")

        self._actions_queued += 1
        action = QueuedAction(
            id=f"A-{self._actions_queued:04d}",
            node_id=node_id,
            new_capacity=capacity,
            queued_at=self.tick,
            ticks_remaining=delay,
        )
        self.pending.append(action)
        logger.debug("Queued %s: %s -> %g in %d tick(s)", action.id, node_id, capacity, delay)
        return action

    def acknowledge_ticket(self, ticket_id: str) -> Ticket:
        return self.tickets.acknowledge(ticket_id)

    def resolve_ticket(self, ticket_id: str) -> Ticket:
        return self.tickets.resolve(ticket_id, self.tick)

    # --- Tick ---

    def step(self) -> TickSnapshot:
        """Run exactly one tick and return its snapshot."""
        self.tick += 1
        tick = self.tick
        events: List[SimulationEvent] = []

        fired = [job for job in self.level.jobs if job.fires_at(tick)]
        for job in fired:
            events.append(SimulationEvent(
                tick=tick,
                kind=EventKind.JOB_FIRED,
                subject=job.name,
                message=f"{job.name} ran on {job.target}",
            ))

        events.extend(self.incidents.roll(tick, self.rng))
        events.extend(self.incidents.advance(tick))

        capacities, pending, applied = self._apply_pending(tick)
        events.extend(applied)

        metrics, storage, breaches = self._recompute(fired, capacities)
        events.extend(self._breach_events(tick, breaches))
        events.extend(self._evaluate_alerts(tick, metrics))

        critical = [key for key, state in self._alert_levels.items() if state == "critical"]
        events.extend(self.tickets.raise_for_tick(tick, self.level, critical, breaches))

        spend = self.level.spend(capacities)
        events.extend(self._budget_events(tick, spend))

        # Commit the tick.
        self.metrics = metrics
        self._storage = storage
        self.capacities = capacities
        self.pending = pending
        snapshot = TickSnapshot(
            tick=tick,
            nodes={node_id: m.model_copy() for node_id, m in metrics.items()},
            incidents=self.incidents.states(),
            breaches=breaches,
            events=events,
            capacities=dict(capacities),
            spend=spend,
            tickets=[t.model_copy() for t in self.tickets.unresolved()],
        )
        self.history.append(snapshot)
        if len(self.history) > self.config.max_history:
            del self.history[: len(self.history) - self.config.max_history]
        return snapshot

    def _apply_pending(
        self, tick: int
    ) -> Tuple[Dict[str, float], List[QueuedAction], List[SimulationEvent]]:
        capacities = dict(self.capacities)
        remaining: List[QueuedAction] = []
        events = []
        for queued in self.pending:
            action = queued.model_copy(update={"ticks_remaining": queued.ticks_remaining - 1})
            if action.ticks_remaining > 0:
                remaining.append(action)
                continue
            previous = capacities[action.node_id]
            capacities[action.node_id] = action.new_capacity
            logger.info("Tick %d: %s capacity %g -> %g", tick, action.node_id, previous, action.new_capacity)
            events.append(SimulationEvent(
                tick=tick,
                kind=EventKind.CAPACITY_CHANGED,
                subject=action.node_id,
                message=f"capacity {previous:g} -> {action.new_capacity:g} ({action.id})",
            ))
        return capacities, remaining, events

    def _budget_events(self, tick: int, spend: float) -> List[SimulationEvent]:
        budget = self.level.budget
        over = budget is not None and spend > budget
        events = []
        if over and not self._over_budget:
            logger.warning("Tick %d: spend %g exceeds budget %g", tick, spend, budget)
            events.append(SimulationEvent(
                tick=tick,
                kind=EventKind.BUDGET_EXCEEDED,
                subject=self.level.id,
                message=f"spend {spend:g} per tick exceeds the budget of {budget:g}",
            ))
        self._over_budget = over
        return events

    def _recompute(
        self, fired: List[Job], capacities: Dict[str, float]
    ) -> Tuple[Dict[str, NodeMetrics], Dict[str, float], List[Breach]]:
        level = self.level
        node_overlays: Dict[Tuple[str, str], Overlay] = defaultdict(Overlay)
        flow_overlays: Dict[str, Overlay] = defaultdict(Overlay)
        storage_impacts: Dict[str, List[Impact]] = defaultdict(list)
        injected: Dict[str, float] = defaultdict(float)

        for incident in self.incidents.active():
            for impact in incident.impacts:
                if incident.type == IncidentType.TRAFFIC:
                    flow_overlays[incident.flow].add(impact)
                    continue
                for target in incident.targets:
                    if impact.metric == "storage_usage":
                        storage_impacts[target].append(impact)
                    else:
                        node_overlays[(target, impact.metric)].add(impact)

        for job in fired:
            effect = job.effect
            if isinstance(effect, InjectEffect):
                injected[job.target] += effect.volume
            elif effect.metric == "storage_usage":
                storage_impacts[job.target].append(effect)
            else:
                node_overlays[(job.target, effect.metric)].add(effect)

        requests: Dict[str, float] = defaultdict(float)
        for flow in level.flows:
            volume = flow.volume
            if flow.base_variance > 0:
                volume = max(0.0, volume + self.rng.uniform(-flow.base_variance, flow.base_variance))
            if flow.name in flow_overlays:
                volume = max(0.0, flow_overlays[flow.name].apply(volume))
            requests[flow.path[0]] += volume
            for source, target in zip(flow.path, flow.path[1:]):
                volume *= level.edge_between(source, target).multiplier
                requests[target] += volume
        for node_id, volume in injected.items():
            requests[node_id] += volume

        def overlay(node_id: str, metric: str, value: float) -> float:
            key = (node_id, metric)
            if key not in node_overlays:
                return value
            return node_overlays[key].apply(value)

        metrics: Dict[str, NodeMetrics] = {}
        storage = dict(self._storage)
        for node in level.nodes:
            capacity = capacities[node.id]
            m = NodeMetrics()
            m.requests = max(0.0, overlay(node.id, "requests", requests[node.id]))

            if node.kind == NodeKind.STORAGE:
                usage = storage[node.id] + m.requests * physics.physics_value(node, "consumption_rate")
                for impact in storage_impacts[node.id]:
                    usage = usage * impact.factor() + impact.delta()
                usage = min(max(usage, 0.0), capacity)
                storage[node.id] = usage
                m.storage_usage = usage
                m.fullness = usage / capacity
            else:
                load = m.requests + physics.physics_value(node, "connections")
                if node.kind in (NodeKind.DATABASE, NodeKind.GATEWAY):
                    m.connections = max(0.0, overlay(node.id, "connections", load))
                    load = m.connections
                m.utilization = max(0.0, overlay(node.id, "utilization", load / capacity))

            m.latency_ms = max(0.0, overlay(
                node.id, "latency", physics.local_latency(node, m.requests, m.utilization)
            ))
            m.error_rate = min(100.0, max(0.0, overlay(
                node.id, "error_rate", physics.failure_rate(node, m)
            )))
            metrics[node.id] = m

        # Downstream first: latency and degradation flow back to callers.
        breaches: List[Breach] = []
        degraded: Dict[str, bool] = {}
        for node_id in reversed(self._order):
            node = level.node_by_id(node_id)
            m = metrics[node_id]
            successors = [e.target for e in level.successors(node_id)]

            m.latency_ms += max((metrics[s].latency_ms for s in successors), default=0.0)

            breach = physics.detect_breach(node, m, capacities[node_id])
            if breach is not None:
                breaches.append(breach)
            m.status = physics.local_status(node, m, breach is not None)

            degraded[node_id] = any(
                metrics[s].status == NodeStatus.CRITICAL or degraded[s] for s in successors
            )
            if degraded[node_id]:
                m.status = physics.worst([m.status, NodeStatus.WARNING])

        breaches.sort(key=lambda b: self._order.index(b.node_id))
        return metrics, storage, breaches

    def _breach_events(self, tick: int, breaches: List[Breach]) -> List[SimulationEvent]:
        """Emit an event when a node enters breach; ongoing breaches stay in the snapshot only."""
        events = []
        current = {b.node_id for b in breaches}
        for breach in breaches:
            if breach.node_id not in self._breached:
                logger.warning("Tick %d: breach on %s: %s", tick, breach.node_id, breach.message)
                events.append(SimulationEvent(
                    tick=tick,
                    kind=EventKind.BREACH,
                    subject=breach.node_id,
                    message=breach.message,
                ))
        self._breached = current
        return events

    def _evaluate_alerts(self, tick: int, metrics: Dict[str, NodeMetrics]) -> List[SimulationEvent]:
        events = []
        for node in self.level.nodes:
            m = metrics[node.id]
            for alert in node.alerts:
                value = m.value_of(alert.metric)
                if _crossed(alert.direction, value, alert.critical):
                    level, status = "critical", NodeStatus.CRITICAL
                elif _crossed(alert.direction, value, alert.warning):
                    level, status = "warning", NodeStatus.WARNING
                else:
                    level, status = None, NodeStatus.HEALTHY
                m.status = physics.worst([m.status, status])

                key = (node.id, alert.name)
                if level is not None and self._alert_levels.get(key) != level:
                    events.append(SimulationEvent(
                        tick=tick,
                        kind=EventKind.ALERT,
                        subject=node.id,
                        message=f"{alert.name} {level}: {alert.metric}={value:g}",
                    ))
                self._alert_levels[key] = level
        return events

    # --- Loops ---

    def run(self, ticks: int) -> List[TickSnapshot]:
        """
        Run up to `ticks` ticks and return their snapshots.
        Returns early when stop() or pause() is requested between ticks.
        A stop requested before the call ends it before the first tick; the
        request is consumed when the loop exits.
        """
        self._running = True
        snapshots = []
        try:
            for _ in range(ticks):
                if self._stop_requested or self._paused:
                    break
                snapshots.append(self.step())
        finally:
            self._running = False
            self._stop_requested = False
        return snapshots

    async def run_async(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_ticks: Optional[int] = None,
    ) -> None:
        """Tick every `tick_interval_seconds` until the stop event is set or max_ticks is reached."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set() and not self._stop_requested:
                if max_ticks is not None and self.tick >= max_ticks:
                    break
                if not self._paused:
                    self.step()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.tick_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
            self._stop_requested = False

    # --- Traces ---

    def metric_trace(self, node_id: str, metric: str) -> List[float]:
        return [s.nodes[node_id].value_of(metric) for s in self.history]

    def incident_timeline(self, name: str) -> List[IncidentState]:
        return [s.incidents[name] for s in self.history]
