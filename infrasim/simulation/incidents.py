"""
Incident lifecycle tracking.

States per incident definition:
  DORMANT → (roll succeeds) → WARNING (if warning_delay_ticks > 0) → ACTIVE → RESOLVED → DORMANT

At most one occurrence of an incident definition is in flight at a time;
distinct incidents run independently and may be active together.
"""

import logging
import random
from typing import Dict, List

from infrasim.models.level import Incident
from infrasim.models.simulation import (
    EventKind,
    IncidentOccurrence,
    IncidentState,
    SimulationEvent,
)

logger = logging.getLogger(__name__)


class IncidentTracker:
    """Owns the occurrence state of every incident in a level."""

    def __init__(self, incidents: List[Incident]):
        # Insertion order fixes the order of random draws.
        self._occurrences: Dict[str, IncidentOccurrence] = {
            incident.name: IncidentOccurrence(incident=incident) for incident in incidents
        }

    def get(self, name: str) -> IncidentOccurrence:
        return self._occurrences[name]

    def roll(self, tick: int, rng: random.Random) -> List[SimulationEvent]:
        """Return resolved occurrences to dormant, then roll every dormant incident once."""
        events = []
        for occurrence in self._occurrences.values():
            if occurrence.state == IncidentState.RESOLVED:
                occurrence.reset()

            if occurrence.state != IncidentState.DORMANT:
                continue

            if rng.random() < occurrence.incident.trigger_probability_per_tick:
                occurrence.trigger(tick)
                events.append(self._event(tick, occurrence))
        return events

    def advance(self, tick: int) -> List[SimulationEvent]:
        """Move warnings whose delay elapsed to active, and actives whose duration elapsed to resolved."""
        events = []
        for occurrence in self._occurrences.values():
            incident = occurrence.incident
            if (
                occurrence.state == IncidentState.WARNING
                and tick - occurrence.triggered_at >= incident.warning_delay_ticks
            ):
                occurrence.activate(tick)
                events.append(self._event(tick, occurrence))
            elif (
                occurrence.state == IncidentState.ACTIVE
                and tick - occurrence.activated_at >= incident.duration_ticks
            ):
                occurrence.resolve(tick)
                events.append(self._event(tick, occurrence))
        return events

    def active(self) -> List[Incident]:
        return [
            o.incident for o in self._occurrences.values()
            if o.state == IncidentState.ACTIVE
        ]

    def states(self) -> Dict[str, IncidentState]:
        return {name: o.state for name, o in self._occurrences.items()}

    def _event(self, tick: int, occurrence: IncidentOccurrence) -> SimulationEvent:
        incident = occurrence.incident
        if occurrence.state == IncidentState.WARNING:
            kind = EventKind.INCIDENT_WARNING
            message = incident.warning_message or (
                f"{incident.name} expected in {incident.warning_delay_ticks} ticks"
            )
        elif occurrence.state == IncidentState.ACTIVE:
            kind = EventKind.INCIDENT_ACTIVE
            message = f"{incident.name} is active for {incident.duration_ticks} ticks"
        else:
            kind = EventKind.INCIDENT_RESOLVED
            message = f"{incident.name} resolved"

        logger.info("Tick %d: %s", tick, message)
        return SimulationEvent(tick=tick, kind=kind, subject=incident.name, message=message)
