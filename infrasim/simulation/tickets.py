"""
On-call tickets.

A ticket opens when a node's alert reaches its critical threshold or the
node breaches a hard limit. While a ticket for the same (node, source) pair
is still open or in progress, no duplicate is raised; once it is resolved,
the next critical tick opens a fresh one.

Lifecycle: OPEN → IN_PROGRESS (acknowledged) → RESOLVED
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from infrasim.models.level import Level
from infrasim.models.simulation import (
    Breach,
    EventKind,
    SimulationEvent,
    Ticket,
    TicketStatus,
)

logger = logging.getLogger(__name__)

BREACH_SOURCE = "breach"


class TicketError(Exception):
    """Raised for unknown tickets and invalid status transitions."""
    pass


class TicketDesk:
    """Owns every ticket raised during one simulation run."""

    def __init__(self):
        self.tickets: List[Ticket] = []
        self._counter = 0

    def get(self, ticket_id: str) -> Ticket:
        for ticket in self.tickets:
            if ticket.id == ticket_id:
                return ticket
        raise TicketError(f"unknown ticket '{ticket_id}'")

    def find_unresolved(self, node_id: str, source: str) -> Optional[Ticket]:
        return next(
            (
                t for t in self.tickets
                if t.node_id == node_id and t.source == source and t.status != TicketStatus.RESOLVED
            ),
            None,
        )

    def unresolved(self) -> List[Ticket]:
        return [t for t in self.tickets if t.status != TicketStatus.RESOLVED]

    def open(self, tick: int, node_id: str, source: str, title: str, description: str) -> Optional[Ticket]:
        """Open a ticket unless one for the same node and source is still unresolved."""
        if self.find_unresolved(node_id, source) is not None:
            return None

        self._counter += 1
        ticket = Ticket(
            id=f"T-{self._counter:04d}",
            node_id=node_id,
            source=source,
            title=title,
            description=description,
            created_at=tick,
        )
        self.tickets.append(ticket)
        logger.info("Tick %d: opened %s: %s", tick, ticket.id, title)
        return ticket

    def acknowledge(self, ticket_id: str) -> Ticket:
        ticket = self.get(ticket_id)
        if ticket.status != TicketStatus.OPEN:
            raise TicketError(f"ticket {ticket_id} is {ticket.status.value}, only open tickets can be acknowledged")
        ticket.status = TicketStatus.IN_PROGRESS
        return ticket

    def resolve(self, ticket_id: str, tick: int) -> Ticket:
        ticket = self.get(ticket_id)
        if ticket.status == TicketStatus.RESOLVED:
            raise TicketError(f"ticket {ticket_id} was already resolved at tick {ticket.resolved_at}")
        ticket.status = TicketStatus.RESOLVED
        ticket.resolved_at = tick
        logger.info("Tick %d: resolved %s", tick, ticket_id)
        return ticket

    def raise_for_tick(
        self,
        tick: int,
        level: Level,
        critical_alerts: Iterable[Tuple[str, str]],
        breaches: List[Breach],
    ) -> List[SimulationEvent]:
        """Open tickets for this tick's critical alerts, then its breaches, in node order."""
        names: Dict[str, str] = {n.id: n.display_name for n in level.nodes}
        opened = []

        for node_id, alert_name in critical_alerts:
            name = names[node_id]
            opened.append(self.open(
                tick,
                node_id,
                alert_name,
                title=f"CRITICAL: {name} - {alert_name}",
                description=f"{name} alert '{alert_name}' is in a critical state. Investigate immediately.",
            ))
        for breach in breaches:
            opened.append(self.open(
                tick,
                breach.node_id,
                BREACH_SOURCE,
                title=f"CRITICAL: {names[breach.node_id]} - {BREACH_SOURCE}",
                description=breach.message,
            ))

        return [
            SimulationEvent(tick=tick, kind=EventKind.TICKET_OPENED, subject=t.id, message=t.title)
            for t in opened
            if t is not None
        ]
