"""
Work-Order Emergency Service

Parallel containment/resolution tracking for emergency tickets.

Incident flow: active → contained → resolved
The owning ticket keeps following the normal state machine;
containing lets work continue, resolving drives it to closed.
"""

import logging
from datetime import timedelta
from typing import List
from uuid import UUID

from ..models.ticket import (
    Actor,
    EmergencyIncident,
    IncidentStatus,
    Ticket,
    TicketStatus,
    utcnow,
)
from .errors import InvalidTransition, NotFound, ValidationError
from .permissions import Action, require

logger = logging.getLogger(__name__)


CONTAINABLE_STATUSES = frozenset({TicketStatus.SUBMITTED, TicketStatus.IN_PROGRESS})


class EmergencyService:
    """
    Contain and resolve emergency incidents.

    Ticket status changes go through TicketService so the graph and
    the approval gate still apply.
    """

    def __init__(self, incident_repo, ticket_service):
        self.incidents = incident_repo
        self.ticket_service = ticket_service

    async def get_incident(self, tenant_id: UUID, ticket_id: UUID) -> EmergencyIncident:
        """The incident attached to an emergency ticket."""
        found = await self.incidents.find_all_matching(tenant_id, ticket_id=ticket_id)
        if not found:
            raise NotFound(f"No emergency incident for ticket {ticket_id}")
        return found[-1]

    async def get_active_incidents(self, tenant_id: UUID) -> List[EmergencyIncident]:
        return await self.incidents.find_all_matching(
            tenant_id, status=[IncidentStatus.ACTIVE, IncidentStatus.CONTAINED]
        )

    async def get_incident_stats(self, tenant_id: UUID, days: int = 30) -> dict:
        since = utcnow() - timedelta(days=days)
        recent = await self.incidents.find_all_matching(
            tenant_id, predicate=lambda i: i.created_at >= since
        )
        active = await self.get_active_incidents(tenant_id)
        return {
            "active": len(active),
            f"resolved_{days}_days": len([i for i in recent if i.status == IncidentStatus.RESOLVED]),
            f"total_{days}_days": len(recent),
        }

    async def contain_emergency(self, ticket_id: UUID, actor: Actor) -> EmergencyIncident:
        """
        Mark the incident contained. The ticket stays open.

        A still-submitted emergency moves to in_progress; emergencies
        skip the acknowledge step.
        """
        require(actor, Action.CONTAIN_EMERGENCY)
        ticket = await self._load_emergency(actor.tenant_id, ticket_id)
        incident = await self.get_incident(actor.tenant_id, ticket_id)

        if incident.status != IncidentStatus.ACTIVE:
            raise InvalidTransition(
                f"Only active incidents can be contained (incident is {incident.status.value})",
                current=incident.status
            )
        if ticket.status not in CONTAINABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot contain emergency in {ticket.status.value} status",
                current=ticket.status
            )

        updated = await self.incidents.update(
            actor.tenant_id,
            incident.id,
            status=IncidentStatus.CONTAINED,
            contained_at=utcnow(),
            contained_by=actor.user_id,
        )
        logger.info(f"Emergency on ticket {ticket_id} contained by {actor.user_id}")

        if ticket.status == TicketStatus.SUBMITTED:
            await self.ticket_service.apply_transition(ticket, TicketStatus.IN_PROGRESS, actor)

        return updated

    async def resolve_emergency(self, ticket_id: UUID, actor: Actor, notes: str) -> EmergencyIncident:
        """
        Resolve the incident and drive the ticket to closed.

        Resolution notes are mandatory.
        """
        if not notes or not notes.strip():
            raise ValidationError("Resolution notes are required")
        notes = notes.strip()

        require(actor, Action.RESOLVE_EMERGENCY)
        ticket = await self._load_emergency(actor.tenant_id, ticket_id)
        incident = await self.get_incident(actor.tenant_id, ticket_id)

        if incident.status == IncidentStatus.RESOLVED:
            raise InvalidTransition("Incident is already resolved", current=incident.status)

        # Ticket first: a blocked or terminal ticket leaves the incident untouched
        if ticket.status != TicketStatus.CLOSED:
            await self.ticket_service.advance_to_closed(ticket, actor, resolution_notes=notes)

        now = utcnow()
        changes = {
            "status": IncidentStatus.RESOLVED,
            "resolved_at": now,
            "resolved_by": actor.user_id,
            "resolution_notes": notes,
        }
        if incident.contained_at is None:
            changes["contained_at"] = now
            changes["contained_by"] = actor.user_id

        updated = await self.incidents.update(actor.tenant_id, incident.id, **changes)
        logger.info(f"Emergency on ticket {ticket_id} resolved by {actor.user_id}")
        return updated

    async def _load_emergency(self, tenant_id: UUID, ticket_id: UUID) -> Ticket:
        ticket = await self.ticket_service.get_ticket(tenant_id, ticket_id)
        if not ticket.is_emergency:
            raise ValidationError("Only emergency tickets have incidents")
        return ticket
