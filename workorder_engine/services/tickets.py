"""
Work-Order Ticket Service

The ticket lifecycle state machine.

    submitted → in_progress → completed → closed
        ↓            ↕
     rejected     on_hold

Rules:
1. Every operation re-reads the ticket right before validating it
2. Only edges in TRANSITIONS succeed; everything else is InvalidTransition
3. A lifecycle timestamp is written by the transition that causes it, once
4. acknowledge and verify are flags, not statuses
5. set_status is the supervisor override that skips the graph
"""

import logging
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID

from ..config import get_settings
from ..models.ticket import (
    Actor,
    EmergencyIncident,
    IncidentSeverity,
    Priority,
    Role,
    Ticket,
    TicketStatus,
    utcnow,
)
from .approvals import find_blocking_approval, find_approved_approval
from .errors import InvalidTransition, BlockedByApproval, NotFound, ValidationError
from .permissions import Action, WORKERS, require

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.SUBMITTED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.REJECTED}),
    TicketStatus.IN_PROGRESS: frozenset({TicketStatus.COMPLETED, TicketStatus.ON_HOLD}),
    TicketStatus.ON_HOLD: frozenset({TicketStatus.IN_PROGRESS}),
    TicketStatus.COMPLETED: frozenset({TicketStatus.CLOSED}),
    TicketStatus.CLOSED: frozenset(),
    TicketStatus.REJECTED: frozenset(),
}

# Which timestamp a status stamps when first entered
STATUS_TIMESTAMPS: Dict[TicketStatus, str] = {
    TicketStatus.IN_PROGRESS: "started_at",
    TicketStatus.COMPLETED: "completed_at",
    TicketStatus.CLOSED: "closed_at",
    TicketStatus.REJECTED: "rejected_at",
    TicketStatus.ON_HOLD: "held_at",
}

# Shortest walk to closed, used when an emergency is resolved
PATH_TO_CLOSED: Dict[TicketStatus, TicketStatus] = {
    TicketStatus.SUBMITTED: TicketStatus.IN_PROGRESS,
    TicketStatus.ON_HOLD: TicketStatus.IN_PROGRESS,
    TicketStatus.IN_PROGRESS: TicketStatus.COMPLETED,
    TicketStatus.COMPLETED: TicketStatus.CLOSED,
}

ASSIGNABLE_STATUSES = frozenset({TicketStatus.SUBMITTED, TicketStatus.IN_PROGRESS})


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    return target in TRANSITIONS[current]


def stamp_once(ticket: Ticket, field: str, when, changes: dict) -> None:
    """Add `field` to changes unless the ticket already carries it."""
    if getattr(ticket, field) is None:
        changes[field] = when


class TicketService:
    """
    Validates and applies ticket transitions.

    No state is cached between calls; no locking beyond the store's own.
    """

    def __init__(
        self,
        ticket_repo,
        user_repo,
        approval_repo,
        incident_repo,
        category_repo,
        notification_service,
        settings=None
    ):
        self.tickets = ticket_repo
        self.users = user_repo
        self.approvals = approval_repo
        self.incidents = incident_repo
        self.categories = category_repo
        self.notifications = notification_service
        self.settings = settings or get_settings()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_ticket(self, tenant_id: UUID, ticket_id: UUID) -> Ticket:
        ticket = await self.tickets.find_by_id(tenant_id, ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(self, tenant_id: UUID, **filters) -> List[Ticket]:
        return await self.tickets.find_all_matching(tenant_id, **filters)

    async def get_my_tickets(self, tenant_id: UUID, user_id: UUID) -> List[Ticket]:
        """Tickets the user submitted or is assigned to, deduplicated."""
        submitted = await self.tickets.find_all_matching(tenant_id, submitted_by=user_id)
        assigned = await self.tickets.find_all_matching(tenant_id, assigned_to=user_id)
        by_id = {t.id: t for t in [*submitted, *assigned]}
        return list(by_id.values())

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_ticket(
        self,
        actor: Actor,
        title: str,
        description: Optional[str] = None,
        location_id: Optional[UUID] = None,
        asset_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        priority: Priority = Priority.MEDIUM,
        is_emergency: bool = False,
        severity: Optional[IncidentSeverity] = None,
        submitted_by: Optional[UUID] = None,
        pm_schedule_id: Optional[UUID] = None
    ) -> Ticket:
        """
        Submit a new ticket.

        submitted_by defaults to the actor; only the system may submit
        on someone else's behalf (PM generation).
        """
        require(actor, Action.CREATE_TICKET)

        if not title or not title.strip():
            raise ValidationError("Ticket title is required")

        if submitted_by is not None and submitted_by != actor.user_id:
            if actor.role != Role.SYSTEM:
                raise ValidationError("Only the system may submit on behalf of another user")
        submitter_id = submitted_by or actor.user_id

        submitter = await self.users.find_by_id(actor.tenant_id, submitter_id)
        if submitter is None:
            raise ValidationError("Submitter user not found")

        if category_id is not None:
            category = await self.categories.find_by_id(actor.tenant_id, category_id)
            if category is None:
                raise NotFound(f"Category {category_id} not found")

        if is_emergency:
            severity = severity or _severity_for(priority)
            priority = Priority(severity.value)

        ticket_number = await self.tickets.count(actor.tenant_id) + 1

        ticket = await self.tickets.create(Ticket(
            tenant_id=actor.tenant_id,
            ticket_number=ticket_number,
            title=title.strip(),
            description=description,
            location_id=location_id,
            asset_id=asset_id,
            category_id=category_id,
            priority=priority,
            status=TicketStatus.SUBMITTED,
            is_emergency=is_emergency,
            submitted_by=submitter_id,
            pm_schedule_id=pm_schedule_id,
        ))
        logger.info(f"Ticket {ticket.id} (#{ticket.ticket_number}) submitted by {submitter_id}")

        if is_emergency:
            incident = await self.incidents.create(EmergencyIncident(
                tenant_id=actor.tenant_id,
                ticket_id=ticket.id,
                severity=severity,
            ))
            logger.warning(f"Emergency incident {incident.id} opened for ticket {ticket.id} ({severity.value})")
            if severity == IncidentSeverity.CRITICAL:
                await self.notifications.notify_critical_incident(ticket, incident)
        else:
            await self.notifications.notify_new_ticket(ticket)

        return ticket

    async def create_emergency_ticket(
        self,
        actor: Actor,
        title: str,
        severity: IncidentSeverity = IncidentSeverity.CRITICAL,
        **fields
    ) -> Ticket:
        """Emergencies skip acknowledgement and are immediately actionable."""
        fields.pop("priority", None)
        fields.pop("is_emergency", None)
        return await self.create_ticket(
            actor,
            title,
            priority=Priority(severity.value),
            is_emergency=True,
            severity=severity,
            **fields
        )

    # =========================================================================
    # Assignment
    # =========================================================================

    async def assign_ticket(self, ticket_id: UUID, actor: Actor, assignee_id: UUID) -> Ticket:
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.ASSIGN, ticket)

        assignee = await self.users.find_by_id(actor.tenant_id, assignee_id)
        if assignee is None:
            raise NotFound(f"Assignee {assignee_id} not found")
        if not assignee.is_active or assignee.role not in WORKERS:
            raise ValidationError("Can only assign to active staff, manager, or admin users")

        if ticket.status not in ASSIGNABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot assign ticket in {ticket.status.value} status",
                current=ticket.status
            )

        updated = await self.tickets.update(actor.tenant_id, ticket_id, assigned_to=assignee_id)
        logger.info(f"Ticket {ticket_id} assigned to {assignee_id} by {actor.user_id}")

        await self.notifications.notify_assignment(updated, assignee, actor.user_id)
        return updated

    async def assign_vendor(self, ticket_id: UUID, actor: Actor, vendor_id: UUID) -> Ticket:
        """A ticket can carry both a staff assignee and a vendor."""
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.ASSIGN, ticket)

        if ticket.status not in ASSIGNABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot assign ticket to vendor in {ticket.status.value} status",
                current=ticket.status
            )

        return await self.tickets.update(actor.tenant_id, ticket_id, vendor_id=vendor_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def acknowledge(self, ticket_id: UUID, actor: Actor) -> Ticket:
        """
        submitted → submitted, stamping acknowledged_at.

        An acknowledged ticket no longer escalates.
        """
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.ACKNOWLEDGE, ticket)

        if ticket.status != TicketStatus.SUBMITTED:
            raise InvalidTransition(
                f"Cannot acknowledge ticket in {ticket.status.value} status",
                current=ticket.status
            )
        if ticket.acknowledged_at is not None:
            return ticket

        updated = await self.tickets.update(actor.tenant_id, ticket_id, acknowledged_at=utcnow())
        logger.info(f"Ticket {ticket_id} acknowledged by {actor.user_id}")
        return updated

    async def start_work(self, ticket_id: UUID, actor: Actor) -> Ticket:
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.START_WORK, ticket)
        return await self.apply_transition(ticket, TicketStatus.IN_PROGRESS, actor)

    async def complete(
        self,
        ticket_id: UUID,
        actor: Actor,
        actual_cost: Optional[float] = None
    ) -> Ticket:
        """
        in_progress → completed.

        Blocked while the ticket's cost approval is still pending.
        """
        if actual_cost is not None and actual_cost < 0:
            raise ValidationError("Cost must be non-negative")

        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.COMPLETE, ticket)
        self._check_edge(ticket, TicketStatus.COMPLETED)
        await self._check_not_blocked(ticket)

        changes = {}
        if actual_cost is not None:
            changes["actual_cost"] = actual_cost
        updated = await self.apply_transition(ticket, TicketStatus.COMPLETED, actor, **changes)

        if actual_cost is not None:
            approved = await find_approved_approval(self.approvals, actor.tenant_id, ticket_id)
            if approved is not None:
                await self.approvals.update(actor.tenant_id, approved.id, actual_cost=actual_cost)

        return updated

    async def verify(self, ticket_id: UUID, actor: Actor) -> Ticket:
        """Supervisor sign-off on completed work. Sets verified_at only."""
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.VERIFY, ticket)

        if ticket.status != TicketStatus.COMPLETED:
            raise InvalidTransition(
                "Only completed tickets can be verified",
                current=ticket.status
            )
        if ticket.verified_at is not None:
            return ticket

        updated = await self.tickets.update(actor.tenant_id, ticket_id, verified_at=utcnow())
        logger.info(f"Ticket {ticket_id} verified by {actor.user_id}")
        return updated

    async def close(
        self,
        ticket_id: UUID,
        actor: Actor,
        cost: Optional[float] = None,
        notes: Optional[str] = None
    ) -> Ticket:
        if cost is not None and cost < 0:
            raise ValidationError("Cost must be non-negative")

        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.CLOSE, ticket)

        changes = {}
        if cost is not None:
            changes["actual_cost"] = cost
        if notes:
            changes["resolution_notes"] = notes.strip()
        return await self.apply_transition(ticket, TicketStatus.CLOSED, actor, **changes)

    async def reject(self, ticket_id: UUID, actor: Actor, reason: str) -> Ticket:
        reason = self._require_reason(reason, "Rejection")

        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.REJECT, ticket)
        return await self.apply_transition(ticket, TicketStatus.REJECTED, actor, rejection_reason=reason)

    async def hold(self, ticket_id: UUID, actor: Actor, reason: str) -> Ticket:
        reason = self._require_reason(reason, "Hold")

        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.HOLD, ticket)
        return await self.apply_transition(ticket, TicketStatus.ON_HOLD, actor, hold_reason=reason)

    async def resume(self, ticket_id: UUID, actor: Actor) -> Ticket:
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.RESUME, ticket)
        return await self.apply_transition(ticket, TicketStatus.IN_PROGRESS, actor)

    async def set_status(self, ticket_id: UUID, actor: Actor, new_status: TicketStatus) -> Ticket:
        """
        Supervisor override for corrections. Any status, graph ignored.

        Still stamps the target status's timestamp if it was never set.
        """
        new_status = TicketStatus(new_status)
        ticket = await self.get_ticket(actor.tenant_id, ticket_id)
        require(actor, Action.SET_STATUS, ticket)

        if ticket.status == new_status:
            return ticket

        changes = {"status": new_status}
        field = STATUS_TIMESTAMPS.get(new_status)
        if field:
            stamp_once(ticket, field, utcnow(), changes)

        updated = await self.tickets.update(actor.tenant_id, ticket_id, **changes)
        logger.warning(
            f"Ticket {ticket_id}: status overridden {ticket.status.value} → "
            f"{new_status.value} by {actor.user_id}"
        )
        return updated

    async def advance_to_closed(self, ticket: Ticket, actor: Actor, **changes) -> Ticket:
        """
        Walk the graph forward until closed, stamping each step once.

        Used by emergency resolution; a pending cost approval still
        blocks the completed step.
        """
        if ticket.is_terminal:
            raise InvalidTransition(
                f"Cannot advance ticket in {ticket.status.value} status",
                current=ticket.status
            )

        now = utcnow()
        status = ticket.status
        while status != TicketStatus.CLOSED:
            status = PATH_TO_CLOSED[status]
            if status == TicketStatus.COMPLETED:
                await self._check_not_blocked(ticket)
            stamp_once(ticket, STATUS_TIMESTAMPS[status], now, changes)

        changes["status"] = TicketStatus.CLOSED
        updated = await self.tickets.update(actor.tenant_id, ticket.id, **changes)
        logger.info(f"Ticket {ticket.id}: {ticket.status.value} → closed by {actor.user_id}")
        return updated

    # =========================================================================
    # Private helpers
    # =========================================================================

    def _check_edge(self, ticket: Ticket, target: TicketStatus) -> None:
        if not can_transition(ticket.status, target):
            raise InvalidTransition(
                f"Cannot move ticket from {ticket.status.value} to {target.value}",
                current=ticket.status,
                target=target
            )

    async def _check_not_blocked(self, ticket: Ticket) -> None:
        pending = await find_blocking_approval(self.approvals, ticket.tenant_id, ticket.id)
        if pending is not None:
            raise BlockedByApproval(
                f"Ticket {ticket.id} has a pending cost approval ({pending.id})",
                current=ticket.status,
                target=TicketStatus.COMPLETED
            )

    async def apply_transition(
        self,
        ticket: Ticket,
        target: TicketStatus,
        actor: Actor,
        **changes
    ) -> Ticket:
        self._check_edge(ticket, target)

        changes["status"] = target
        field = STATUS_TIMESTAMPS.get(target)
        if field:
            stamp_once(ticket, field, utcnow(), changes)

        updated = await self.tickets.update(actor.tenant_id, ticket.id, **changes)
        logger.info(f"Ticket {ticket.id}: {ticket.status.value} → {target.value} by {actor.user_id}")
        return updated

    def _require_reason(self, reason: Optional[str], label: str) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(f"{label} reason is required")
        minimum = self.settings.min_reason_length
        if len(reason) < minimum:
            raise ValidationError(f"{label} reason must be at least {minimum} characters")
        return reason


def _severity_for(priority: Priority) -> IncidentSeverity:
    if priority == Priority.HIGH:
        return IncidentSeverity.HIGH
    return IncidentSeverity.CRITICAL
