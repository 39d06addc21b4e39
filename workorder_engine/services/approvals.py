"""
Work-Order Cost Approval Service

Optional gate: a manager or admin signs off on the estimated spend
before the ticket can be marked complete.

Rules:
1. At most one active (pending or approved) request per ticket
2. A request is decided once: approved or denied, then frozen
3. Re-requesting after a denial creates a new record
4. Whether a ticket needs the gate is advisory (category threshold),
   checked by the caller, not enforced here
"""

import logging
from typing import List, Optional
from uuid import UUID

from ..models.ticket import (
    Actor,
    ApprovalStatus,
    CostApproval,
    TicketCategory,
    utcnow,
)
from .errors import InvalidTransition, NotFound, ValidationError
from .permissions import Action, require

logger = logging.getLogger(__name__)


def requires_approval(category: Optional[TicketCategory], estimated_cost: float) -> bool:
    """True when the category has a threshold and the cost meets it."""
    if category is None or category.approval_threshold is None:
        return False
    return estimated_cost >= category.approval_threshold


async def find_blocking_approval(approval_repo, tenant_id: UUID, ticket_id: UUID) -> Optional[CostApproval]:
    """The pending request that keeps the ticket from completing, if any."""
    pending = await approval_repo.find_all_matching(
        tenant_id, ticket_id=ticket_id, status=ApprovalStatus.PENDING
    )
    return pending[-1] if pending else None


async def find_approved_approval(approval_repo, tenant_id: UUID, ticket_id: UUID) -> Optional[CostApproval]:
    approved = await approval_repo.find_all_matching(
        tenant_id, ticket_id=ticket_id, status=ApprovalStatus.APPROVED
    )
    return approved[-1] if approved else None


class CostApprovalService:
    """
    Request / approve / deny on top of the approval and ticket stores.
    """

    def __init__(self, approval_repo, ticket_repo):
        self.approvals = approval_repo
        self.tickets = ticket_repo

    async def request_approval(
        self,
        ticket_id: UUID,
        actor: Actor,
        estimated_cost: float,
        notes: Optional[str] = None
    ) -> CostApproval:
        if estimated_cost is None or estimated_cost <= 0:
            raise ValidationError("Estimated cost must be greater than zero")

        ticket = await self.tickets.find_by_id(actor.tenant_id, ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")
        require(actor, Action.REQUEST_APPROVAL, ticket)

        if ticket.is_terminal:
            raise InvalidTransition(
                f"Cannot request approval for a {ticket.status.value} ticket",
                current=ticket.status
            )

        existing = await self.approvals.find_all_matching(
            actor.tenant_id,
            ticket_id=ticket_id,
            status=[ApprovalStatus.PENDING, ApprovalStatus.APPROVED]
        )
        if existing:
            raise ValidationError(
                f"Ticket already has an {existing[-1].status.value} cost approval request"
            )

        approval = await self.approvals.create(CostApproval(
            tenant_id=actor.tenant_id,
            ticket_id=ticket_id,
            estimated_cost=estimated_cost,
            requested_by=actor.user_id,
            notes=notes,
        ))
        await self.tickets.update(actor.tenant_id, ticket_id, estimated_cost=estimated_cost)

        logger.info(f"Cost approval {approval.id} requested for ticket {ticket_id}: {estimated_cost:.2f}")
        return approval

    async def approve_request(self, approval_id: UUID, actor: Actor) -> CostApproval:
        require(actor, Action.DECIDE_APPROVAL)
        approval = await self._load_pending(actor.tenant_id, approval_id)

        updated = await self.approvals.update(
            actor.tenant_id,
            approval_id,
            status=ApprovalStatus.APPROVED,
            approved_by=actor.user_id,
            approved_at=utcnow(),
        )
        logger.info(f"Cost approval {approval_id} approved by {actor.user_id} (ticket {approval.ticket_id})")
        return updated

    async def deny_request(self, approval_id: UUID, actor: Actor, reason: str) -> CostApproval:
        if not reason or not reason.strip():
            raise ValidationError("Denial reason is required")

        require(actor, Action.DECIDE_APPROVAL)
        approval = await self._load_pending(actor.tenant_id, approval_id)

        updated = await self.approvals.update(
            actor.tenant_id,
            approval_id,
            status=ApprovalStatus.DENIED,
            denied_by=actor.user_id,
            denied_at=utcnow(),
            denial_reason=reason.strip(),
        )
        logger.info(f"Cost approval {approval_id} denied by {actor.user_id} (ticket {approval.ticket_id})")
        return updated

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_approval(self, tenant_id: UUID, approval_id: UUID) -> CostApproval:
        approval = await self.approvals.find_by_id(tenant_id, approval_id)
        if approval is None:
            raise NotFound(f"Cost approval {approval_id} not found")
        return approval

    async def get_pending_approvals(self, tenant_id: UUID) -> List[CostApproval]:
        return await self.approvals.find_all_matching(tenant_id, status=ApprovalStatus.PENDING)

    async def get_pending_count(self, tenant_id: UUID) -> int:
        return len(await self.get_pending_approvals(tenant_id))

    async def get_approval_history(self, tenant_id: UUID, ticket_id: UUID) -> List[CostApproval]:
        return await self.approvals.find_all_matching(tenant_id, ticket_id=ticket_id)

    async def get_blocking_approval(self, tenant_id: UUID, ticket_id: UUID) -> Optional[CostApproval]:
        return await find_blocking_approval(self.approvals, tenant_id, ticket_id)

    async def _load_pending(self, tenant_id: UUID, approval_id: UUID) -> CostApproval:
        approval = await self.get_approval(tenant_id, approval_id)
        if approval.status != ApprovalStatus.PENDING:
            raise InvalidTransition(
                f"Cost approval already {approval.status.value}",
                current=approval.status,
            )
        return approval
