"""
Work-Order Escalation Service

Periodic sweep over submitted, unacknowledged tickets.

Thresholds (hours since creation without response):
- Critical: > 2
- High:     > 4
- Medium:   > 8
- Low:      > 24
Emergency tickets use a tighter table.

Escalation is notification-only: the sweep never writes to a ticket.
No "already escalated" marker exists, so a ticket that stays
unacknowledged is escalated again on every run.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from ..config import get_settings
from ..models.ticket import Priority, Ticket, TicketStatus, User, utcnow
from .jobs import JobSummary

logger = logging.getLogger(__name__)


class EscalationService:
    """
    Flags overdue tickets to every manager and admin.

    One notification call per escalated ticket, not per recipient.
    """

    JOB_NAME = "ticket-escalation"

    def __init__(self, ticket_repo, notification_service, settings=None):
        self.tickets = ticket_repo
        self.notifications = notification_service
        self.settings = settings or get_settings()

    def threshold_hours(self, ticket: Ticket) -> float:
        table = (
            self.settings.emergency_escalation_thresholds
            if ticket.is_emergency
            else self.settings.escalation_thresholds
        )
        return table[ticket.priority]

    def check_ticket(self, ticket: Ticket, now: datetime) -> Optional[str]:
        """
        Escalation reason for one ticket, or None when it is not overdue.
        """
        if ticket.status != TicketStatus.SUBMITTED or ticket.acknowledged_at is not None:
            return None

        elapsed = elapsed_hours(ticket, now)
        if elapsed <= self.threshold_hours(ticket):
            return None

        return escalation_reason(ticket, elapsed)

    async def get_candidates(self, tenant_id: UUID) -> List[Ticket]:
        """Submitted tickets nobody has acknowledged yet."""
        return await self.tickets.find_all_matching(
            tenant_id,
            status=TicketStatus.SUBMITTED,
            acknowledged_at=None
        )

    async def run(self, tenant_id: UUID, now: Optional[datetime] = None) -> JobSummary:
        """
        One sweep. Per-ticket failures are recorded, not raised.
        """
        now = now or utcnow()
        summary = JobSummary(
            job=self.JOB_NAME,
            tenant_id=tenant_id,
            sample_size=self.settings.job_result_sample_size
        )

        candidates = await self.get_candidates(tenant_id)
        recipients: Optional[List[User]] = None

        for ticket in candidates:
            summary.processed += 1
            try:
                reason = self.check_ticket(ticket, now)
                if reason is None:
                    continue

                # Resolved lazily, once per sweep
                if recipients is None:
                    recipients = await self.notifications.get_supervisors(tenant_id)
                if not recipients:
                    summary.skipped += 1
                    logger.warning(f"Ticket {ticket.id} overdue but no managers or admins to notify")
                    continue

                elapsed = elapsed_hours(ticket, now)
                failure = await self.notifications.notify_escalation(
                    ticket, recipients, elapsed, reason
                )
                if failure is not None:
                    raise failure

                summary.escalated += 1
                summary.add_result({
                    "ticket_id": ticket.id,
                    "ticket_number": ticket.ticket_number,
                    "priority": ticket.priority.value,
                    "elapsed_hours": round(elapsed, 2),
                    "reason": reason,
                    "notified_count": len(recipients),
                })
                logger.info(f"Escalated ticket {ticket.id}: {reason}")

            except Exception as exc:
                summary.add_error(ticket.id, exc)
                logger.exception(f"Failed to escalate ticket {ticket.id}")

        return summary.finish(
            f"Escalated {summary.escalated} tickets from {summary.processed} submitted tickets"
        )


def elapsed_hours(ticket: Ticket, now: datetime) -> float:
    return (now - ticket.created_at).total_seconds() / 3600


PRIORITY_LABELS: Dict[Priority, str] = {
    Priority.CRITICAL: "Critical ticket",
    Priority.HIGH: "High priority ticket",
    Priority.MEDIUM: "Medium priority ticket",
    Priority.LOW: "Low priority ticket",
}


def escalation_reason(ticket: Ticket, elapsed: float) -> str:
    label = PRIORITY_LABELS[ticket.priority]
    if ticket.is_emergency:
        label = f"Emergency {label[0].lower()}{label[1:]}"
    return f"{label} without response for {math.floor(elapsed)} hours"
