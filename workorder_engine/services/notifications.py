"""
Work-Order Notification Service

Wraps the external NotificationDispatcher. From the engine's point of
view dispatch is fire-and-forget: a failing dispatcher is logged and
reported back as a DependencyFailure value, never raised into the
operation that triggered it.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from ..models.ticket import (
    EmergencyIncident,
    Notification,
    Role,
    Ticket,
    User,
)
from .errors import DependencyFailure

logger = logging.getLogger(__name__)


class LoggingDispatcher:
    """Default dispatcher: writes the notification to the log."""

    async def notify(self, subject: str, recipients: Sequence[UUID], context: Dict[str, Any]) -> None:
        logger.info(f"Notify {len(recipients)} recipient(s): {subject}")


class RecordingDispatcher:
    """Keeps every notification in memory. Handy for tests and dry runs."""

    def __init__(self):
        self.sent: List[Notification] = []

    async def notify(self, subject: str, recipients: Sequence[UUID], context: Dict[str, Any]) -> None:
        self.sent.append(Notification(
            subject=subject,
            recipients=list(recipients),
            context=dict(context)
        ))


class NotificationService:
    """
    Resolves recipients and hands notifications to the dispatcher.
    """

    def __init__(self, dispatcher, user_repo):
        self.dispatcher = dispatcher
        self.users = user_repo

    async def get_supervisors(self, tenant_id: UUID) -> List[User]:
        """
        Deduplicated union of active managers and admins.

        The two lookups run concurrently.
        """
        managers, admins = await asyncio.gather(
            self.users.find_all_matching(tenant_id, role=Role.MANAGER, is_active=True),
            self.users.find_all_matching(tenant_id, role=Role.ADMIN, is_active=True),
        )

        by_id = {}
        for user in [*managers, *admins]:
            by_id.setdefault(user.id, user)
        return list(by_id.values())

    async def send(
        self,
        subject: str,
        recipients: Sequence[UUID],
        context: Dict[str, Any]
    ) -> Optional[DependencyFailure]:
        """
        Dispatch once. Returns the failure instead of raising it.
        """
        try:
            await self.dispatcher.notify(subject, list(recipients), context)
        except Exception as exc:
            logger.warning(f"Notification '{subject}' failed: {exc}")
            return DependencyFailure(str(exc), dependency="notifications")
        return None

    async def notify_escalation(
        self,
        ticket: Ticket,
        recipients: Sequence[User],
        elapsed_hours: float,
        reason: str
    ) -> Optional[DependencyFailure]:
        return await self.send(
            subject=f"Escalation: #{ticket.ticket_number} {ticket.title}",
            recipients=[u.id for u in recipients],
            context={
                "ticket": ticket,
                "elapsed_hours": elapsed_hours,
                "reason": reason,
            }
        )

    async def notify_new_ticket(self, ticket: Ticket) -> Optional[DependencyFailure]:
        supervisors = await self.get_supervisors(ticket.tenant_id)
        if not supervisors:
            return None
        return await self.send(
            subject=f"New ticket #{ticket.ticket_number}: {ticket.title}",
            recipients=[u.id for u in supervisors],
            context={"ticket": ticket}
        )

    async def notify_assignment(
        self,
        ticket: Ticket,
        assignee: User,
        assigned_by: UUID
    ) -> Optional[DependencyFailure]:
        return await self.send(
            subject=f"Ticket #{ticket.ticket_number} assigned to you",
            recipients=[assignee.id],
            context={"ticket": ticket, "assigned_by": assigned_by}
        )

    async def notify_critical_incident(
        self,
        ticket: Ticket,
        incident: EmergencyIncident
    ) -> Optional[DependencyFailure]:
        supervisors = await self.get_supervisors(ticket.tenant_id)
        if not supervisors:
            logger.error(f"No one to notify about critical incident {incident.id}")
            return None
        return await self.send(
            subject=f"EMERGENCY: {ticket.title}",
            recipients=[u.id for u in supervisors],
            context={"ticket": ticket, "incident": incident}
        )
