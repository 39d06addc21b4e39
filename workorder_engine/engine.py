"""
Wires repositories, notifications and services into one object.
"""

from typing import Optional

from .config import Settings, get_settings
from .repository import Repositories
from .services import (
    AuthContext,
    CostApprovalService,
    EmergencyService,
    EscalationService,
    LoggingDispatcher,
    NotificationService,
    PMScheduleService,
    TicketService,
)


class Engine:
    def __init__(
        self,
        repos: Optional[Repositories] = None,
        dispatcher=None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self.repos = repos or Repositories()

        self.auth = AuthContext(self.repos.users)
        self.notifications = NotificationService(dispatcher or LoggingDispatcher(), self.repos.users)
        self.tickets = TicketService(
            self.repos.tickets,
            self.repos.users,
            self.repos.approvals,
            self.repos.incidents,
            self.repos.categories,
            self.notifications,
            self.settings
        )
        self.approvals = CostApprovalService(self.repos.approvals, self.repos.tickets)
        self.emergencies = EmergencyService(self.repos.incidents, self.tickets)
        self.escalation = EscalationService(self.repos.tickets, self.notifications, self.settings)
        self.pm = PMScheduleService(
            self.repos.schedules,
            self.repos.completions,
            self.tickets,
            self.settings
        )
