"""
Work-Order Engine Models

Tickets, cost approvals, emergency incidents and PM schedules.
"""

from .ticket import (
    # Enums
    TicketStatus,
    Priority,
    Role,
    ApprovalStatus,
    IncidentSeverity,
    IncidentStatus,
    TERMINAL_STATUSES,

    # Core models
    TenantRecord,
    Ticket,
    CostApproval,
    EmergencyIncident,

    # Supporting models
    User,
    TicketCategory,
    Actor,
    Notification,

    utcnow,
)
from .schedule import PMFrequency, PMSchedule, PMCompletion

__all__ = [
    "TicketStatus", "Priority", "Role", "ApprovalStatus", "IncidentSeverity",
    "IncidentStatus", "TERMINAL_STATUSES",
    "TenantRecord", "Ticket", "CostApproval", "EmergencyIncident",
    "User", "TicketCategory", "Actor", "Notification", "utcnow",
    "PMFrequency", "PMSchedule", "PMCompletion",
]
