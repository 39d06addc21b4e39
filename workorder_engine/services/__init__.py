"""
Work-Order Engine Services

Core business logic for the ticket lifecycle.
"""

from .errors import (
    WorkflowError,
    NotFound,
    InvalidTransition,
    BlockedByApproval,
    Forbidden,
    ValidationError,
    DependencyFailure,
)
from .permissions import Action, AuthContext, CAPABILITIES, can, require
from .notifications import NotificationService, LoggingDispatcher, RecordingDispatcher
from .tickets import TicketService, TRANSITIONS, can_transition
from .approvals import CostApprovalService, requires_approval
from .emergencies import EmergencyService
from .escalation import EscalationService
from .pm_schedules import PMScheduleService, calculate_next_due_date
from .jobs import JobSummary, JobError

__all__ = [
    # Errors
    "WorkflowError", "NotFound", "InvalidTransition", "BlockedByApproval",
    "Forbidden", "ValidationError", "DependencyFailure",

    # Authorization
    "Action", "AuthContext", "CAPABILITIES", "can", "require",

    # Notifications
    "NotificationService", "LoggingDispatcher", "RecordingDispatcher",

    # State machine
    "TicketService", "TRANSITIONS", "can_transition",

    # Cost approval gate
    "CostApprovalService", "requires_approval",

    # Emergencies
    "EmergencyService",

    # Scheduled sweeps
    "EscalationService", "PMScheduleService", "calculate_next_due_date",
    "JobSummary", "JobError",
]
