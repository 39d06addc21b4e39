"""
Work-Order Ticket Model

Core principles:
1. Ticket = maintenance request for a location or asset
2. Exactly one status at a time, moved only by engine transitions
3. Lifecycle timestamps are written once and never cleared
4. Cost approval and emergency incident ride alongside the ticket
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Any, Dict, List
from uuid import UUID, uuid4
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class TicketStatus(str, Enum):
    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"
    REJECTED = "rejected"    # Terminal, only from submitted
    ON_HOLD = "on_hold"      # Parked, resumes to in_progress


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    REQUESTER = "requester"
    SYSTEM = "system"        # Scheduled jobs


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class IncidentSeverity(str, Enum):
    HIGH = "high"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    ACTIVE = "active"
    CONTAINED = "contained"
    RESOLVED = "resolved"


TERMINAL_STATUSES = frozenset({TicketStatus.CLOSED, TicketStatus.REJECTED})


# =============================================================================
# BASE
# =============================================================================

class TenantRecord(BaseModel):
    """Every stored row belongs to exactly one tenant."""
    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None  # Soft delete

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# =============================================================================
# CORE MODELS
# =============================================================================

class Ticket(TenantRecord):
    """
    A maintenance work request.

    Status flow: submitted → in_progress → completed → closed
    Side states: rejected (from submitted), on_hold (from in_progress)
    Flags, not statuses: acknowledged_at, verified_at
    """
    ticket_number: int = 0
    title: str
    description: Optional[str] = None

    category_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    asset_id: Optional[UUID] = None

    priority: Priority = Priority.MEDIUM
    status: TicketStatus = TicketStatus.SUBMITTED
    is_emergency: bool = False

    # People
    submitted_by: UUID
    assigned_to: Optional[UUID] = None
    vendor_id: Optional[UUID] = None

    # Money
    estimated_cost: Optional[float] = None
    actual_cost: Optional[float] = None

    # Reasons and notes
    resolution_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    hold_reason: Optional[str] = None

    # Origin, when generated from a PM schedule
    pm_schedule_id: Optional[UUID] = None

    # Lifecycle timestamps (set once, never cleared)
    acknowledged_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    held_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CostApproval(TenantRecord):
    """
    Sign-off gate on a ticket's spend.

    Created pending, decided once (approved or denied), then frozen.
    A new request after denial is a new record.
    """
    ticket_id: UUID

    estimated_cost: float
    actual_cost: Optional[float] = None  # Copied when the ticket completes

    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_by: UUID
    notes: Optional[str] = None

    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    denied_by: Optional[UUID] = None
    denied_at: Optional[datetime] = None
    denial_reason: Optional[str] = None  # Required iff denied

    @property
    def is_active(self) -> bool:
        return self.status in (ApprovalStatus.PENDING, ApprovalStatus.APPROVED)


class EmergencyIncident(TenantRecord):
    """
    Containment/resolution tracking for an emergency ticket.

    Status flow: active → contained → resolved
    """
    ticket_id: UUID
    severity: IncidentSeverity = IncidentSeverity.CRITICAL
    status: IncidentStatus = IncidentStatus.ACTIVE

    contained_at: Optional[datetime] = None
    contained_by: Optional[UUID] = None

    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    resolution_notes: Optional[str] = None


# =============================================================================
# SUPPORTING MODELS
# =============================================================================

class User(TenantRecord):
    """Tenant member. Provisioning lives outside the engine."""
    full_name: str
    email: Optional[str] = None
    role: Role = Role.REQUESTER
    is_active: bool = True


class TicketCategory(TenantRecord):
    """Category with an optional spend threshold for the approval gate."""
    name: str
    approval_threshold: Optional[float] = None


class Actor(BaseModel):
    """Who is calling, passed explicitly into every engine operation."""
    tenant_id: UUID
    user_id: UUID
    role: Role

    @classmethod
    def system(cls, tenant_id: UUID, user_id: Optional[UUID] = None) -> "Actor":
        # Scheduled jobs act as the system; user_id is nominal
        return cls(tenant_id=tenant_id, user_id=user_id or UUID(int=0), role=Role.SYSTEM)


class Notification(BaseModel):
    """One dispatch handed to the notification collaborator."""
    subject: str
    recipients: List[UUID] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
