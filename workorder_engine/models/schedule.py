"""
Preventive Maintenance Schedule Model

A schedule is a recurring template. Each due cycle materializes
at most one ticket; next_due_date only ever moves forward.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import UUID

from .ticket import TenantRecord


class PMFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"


class PMSchedule(TenantRecord):
    """
    Recurring maintenance on one asset or one location.

    Mutated by the generator sweep (next_due_date, last_generated_at)
    and otherwise by administrators.
    """
    name: str
    description: Optional[str] = None

    # Target: asset OR location
    asset_id: Optional[UUID] = None
    location_id: Optional[UUID] = None

    # Cadence
    frequency: PMFrequency
    day_of_week: Optional[int] = None    # 0=Sunday .. 6=Saturday
    day_of_month: Optional[int] = None   # 1..31, clamped to month end
    month_of_year: Optional[int] = None  # 1..12

    next_due_date: date
    last_generated_at: Optional[datetime] = None

    assigned_to: Optional[UUID] = None   # Required to generate
    vendor_id: Optional[UUID] = None
    estimated_cost: Optional[float] = None

    is_active: bool = True


class PMCompletion(TenantRecord):
    """Record of a PM cycle being done."""
    schedule_id: UUID
    ticket_id: Optional[UUID] = None

    scheduled_date: date
    completed_date: Optional[date] = None
    completed_by: Optional[UUID] = None

    notes: Optional[str] = None
    checklist_results: Optional[Dict[str, Any]] = None
