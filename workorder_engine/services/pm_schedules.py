"""
Work-Order PM Schedule Service

Preventive maintenance: recurring schedules that materialize tickets.

Generator sweep, per due schedule (due today ∪ overdue):
1. Skip "already generated" if last_generated_at is inside the window (24h)
2. Skip "no assigned_to user" if nobody is assigned
3. Create the ticket, advance next_due_date, stamp last_generated_at
4. Assign the ticket to the same user; failure is logged, not rolled back

Ticket creation and the schedule update are separate writes. If the
update fails the ticket stays and the failure is reported.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta

from ..config import get_settings
from ..models.schedule import PMCompletion, PMFrequency, PMSchedule
from ..models.ticket import Actor, Priority, utcnow
from .errors import NotFound, ValidationError
from .jobs import JobSummary
from .permissions import Action, require

logger = logging.getLogger(__name__)


SKIP_ALREADY_GENERATED = "already generated"
SKIP_NO_ASSIGNEE = "no assigned_to user"

CADENCE_FIELDS = ("frequency", "day_of_week", "day_of_month", "month_of_year")

# Fields a schedule can never have unset
REQUIRED_FIELDS = ("name", "frequency", "next_due_date", "is_active")

CADENCE_RANGES = {
    "day_of_week": (0, 6),
    "day_of_month": (1, 31),
    "month_of_year": (1, 12),
}


def calculate_next_due_date(
    frequency: PMFrequency,
    from_date: date,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    month_of_year: Optional[int] = None
) -> date:
    """
    Next due date one cycle after `from_date`.

    day_of_week is 0=Sunday..6=Saturday. day_of_month is clamped to the
    last day of the target month.
    """
    frequency = PMFrequency(frequency)
    dom = day_of_month if day_of_month and 1 <= day_of_month <= 31 else None
    moy = month_of_year if month_of_year and 1 <= month_of_year <= 12 else None
    dow = day_of_week if day_of_week is not None and 0 <= day_of_week <= 6 else None

    if frequency == PMFrequency.DAILY:
        return from_date + timedelta(days=1)

    if frequency in (PMFrequency.WEEKLY, PMFrequency.BIWEEKLY):
        extra = 7 if frequency == PMFrequency.BIWEEKLY else 0
        if dow is None:
            return from_date + timedelta(days=7 + extra)
        days_until = dow - sunday_weekday(from_date)
        if days_until <= 0:
            days_until += 7
        return from_date + timedelta(days=days_until + extra)

    if frequency == PMFrequency.MONTHLY:
        return from_date + relativedelta(months=1, day=dom or from_date.day)

    if frequency in (PMFrequency.QUARTERLY, PMFrequency.SEMI_ANNUALLY):
        step = 3 if frequency == PMFrequency.QUARTERLY else 6
        if moy is None:
            return from_date + relativedelta(months=step, day=dom or from_date.day)

        # Months in the cadence, e.g. target March quarterly → Mar, Jun, Sep, Dec
        offset = (moy - 1) % step
        months = [m + 1 for m in range(offset, 12, step)]
        later = [m for m in months if m > from_date.month]
        year = from_date.year if later else from_date.year + 1
        month = later[0] if later else months[0]
        return date(year, month, 1) + relativedelta(day=dom or from_date.day)

    # Annually
    return from_date + relativedelta(
        years=1,
        month=moy or from_date.month,
        day=dom or from_date.day
    )


def sunday_weekday(day: date) -> int:
    """Weekday counted from Sunday=0."""
    return day.isoweekday() % 7


def next_due_for(schedule: PMSchedule, today: date) -> date:
    """Advance a schedule one cycle. Never earlier than its current date."""
    base = max(today, schedule.next_due_date)
    return calculate_next_due_date(
        schedule.frequency,
        base,
        schedule.day_of_week,
        schedule.day_of_month,
        schedule.month_of_year
    )


class PMScheduleService:
    """
    Schedule administration and the ticket generator sweep.
    """

    JOB_NAME = "pm-generate"

    def __init__(self, schedule_repo, completion_repo, ticket_service, settings=None):
        self.schedules = schedule_repo
        self.completions = completion_repo
        self.ticket_service = ticket_service
        self.settings = settings or get_settings()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_schedule(self, tenant_id: UUID, schedule_id: UUID) -> PMSchedule:
        schedule = await self.schedules.find_by_id(tenant_id, schedule_id)
        if schedule is None:
            raise NotFound(f"PM schedule {schedule_id} not found")
        return schedule

    async def list_schedules(self, tenant_id: UUID, **filters) -> List[PMSchedule]:
        return await self.schedules.find_all_matching(tenant_id, **filters)

    async def get_due_today(self, tenant_id: UUID, today: date) -> List[PMSchedule]:
        return await self.schedules.find_all_matching(
            tenant_id, is_active=True, next_due_date=today
        )

    async def get_overdue(self, tenant_id: UUID, today: date) -> List[PMSchedule]:
        return await self.schedules.find_all_matching(
            tenant_id,
            predicate=lambda s: s.next_due_date < today,
            is_active=True
        )

    async def get_due(self, tenant_id: UUID, today: date) -> List[PMSchedule]:
        """Due today ∪ overdue, each schedule once."""
        due_today = await self.get_due_today(tenant_id, today)
        overdue = await self.get_overdue(tenant_id, today)

        by_id: Dict[UUID, PMSchedule] = {}
        for schedule in [*due_today, *overdue]:
            by_id.setdefault(schedule.id, schedule)
        return list(by_id.values())

    # =========================================================================
    # Generator sweep
    # =========================================================================

    async def generate_due_tickets(self, tenant_id: UUID, now: Optional[datetime] = None) -> JobSummary:
        """
        One sweep. Each schedule is handled on its own; a failure is
        recorded against that schedule and the sweep moves on.
        """
        now = now or utcnow()
        today = now.date()
        actor = Actor.system(tenant_id)
        summary = JobSummary(
            job=self.JOB_NAME,
            tenant_id=tenant_id,
            sample_size=self.settings.job_result_sample_size
        )

        due = await self.get_due(tenant_id, today)
        for schedule in due:
            summary.processed += 1
            try:
                result = await self._generate_one(schedule, actor, now)
            except Exception as exc:
                summary.add_error(schedule.id, exc)
                logger.exception(f"Failed to generate ticket for PM schedule {schedule.id}")
                continue

            if result.get("skipped"):
                summary.skipped += 1
            else:
                summary.generated += 1
            summary.add_result(result)

        return summary.finish(
            f"Generated {summary.generated} PM work orders from {len(due)} due schedules"
        )

    async def _generate_one(self, schedule: PMSchedule, actor: Actor, now: datetime) -> Dict[str, Any]:
        window = timedelta(hours=self.settings.pm_generation_window_hours)
        if schedule.last_generated_at is not None and now - schedule.last_generated_at < window:
            logger.info(f"PM schedule {schedule.id} skipped: {SKIP_ALREADY_GENERATED}")
            return {"schedule_id": schedule.id, "skipped": SKIP_ALREADY_GENERATED}

        if schedule.assigned_to is None:
            logger.warning(f"PM schedule {schedule.id} skipped: {SKIP_NO_ASSIGNEE}")
            return {"schedule_id": schedule.id, "skipped": SKIP_NO_ASSIGNEE}

        ticket = await self.ticket_service.create_ticket(
            actor,
            title=f"PM: {schedule.name}",
            description=schedule.description or f"Preventive maintenance task: {schedule.name}",
            location_id=schedule.location_id,
            asset_id=schedule.asset_id,
            priority=Priority.MEDIUM,
            submitted_by=schedule.assigned_to,
            pm_schedule_id=schedule.id,
        )

        next_due = next_due_for(schedule, now.date())
        await self.schedules.update(
            schedule.tenant_id,
            schedule.id,
            next_due_date=next_due,
            last_generated_at=now,
        )

        assigned = True
        try:
            await self.ticket_service.assign_ticket(ticket.id, actor, schedule.assigned_to)
        except Exception as exc:
            assigned = False
            logger.warning(f"Failed to assign PM ticket {ticket.id} to {schedule.assigned_to}: {exc}")

        logger.info(f"Generated PM ticket {ticket.id} from schedule {schedule.id}, next due {next_due}")
        return {
            "schedule_id": schedule.id,
            "ticket_id": ticket.id,
            "next_due_date": next_due.isoformat(),
            "assigned": assigned,
        }

    # =========================================================================
    # Administration
    # =========================================================================

    async def create_schedule(
        self,
        actor: Actor,
        name: str,
        frequency: PMFrequency,
        asset_id: Optional[UUID] = None,
        location_id: Optional[UUID] = None,
        next_due_date: Optional[date] = None,
        **fields
    ) -> PMSchedule:
        require(actor, Action.MANAGE_SCHEDULES)

        if not name or not name.strip():
            raise ValidationError("Schedule name is required")
        _check_target(asset_id, location_id)
        frequency = _check_cadence(frequency, fields)

        if next_due_date is None:
            next_due_date = calculate_next_due_date(
                frequency,
                utcnow().date(),
                fields.get("day_of_week"),
                fields.get("day_of_month"),
                fields.get("month_of_year")
            )

        schedule = await self.schedules.create(PMSchedule(
            tenant_id=actor.tenant_id,
            name=name.strip(),
            frequency=frequency,
            asset_id=asset_id,
            location_id=location_id,
            next_due_date=next_due_date,
            **fields
        ))
        logger.info(f"PM schedule {schedule.id} created, first due {next_due_date}")
        return schedule

    async def update_schedule(self, schedule_id: UUID, actor: Actor, **changes) -> PMSchedule:
        """
        Edit a schedule.

        Changing the cadence recomputes next_due_date from today, but
        the date never moves backward. Required fields cannot be cleared.
        """
        require(actor, Action.MANAGE_SCHEDULES)
        existing = await self.get_schedule(actor.tenant_id, schedule_id)

        for field in REQUIRED_FIELDS:
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be cleared")
        if any(f in changes for f in CADENCE_FIELDS):
            changes["frequency"] = _check_cadence(
                changes.get("frequency", existing.frequency),
                {f: changes.get(f, getattr(existing, f)) for f in CADENCE_RANGES}
            )

        if "name" in changes:
            if not changes["name"] or not changes["name"].strip():
                raise ValidationError("Schedule name is required")
            changes["name"] = changes["name"].strip()

        _check_target(
            changes.get("asset_id", existing.asset_id),
            changes.get("location_id", existing.location_id)
        )

        if "next_due_date" in changes:
            if changes["next_due_date"] < existing.next_due_date:
                raise ValidationError("next_due_date can only move forward")
        elif any(f in changes for f in CADENCE_FIELDS):
            cadence = {f: changes.get(f, getattr(existing, f)) for f in CADENCE_FIELDS}
            recomputed = calculate_next_due_date(
                cadence["frequency"],
                utcnow().date(),
                cadence["day_of_week"],
                cadence["day_of_month"],
                cadence["month_of_year"]
            )
            changes["next_due_date"] = max(recomputed, existing.next_due_date)

        return await self.schedules.update(actor.tenant_id, schedule_id, **changes)

    async def activate_schedule(self, schedule_id: UUID, actor: Actor) -> PMSchedule:
        return await self.update_schedule(schedule_id, actor, is_active=True)

    async def deactivate_schedule(self, schedule_id: UUID, actor: Actor) -> PMSchedule:
        return await self.update_schedule(schedule_id, actor, is_active=False)

    async def delete_schedule(self, schedule_id: UUID, actor: Actor) -> None:
        require(actor, Action.MANAGE_SCHEDULES)
        await self.get_schedule(actor.tenant_id, schedule_id)
        await self.schedules.soft_delete(actor.tenant_id, schedule_id)
        logger.info(f"PM schedule {schedule_id} deleted by {actor.user_id}")

    async def record_completion(
        self,
        schedule_id: UUID,
        actor: Actor,
        ticket_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        checklist_results: Optional[Dict[str, Any]] = None
    ) -> PMCompletion:
        require(actor, Action.RECORD_PM_COMPLETION)
        schedule = await self.get_schedule(actor.tenant_id, schedule_id)

        today = utcnow().date()
        return await self.completions.create(PMCompletion(
            tenant_id=actor.tenant_id,
            schedule_id=schedule.id,
            ticket_id=ticket_id,
            scheduled_date=today,
            completed_date=today,
            completed_by=actor.user_id,
            notes=notes,
            checklist_results=checklist_results,
        ))

    async def get_completion_history(self, tenant_id: UUID, schedule_id: UUID) -> List[PMCompletion]:
        return await self.completions.find_all_matching(tenant_id, schedule_id=schedule_id)


def _check_cadence(frequency, anchors: Dict[str, Optional[int]]) -> PMFrequency:
    try:
        frequency = PMFrequency(frequency)
    except ValueError:
        raise ValidationError(f"Unknown frequency: {frequency!r}") from None

    for field, (low, high) in CADENCE_RANGES.items():
        value = anchors.get(field)
        if value is not None and not low <= value <= high:
            raise ValidationError(f"{field} must be between {low} and {high}")
    return frequency


def _check_target(asset_id: Optional[UUID], location_id: Optional[UUID]) -> None:
    if not asset_id and not location_id:
        raise ValidationError("Either asset_id or location_id is required")
    if asset_id and location_id:
        raise ValidationError("Cannot specify both asset_id and location_id")
