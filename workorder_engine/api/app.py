"""
Work-Order Engine API

FastAPI application with:
- Ticket lifecycle transitions
- Cost approval request / decision
- Emergency containment and resolution
- PM schedule administration
- Cron triggers for the escalation and PM sweeps

The caller's tenant and user arrive as X-Tenant-Id / X-User-Id headers
and are resolved to a role through the user store. Cron triggers use
a shared bearer secret instead.
"""

import logging
import secrets
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .. import __version__
from ..config import Settings, get_settings
from ..engine import Engine
from ..models import (
    Actor,
    CostApproval,
    EmergencyIncident,
    IncidentSeverity,
    PMCompletion,
    PMFrequency,
    PMSchedule,
    Priority,
    Ticket,
    TicketStatus,
)
from ..services import (
    DependencyFailure,
    Forbidden,
    InvalidTransition,
    JobSummary,
    NotFound,
    ValidationError,
    WorkflowError,
)

logger = logging.getLogger(__name__)

# =============================================================================
# APP SETUP
# =============================================================================

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

app = FastAPI(
    title="Work-Order Engine",
    description="Facility maintenance ticket workflow, approvals, emergencies and PM scheduling",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_engine: Optional[Engine] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = Engine()
    return _engine


async def get_actor(
    x_tenant_id: UUID = Header(...),
    x_user_id: UUID = Header(...),
    engine: Engine = Depends(get_engine)
) -> Actor:
    return await engine.auth.resolve(x_tenant_id, x_user_id)


bearer = HTTPBearer(auto_error=False)


def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    settings: Settings = Depends(get_settings)
) -> None:
    authorized = False
    if not settings.cron_secret:
        logger.warning("Cron trigger refused: cron_secret is not configured")
    elif credentials is not None:
        authorized = secrets.compare_digest(
            credentials.credentials.encode(), settings.cron_secret.encode()
        )

    if not authorized:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


# =============================================================================
# ERROR MAPPING
# =============================================================================

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    Forbidden: status.HTTP_403_FORBIDDEN,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DependencyFailure: status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            code = mapped
            break
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "detail": str(exc)}
    )


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateTicketRequest(BaseModel):
    title: str
    description: Optional[str] = None
    location_id: Optional[UUID] = None
    asset_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    priority: Priority = Priority.MEDIUM
    is_emergency: bool = False
    severity: Optional[IncidentSeverity] = None


class AssignRequest(BaseModel):
    assignee_id: UUID


class AssignVendorRequest(BaseModel):
    vendor_id: UUID


class CompleteRequest(BaseModel):
    actual_cost: Optional[float] = None


class CloseRequest(BaseModel):
    cost: Optional[float] = None
    notes: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str


class SetStatusRequest(BaseModel):
    status: TicketStatus


class RequestApprovalRequest(BaseModel):
    estimated_cost: float
    notes: Optional[str] = None


class ResolveEmergencyRequest(BaseModel):
    notes: str


class CreateScheduleRequest(BaseModel):
    name: str
    description: Optional[str] = None
    frequency: PMFrequency
    asset_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    month_of_year: Optional[int] = None
    next_due_date: Optional[date] = None
    assigned_to: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    estimated_cost: Optional[float] = None


class UpdateScheduleRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[PMFrequency] = None
    asset_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    month_of_year: Optional[int] = None
    next_due_date: Optional[date] = None
    assigned_to: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    estimated_cost: Optional[float] = None


class RecordCompletionRequest(BaseModel):
    ticket_id: Optional[UUID] = None
    notes: Optional[str] = None
    checklist_results: Optional[Dict[str, Any]] = None


# =============================================================================
# HEALTH CHECK
# =============================================================================

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "workorder-engine",
        "version": __version__
    }


# =============================================================================
# TICKET ENDPOINTS
# =============================================================================

@app.post("/tickets", status_code=status.HTTP_201_CREATED, response_model=Ticket)
async def create_ticket(
    request: CreateTicketRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    """
    Submit a ticket. Emergencies open an incident alongside it.
    """
    return await engine.tickets.create_ticket(actor, **request.model_dump())


@app.get("/tickets", response_model=List[Ticket])
async def list_tickets(
    status_filter: Optional[TicketStatus] = None,
    mine: bool = False,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    if mine:
        return await engine.tickets.get_my_tickets(actor.tenant_id, actor.user_id)
    filters = {"status": status_filter} if status_filter else {}
    return await engine.tickets.list_tickets(actor.tenant_id, **filters)


@app.get("/tickets/{ticket_id}", response_model=Ticket)
async def get_ticket(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.get_ticket(actor.tenant_id, ticket_id)


@app.post("/tickets/{ticket_id}/assign", response_model=Ticket)
async def assign_ticket(
    ticket_id: UUID,
    request: AssignRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.assign_ticket(ticket_id, actor, request.assignee_id)


@app.post("/tickets/{ticket_id}/vendor", response_model=Ticket)
async def assign_vendor(
    ticket_id: UUID,
    request: AssignVendorRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.assign_vendor(ticket_id, actor, request.vendor_id)


@app.post("/tickets/{ticket_id}/acknowledge", response_model=Ticket)
async def acknowledge_ticket(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    """
    Stamp acknowledged_at. The ticket stops escalating.
    """
    return await engine.tickets.acknowledge(ticket_id, actor)


@app.post("/tickets/{ticket_id}/start", response_model=Ticket)
async def start_work(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.start_work(ticket_id, actor)


@app.post("/tickets/{ticket_id}/complete", response_model=Ticket)
async def complete_ticket(
    ticket_id: UUID,
    request: CompleteRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    """
    Mark work done. 409 while a cost approval is pending.
    """
    return await engine.tickets.complete(ticket_id, actor, request.actual_cost)


@app.post("/tickets/{ticket_id}/verify", response_model=Ticket)
async def verify_ticket(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.verify(ticket_id, actor)


@app.post("/tickets/{ticket_id}/close", response_model=Ticket)
async def close_ticket(
    ticket_id: UUID,
    request: CloseRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.close(ticket_id, actor, request.cost, request.notes)


@app.post("/tickets/{ticket_id}/reject", response_model=Ticket)
async def reject_ticket(
    ticket_id: UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.reject(ticket_id, actor, request.reason)


@app.post("/tickets/{ticket_id}/hold", response_model=Ticket)
async def hold_ticket(
    ticket_id: UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.hold(ticket_id, actor, request.reason)


@app.post("/tickets/{ticket_id}/resume", response_model=Ticket)
async def resume_ticket(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.tickets.resume(ticket_id, actor)


@app.put("/tickets/{ticket_id}/status", response_model=Ticket)
async def set_ticket_status(
    ticket_id: UUID,
    request: SetStatusRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    """
    Supervisor override. Skips the transition graph.
    """
    return await engine.tickets.set_status(ticket_id, actor, request.status)


# =============================================================================
# COST APPROVAL ENDPOINTS
# =============================================================================

@app.post(
    "/tickets/{ticket_id}/approvals",
    status_code=status.HTTP_201_CREATED,
    response_model=CostApproval
)
async def request_approval(
    ticket_id: UUID,
    request: RequestApprovalRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.approvals.request_approval(
        ticket_id, actor, request.estimated_cost, request.notes
    )


@app.get("/tickets/{ticket_id}/approvals", response_model=List[CostApproval])
async def get_approval_history(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.approvals.get_approval_history(actor.tenant_id, ticket_id)


@app.get("/approvals/pending", response_model=List[CostApproval])
async def get_pending_approvals(
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.approvals.get_pending_approvals(actor.tenant_id)


@app.post("/approvals/{approval_id}/approve", response_model=CostApproval)
async def approve_request(
    approval_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.approvals.approve_request(approval_id, actor)


@app.post("/approvals/{approval_id}/deny", response_model=CostApproval)
async def deny_request(
    approval_id: UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.approvals.deny_request(approval_id, actor, request.reason)


# =============================================================================
# EMERGENCY ENDPOINTS
# =============================================================================

@app.get("/emergencies/active", response_model=List[EmergencyIncident])
async def get_active_incidents(
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.emergencies.get_active_incidents(actor.tenant_id)


@app.get("/emergencies/stats")
async def get_incident_stats(
    days: int = 30,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.emergencies.get_incident_stats(actor.tenant_id, days)


@app.post("/tickets/{ticket_id}/emergency/contain", response_model=EmergencyIncident)
async def contain_emergency(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.emergencies.contain_emergency(ticket_id, actor)


@app.post("/tickets/{ticket_id}/emergency/resolve", response_model=EmergencyIncident)
async def resolve_emergency(
    ticket_id: UUID,
    request: ResolveEmergencyRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    """
    Resolve the incident and drive the ticket to closed.
    """
    return await engine.emergencies.resolve_emergency(ticket_id, actor, request.notes)


# =============================================================================
# PM SCHEDULE ENDPOINTS
# =============================================================================

@app.post("/pm-schedules", status_code=status.HTTP_201_CREATED, response_model=PMSchedule)
async def create_schedule(
    request: CreateScheduleRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.create_schedule(actor, **request.model_dump())


@app.get("/pm-schedules", response_model=List[PMSchedule])
async def list_schedules(
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.list_schedules(actor.tenant_id)


@app.get("/pm-schedules/{schedule_id}", response_model=PMSchedule)
async def get_schedule(
    schedule_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.get_schedule(actor.tenant_id, schedule_id)


@app.patch("/pm-schedules/{schedule_id}", response_model=PMSchedule)
async def update_schedule(
    schedule_id: UUID,
    request: UpdateScheduleRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.update_schedule(
        schedule_id, actor, **request.model_dump(exclude_unset=True)
    )


@app.post("/pm-schedules/{schedule_id}/activate", response_model=PMSchedule)
async def activate_schedule(
    schedule_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.activate_schedule(schedule_id, actor)


@app.post("/pm-schedules/{schedule_id}/deactivate", response_model=PMSchedule)
async def deactivate_schedule(
    schedule_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.deactivate_schedule(schedule_id, actor)


@app.delete("/pm-schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    await engine.pm.delete_schedule(schedule_id, actor)


@app.post(
    "/pm-schedules/{schedule_id}/completions",
    status_code=status.HTTP_201_CREATED,
    response_model=PMCompletion
)
async def record_completion(
    schedule_id: UUID,
    request: RecordCompletionRequest,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine)
):
    return await engine.pm.record_completion(schedule_id, actor, **request.model_dump())


# =============================================================================
# CRON ENDPOINTS
# =============================================================================

@app.post(
    "/cron/ticket-escalation",
    response_model=JobSummary,
    dependencies=[Depends(require_cron_secret)]
)
async def run_ticket_escalation(tenant_id: UUID, engine: Engine = Depends(get_engine)):
    """
    Escalation sweep. Per-ticket failures are reported in the summary.
    """
    summary = await engine.escalation.run(tenant_id)
    logger.info(summary.message)
    return summary


@app.post(
    "/cron/pm-generate",
    response_model=JobSummary,
    dependencies=[Depends(require_cron_secret)]
)
async def run_pm_generate(tenant_id: UUID, engine: Engine = Depends(get_engine)):
    """
    PM ticket generation sweep.
    """
    summary = await engine.pm.generate_due_tickets(tenant_id)
    logger.info(summary.message)
    return summary


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
