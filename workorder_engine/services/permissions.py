"""
Work-Order Permissions

Roles are a closed enum; authorization is one capability table
(action → allowed roles), checked once at the top of each operation.

Participant actions also admit the ticket's submitter or assignee,
whatever their role.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional
from uuid import UUID

from ..models.ticket import Actor, Role, Ticket
from .errors import Forbidden


class Action(str, Enum):
    CREATE_TICKET = "create_ticket"
    ASSIGN = "assign"
    ACKNOWLEDGE = "acknowledge"
    START_WORK = "start_work"
    COMPLETE = "complete"
    VERIFY = "verify"
    CLOSE = "close"
    REJECT = "reject"
    HOLD = "hold"
    RESUME = "resume"
    SET_STATUS = "set_status"
    REQUEST_APPROVAL = "request_approval"
    DECIDE_APPROVAL = "decide_approval"
    CONTAIN_EMERGENCY = "contain_emergency"
    RESOLVE_EMERGENCY = "resolve_emergency"
    MANAGE_SCHEDULES = "manage_schedules"
    RECORD_PM_COMPLETION = "record_pm_completion"


SUPERVISORS: FrozenSet[Role] = frozenset({Role.MANAGER, Role.ADMIN})
WORKERS: FrozenSet[Role] = SUPERVISORS | {Role.STAFF}

CAPABILITIES: Dict[Action, FrozenSet[Role]] = {
    Action.CREATE_TICKET: frozenset(Role),
    Action.ASSIGN: SUPERVISORS | {Role.SYSTEM},
    Action.ACKNOWLEDGE: SUPERVISORS,
    Action.START_WORK: SUPERVISORS,
    Action.COMPLETE: SUPERVISORS,
    Action.VERIFY: SUPERVISORS,
    Action.CLOSE: SUPERVISORS,
    Action.REJECT: SUPERVISORS,
    Action.HOLD: SUPERVISORS,
    Action.RESUME: SUPERVISORS,
    Action.SET_STATUS: SUPERVISORS,
    Action.REQUEST_APPROVAL: WORKERS,
    Action.DECIDE_APPROVAL: SUPERVISORS,
    Action.CONTAIN_EMERGENCY: WORKERS,
    Action.RESOLVE_EMERGENCY: WORKERS,
    Action.MANAGE_SCHEDULES: SUPERVISORS | {Role.SYSTEM},
    Action.RECORD_PM_COMPLETION: WORKERS,
}

PARTICIPANT_ACTIONS: FrozenSet[Action] = frozenset({
    Action.ACKNOWLEDGE,
    Action.START_WORK,
    Action.COMPLETE,
    Action.CLOSE,
    Action.REQUEST_APPROVAL,
})


def is_participant(actor: Actor, ticket: Ticket) -> bool:
    return actor.user_id in (ticket.submitted_by, ticket.assigned_to)


def can(actor: Actor, action: Action, ticket: Optional[Ticket] = None) -> bool:
    if actor.role in CAPABILITIES[action]:
        return True
    if ticket is not None and action in PARTICIPANT_ACTIONS:
        return is_participant(actor, ticket)
    return False


def require(actor: Actor, action: Action, ticket: Optional[Ticket] = None) -> None:
    """Raise Forbidden unless the actor holds the capability."""
    if ticket is not None and ticket.tenant_id != actor.tenant_id:
        raise Forbidden("Ticket belongs to another tenant.")

    if not can(actor, action, ticket):
        raise Forbidden(
            f"Role '{actor.role.value}' may not {action.value.replace('_', ' ')}"
            + (" on a ticket it neither submitted nor is assigned to." if ticket else ".")
        )


class AuthContext:
    """
    Resolves the calling identity into an Actor.

    Identity and sessions live outside the engine; this only maps a
    known (tenant, user) pair to its role.
    """

    def __init__(self, user_repo):
        self.users = user_repo

    async def resolve(self, tenant_id: UUID, user_id: UUID) -> Actor:
        user = await self.users.find_by_id(tenant_id, user_id)
        if user is None or not user.is_active:
            raise Forbidden("Unknown or inactive user for this tenant.")
        return Actor(tenant_id=tenant_id, user_id=user.id, role=user.role)
