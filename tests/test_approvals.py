import pytest

from conftest import run
from workorder_engine.models import ApprovalStatus, TicketCategory, TicketStatus
from workorder_engine.services import (
    BlockedByApproval,
    Forbidden,
    InvalidTransition,
    ValidationError,
    requires_approval,
)


def test_pending_approval_blocks_completion(env):
    ticket = env.ticket_in(TicketStatus.IN_PROGRESS)
    run(env.engine.approvals.request_approval(ticket.id, env.staff, 1500.0))

    with pytest.raises(BlockedByApproval):
        run(env.engine.tickets.complete(ticket.id, env.manager))
    assert env.reload(ticket).status == TicketStatus.IN_PROGRESS


def test_blocked_is_an_invalid_transition(env):
    ticket = env.ticket_in(TicketStatus.IN_PROGRESS)
    run(env.engine.approvals.request_approval(ticket.id, env.staff, 1500.0))

    with pytest.raises(InvalidTransition):
        run(env.engine.tickets.complete(ticket.id, env.manager))


def test_approved_request_unblocks_and_records_actual_cost(env):
    ticket = env.ticket_in(TicketStatus.IN_PROGRESS)
    approval = run(env.engine.approvals.request_approval(ticket.id, env.staff, 1500.0, "New compressor"))
    approved = run(env.engine.approvals.approve_request(approval.id, env.manager))

    done = run(env.engine.tickets.complete(ticket.id, env.manager, actual_cost=1425.0))
    after = run(env.engine.approvals.get_approval(env.tenant_id, approval.id))

    assert approved.status == ApprovalStatus.APPROVED
    assert approved.approved_by == env.manager.user_id
    assert approved.approved_at is not None
    assert done.status == TicketStatus.COMPLETED
    assert after.actual_cost == 1425.0


def test_request_sets_ticket_estimate(env):
    ticket = env.submit()
    run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))
    assert env.reload(ticket).estimated_cost == 300.0


def test_decided_request_cannot_be_decided_again(env):
    ticket = env.submit()
    approval = run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))
    run(env.engine.approvals.approve_request(approval.id, env.admin))

    with pytest.raises(InvalidTransition):
        run(env.engine.approvals.approve_request(approval.id, env.admin))
    with pytest.raises(InvalidTransition):
        run(env.engine.approvals.deny_request(approval.id, env.admin, "Over budget"))


def test_denied_request_cannot_be_approved(env):
    ticket = env.submit()
    approval = run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))
    denied = run(env.engine.approvals.deny_request(approval.id, env.admin, "Get a second quote"))

    assert denied.status == ApprovalStatus.DENIED
    assert denied.denied_by == env.admin.user_id
    assert denied.denial_reason == "Get a second quote"
    assert denied.approved_by is None
    with pytest.raises(InvalidTransition):
        run(env.engine.approvals.approve_request(approval.id, env.admin))


def test_denial_requires_reason(env):
    ticket = env.submit()
    approval = run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))

    with pytest.raises(ValidationError):
        run(env.engine.approvals.deny_request(approval.id, env.admin, "  "))
    assert run(env.engine.approvals.get_approval(env.tenant_id, approval.id)).status == ApprovalStatus.PENDING


def test_one_active_request_per_ticket(env):
    ticket = env.submit()
    first = run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))

    with pytest.raises(ValidationError):
        run(env.engine.approvals.request_approval(ticket.id, env.manager, 250.0))

    run(env.engine.approvals.deny_request(first.id, env.admin, "Too expensive"))
    second = run(env.engine.approvals.request_approval(ticket.id, env.manager, 250.0))

    history = run(env.engine.approvals.get_approval_history(env.tenant_id, ticket.id))
    assert [a.id for a in history] == [first.id, second.id]


def test_request_requires_positive_cost(env):
    ticket = env.submit()
    with pytest.raises(ValidationError):
        run(env.engine.approvals.request_approval(ticket.id, env.manager, 0))


def test_request_on_terminal_ticket_fails(env):
    ticket = env.ticket_in(TicketStatus.CLOSED)
    with pytest.raises(InvalidTransition):
        run(env.engine.approvals.request_approval(ticket.id, env.manager, 100.0))


def test_staff_cannot_decide(env):
    ticket = env.submit()
    approval = run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))
    with pytest.raises(Forbidden):
        run(env.engine.approvals.approve_request(approval.id, env.staff))


def test_pending_queries(env):
    ticket = env.submit()
    approval = run(env.engine.approvals.request_approval(ticket.id, env.manager, 300.0))

    assert run(env.engine.approvals.get_pending_count(env.tenant_id)) == 1
    blocking = run(env.engine.approvals.get_blocking_approval(env.tenant_id, ticket.id))
    assert blocking.id == approval.id


def test_requires_approval_threshold(env):
    category = TicketCategory(tenant_id=env.tenant_id, name="HVAC", approval_threshold=500.0)
    uncapped = TicketCategory(tenant_id=env.tenant_id, name="Cleaning")

    assert requires_approval(category, 500.0)
    assert not requires_approval(category, 499.99)
    assert not requires_approval(uncapped, 10_000.0)
    assert not requires_approval(None, 10_000.0)
