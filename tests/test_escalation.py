from datetime import timedelta

from conftest import Env, run
from workorder_engine.models import Priority, Role, TicketStatus, utcnow


class _FailingDispatcher:
    async def notify(self, subject, recipients, context):
        raise ConnectionError("mail relay unreachable")


def sweep(env, now):
    return run(env.engine.escalation.run(env.tenant_id, now=now))


def test_critical_threshold_boundary(env):
    now = utcnow()
    late = env.aged_ticket(2 + 1 / 60, Priority.CRITICAL, now=now)
    env.aged_ticket(2 - 1 / 60, Priority.CRITICAL, now=now)

    summary = sweep(env, now)

    assert summary.processed == 2
    assert summary.escalated == 1
    assert summary.results[0]["ticket_id"] == late.id


def test_high_escalates_and_low_does_not_after_five_hours(env):
    now = utcnow()
    high = env.aged_ticket(5, Priority.HIGH, now=now)
    env.aged_ticket(5, Priority.LOW, now=now)

    summary = sweep(env, now)

    assert summary.escalated == 1
    result = summary.results[0]
    assert result["ticket_id"] == high.id
    assert "5 hours" in result["reason"]
    assert result["reason"] == "High priority ticket without response for 5 hours"


def test_exactly_at_threshold_does_not_escalate(env):
    now = utcnow()
    env.aged_ticket(8, Priority.MEDIUM, now=now)
    assert sweep(env, now).escalated == 0


def test_emergency_uses_tighter_thresholds(env):
    now = utcnow()
    env.aged_ticket(1.5, Priority.CRITICAL, now=now, is_emergency=True)
    env.aged_ticket(1.5, Priority.CRITICAL, now=now)

    summary = sweep(env, now)

    assert summary.escalated == 1
    assert summary.results[0]["reason"].startswith("Emergency critical ticket")


def test_acknowledged_and_started_tickets_are_ignored(env):
    now = utcnow()
    acked = env.aged_ticket(30, Priority.LOW, now=now)
    run(env.engine.tickets.acknowledge(acked.id, env.manager))
    env.aged_ticket(30, Priority.LOW, now=now, status=TicketStatus.IN_PROGRESS)

    summary = sweep(env, now)

    assert summary.processed == 0
    assert summary.escalated == 0


def test_one_notification_per_ticket_to_active_supervisors(env):
    now = utcnow()
    extra_manager = env.add_user(Role.MANAGER)
    env.add_user(Role.ADMIN, is_active=False)
    ticket = env.aged_ticket(3, Priority.CRITICAL, now=now)

    summary = sweep(env, now)

    assert len(env.dispatcher.sent) == 1
    sent = env.dispatcher.sent[0]
    assert set(sent.recipients) == {env.manager.user_id, env.admin.user_id, extra_manager.id}
    assert len(sent.recipients) == 3
    assert sent.context["ticket"].id == ticket.id
    assert summary.results[0]["notified_count"] == 3


def test_sweep_never_writes_tickets(env):
    now = utcnow()
    ticket = env.aged_ticket(30, Priority.LOW, now=now)
    sweep(env, now)
    assert env.reload(ticket) == ticket


def test_unacknowledged_ticket_escalates_every_run(env):
    now = utcnow()
    env.aged_ticket(3, Priority.CRITICAL, now=now)

    first = sweep(env, now)
    second = sweep(env, now + timedelta(minutes=15))

    assert first.escalated == second.escalated == 1
    assert len(env.dispatcher.sent) == 2


def test_no_supervisors_means_skipped(env):
    for role in (Role.MANAGER, Role.ADMIN):
        run(env.repos.users.update(env.tenant_id, env.users[role].id, is_active=False))
    now = utcnow()
    env.aged_ticket(3, Priority.CRITICAL, now=now)

    summary = sweep(env, now)

    assert summary.escalated == 0
    assert summary.skipped == 1
    assert summary.success


def test_notification_failure_is_recorded(env):
    env.engine.notifications.dispatcher = _FailingDispatcher()
    now = utcnow()
    ticket = env.aged_ticket(3, Priority.CRITICAL, now=now)

    summary = sweep(env, now)

    assert summary.escalated == 0
    assert summary.failed == 1
    assert not summary.success
    assert summary.errors[0].item_id == ticket.id
    assert "mail relay unreachable" in summary.errors[0].error


def test_results_sample_is_bounded():
    env = Env(job_result_sample_size=2)
    now = utcnow()
    for _ in range(3):
        env.aged_ticket(30, Priority.LOW, now=now)

    summary = sweep(env, now)

    assert summary.escalated == 3
    assert len(summary.results) == 2
    assert summary.finished_at is not None
    assert "Escalated 3" in summary.message
    assert "sample_size" not in summary.model_dump()
