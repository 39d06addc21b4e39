import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from workorder_engine.config import Settings
from workorder_engine.engine import Engine
from workorder_engine.models import (
    Actor,
    Priority,
    Role,
    Ticket,
    TicketStatus,
    User,
    utcnow,
)
from workorder_engine.repository import Repositories
from workorder_engine.services import RecordingDispatcher


def run(coro):
    return asyncio.run(coro)


class Env:
    """
    One tenant with a user per role, in-memory stores and a recording
    dispatcher.
    """

    def __init__(self, **settings):
        settings.setdefault("cron_secret", "test-secret")
        self.settings = Settings(**settings)
        self.tenant_id = uuid4()
        self.repos = Repositories()
        self.dispatcher = RecordingDispatcher()
        self.engine = Engine(self.repos, self.dispatcher, self.settings)

        self.users = {
            role: self.add_user(role)
            for role in (Role.ADMIN, Role.MANAGER, Role.STAFF, Role.REQUESTER)
        }

    def add_user(self, role: Role, is_active: bool = True) -> User:
        return run(self.repos.users.create(User(
            tenant_id=self.tenant_id,
            full_name=f"{role.value} user",
            role=role,
            is_active=is_active,
        )))

    def actor(self, role: Role) -> Actor:
        user = self.users[role]
        return Actor(tenant_id=self.tenant_id, user_id=user.id, role=role)

    @property
    def admin(self) -> Actor:
        return self.actor(Role.ADMIN)

    @property
    def manager(self) -> Actor:
        return self.actor(Role.MANAGER)

    @property
    def staff(self) -> Actor:
        return self.actor(Role.STAFF)

    @property
    def requester(self) -> Actor:
        return self.actor(Role.REQUESTER)

    def submit(self, title: str = "Leaking tap in room 204", **fields) -> Ticket:
        return run(self.engine.tickets.create_ticket(self.requester, title, **fields))

    def ticket_in(self, status: TicketStatus, **fields) -> Ticket:
        """A ticket forced straight into `status`."""
        ticket = self.submit(**fields)
        if status == TicketStatus.SUBMITTED:
            return ticket
        return run(self.repos.tickets.update(self.tenant_id, ticket.id, status=status))

    def aged_ticket(self, hours: float, priority: Priority = Priority.MEDIUM, now=None, **fields) -> Ticket:
        """A submitted ticket created `hours` before `now`."""
        now = now or utcnow()
        return run(self.repos.tickets.create(Ticket(
            tenant_id=self.tenant_id,
            title=f"{priority.value} ticket aged {hours}h",
            submitted_by=self.users[Role.REQUESTER].id,
            priority=priority,
            created_at=now - timedelta(hours=hours),
            **fields
        )))

    def reload(self, ticket: Ticket) -> Ticket:
        return run(self.engine.tickets.get_ticket(self.tenant_id, ticket.id))


@pytest.fixture
def env():
    return Env()
