"""
Tenant-scoped persistence.

Every call names the tenant explicitly. Services depend only on the
five operations below; InMemoryRepository implements them for the
default app wiring and the test-suite. A real backend raises
DependencyFailure when it cannot answer.
"""

from typing import Callable, Dict, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from .models import (
    TenantRecord, Ticket, CostApproval, EmergencyIncident, PMSchedule,
    PMCompletion, User, TicketCategory, utcnow
)
from .services.errors import NotFound

R = TypeVar("R", bound=TenantRecord)


class InMemoryRepository(Generic[R]):
    """
    Dict-backed store for one record type.

    Records are copied on the way in and out, so callers never hold
    a live reference to stored state.
    """

    def __init__(self, model: Type[R]):
        self.model = model
        self._rows: Dict[UUID, R] = {}

    async def find_by_id(
        self,
        tenant_id: UUID,
        record_id: UUID,
        include_deleted: bool = False
    ) -> Optional[R]:
        row = self._rows.get(record_id)
        if row is None or row.tenant_id != tenant_id:
            return None
        if row.is_deleted and not include_deleted:
            return None
        return row.model_copy(deep=True)

    async def find_all_matching(
        self,
        tenant_id: UUID,
        predicate: Optional[Callable[[R], bool]] = None,
        include_deleted: bool = False,
        **filters
    ) -> List[R]:
        """
        Rows of the tenant where every filter matches.

        A list/tuple/set filter value means "one of"; anything else
        means equality. `predicate` handles range conditions.
        """
        matches = []
        for row in self._rows.values():
            if row.tenant_id != tenant_id:
                continue
            if row.is_deleted and not include_deleted:
                continue
            if not all(_field_matches(row, k, v) for k, v in filters.items()):
                continue
            if predicate is not None and not predicate(row):
                continue
            matches.append(row.model_copy(deep=True))

        matches.sort(key=lambda r: r.created_at)
        return matches

    async def count(self, tenant_id: UUID, **filters) -> int:
        rows = await self.find_all_matching(tenant_id, include_deleted=True, **filters)
        return len(rows)

    async def create(self, record: R) -> R:
        if record.id in self._rows:
            raise ValueError(f"{self.model.__name__} {record.id} already exists")
        self._rows[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update(self, tenant_id: UUID, record_id: UUID, **changes) -> R:
        current = await self.find_by_id(tenant_id, record_id)
        if current is None:
            raise NotFound(f"{self.model.__name__} {record_id} not found")

        changes.setdefault("updated_at", utcnow())
        updated = current.model_copy(update=changes)
        self._rows[record_id] = updated
        return updated.model_copy(deep=True)

    async def soft_delete(self, tenant_id: UUID, record_id: UUID) -> None:
        await self.update(tenant_id, record_id, deleted_at=utcnow())


def _field_matches(row, field: str, expected) -> bool:
    actual = getattr(row, field)
    if isinstance(expected, (list, tuple, set, frozenset)):
        return actual in expected
    return actual == expected


class Repositories:
    """The full set of stores the engine talks to."""

    def __init__(
        self,
        tickets=None,
        approvals=None,
        incidents=None,
        schedules=None,
        completions=None,
        users=None,
        categories=None
    ):
        self.tickets = tickets or InMemoryRepository(Ticket)
        self.approvals = approvals or InMemoryRepository(CostApproval)
        self.incidents = incidents or InMemoryRepository(EmergencyIncident)
        self.schedules = schedules or InMemoryRepository(PMSchedule)
        self.completions = completions or InMemoryRepository(PMCompletion)
        self.users = users or InMemoryRepository(User)
        self.categories = categories or InMemoryRepository(TicketCategory)
