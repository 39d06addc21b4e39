"""
Summary returned by the periodic jobs.

Counts for everything, plus a bounded sample of individual results
and the full error list.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from ..models.ticket import utcnow


class JobError(BaseModel):
    item_id: UUID
    error: str


class JobSummary(BaseModel):
    job: str
    tenant_id: UUID

    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    processed: int = 0
    generated: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0

    results: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[JobError] = Field(default_factory=list)
    message: str = ""

    sample_size: int = Field(default=10, exclude=True)

    def add_result(self, result: Dict[str, Any]) -> None:
        if len(self.results) < self.sample_size:
            self.results.append(result)

    def add_error(self, item_id: UUID, error: Exception) -> None:
        self.failed += 1
        self.errors.append(JobError(item_id=item_id, error=str(error) or type(error).__name__))

    def finish(self, message: str) -> "JobSummary":
        self.finished_at = utcnow()
        self.message = message
        return self

    @property
    def success(self) -> bool:
        return self.failed == 0
