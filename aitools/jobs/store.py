"""Job record store interface (Supabase tables or in-memory)."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from aitools.jobs.models import (
    InvalidTransition,
    JobRecord,
    JobStatus,
    can_transition,
    sources_for,
    utcnow,
)


class JobStore(ABC):
    """Abstract interface over the per-tool job tables.

    Updates are conditional: ``expect`` restricts the update to rows whose
    current status is in the given set, which is how concurrent settlement
    (webhook vs. reconcile vs. cancel) is kept single-winner.
    """

    @abstractmethod
    def create(self, job: JobRecord) -> JobRecord:
        """Insert a new job record."""
        ...

    @abstractmethod
    def get(self, tool: str, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    def find_by_task_id(self, task_id: str) -> Optional[JobRecord]:
        """Look a job up by external task id across every tool table."""
        ...

    @abstractmethod
    def find_active(self, user_id: str, tools: Sequence[str]) -> Optional[JobRecord]:
        """Return any non-terminal job of ``user_id`` in the given tools."""
        ...

    @abstractmethod
    def update(
        self,
        tool: str,
        job_id: str,
        changes: Dict[str, Any],
        expect: Optional[Iterable[JobStatus]] = None,
    ) -> Optional[JobRecord]:
        """Apply ``changes``; returns None when the row is missing or the condition failed."""
        ...

    @abstractmethod
    def claim_refund(self, tool: str, job_id: str) -> Optional[JobRecord]:
        """Flip ``credit_refunded`` false -> true for a job with a positive cost.

        Returns the job only for the single caller that won the claim.
        """
        ...

    @abstractmethod
    def list_stale(
        self,
        tool: str,
        statuses: Iterable[JobStatus],
        updated_before: datetime,
        limit: int,
    ) -> List[JobRecord]:
        ...

    def transition(
        self,
        tool: str,
        job_id: str,
        target: JobStatus,
        expect: Optional[Iterable[JobStatus]] = None,
        **changes: Any,
    ) -> Optional[JobRecord]:
        """Move a job to ``target`` if its current status allows it.

        ``expect`` defaults to every non-terminal status the state machine
        lets into ``target``.
        """
        changes["status"] = target
        changes.setdefault("updated_at", utcnow())
        return self.update(tool, job_id, changes, expect=sources_for(target) if expect is None else expect)

    def require_transition(self, job: JobRecord, target: JobStatus, **changes: Any) -> JobRecord:
        """Like :meth:`transition` from the job's current status, raising when it cannot apply."""
        if not can_transition(job.status, target):
            raise InvalidTransition(job.status, target)
        updated = self.transition(job.tool, job.id, target, expect=[job.status], **changes)
        if updated is None:
            current = self.get(job.tool, job.id)
            raise InvalidTransition(current.status if current else job.status, target)
        return updated
