"""In-process job store for local development and tests.

No external dependencies (Supabase) needed. Every change is published on a
:class:`JobEventBus` so clients get realtime updates like they would from
Supabase.
"""

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from aitools.jobs.events import JobEventBus
from aitools.jobs.models import ACTIVE_STATUSES, JobRecord, JobStatus, utcnow
from aitools.jobs.store import JobStore


class InMemoryJobStore(JobStore):
    def __init__(self, bus: Optional[JobEventBus] = None):
        self._jobs: Dict[Tuple[str, str], JobRecord] = {}
        self._lock = threading.Lock()
        self.bus = bus or JobEventBus()

    def create(self, job: JobRecord) -> JobRecord:
        with self._lock:
            key = (job.tool, job.id)
            if key in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[key] = job
        self.bus.publish(job)
        return job

    def get(self, tool: str, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get((tool, job_id))

    def find_by_task_id(self, task_id: str) -> Optional[JobRecord]:
        for job in list(self._jobs.values()):
            if job.task_id == task_id:
                return job
        return None

    def find_active(self, user_id: str, tools: Sequence[str]) -> Optional[JobRecord]:
        for job in list(self._jobs.values()):
            if job.user_id == user_id and job.tool in tools and job.status in ACTIVE_STATUSES:
                return job
        return None

    def update(
        self,
        tool: str,
        job_id: str,
        changes: Dict[str, Any],
        expect: Optional[Iterable[JobStatus]] = None,
    ) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get((tool, job_id))
            if job is None:
                return None
            if expect is not None and job.status not in set(expect):
                return None
            changes = dict(changes)
            changes.setdefault("updated_at", utcnow())
            updated = job.model_copy(update=changes)
            self._jobs[(tool, job_id)] = updated
        self.bus.publish(updated)
        return updated

    def claim_refund(self, tool: str, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get((tool, job_id))
            if job is None or job.credit_refunded or job.credit_cost <= 0:
                return None
            updated = job.model_copy(update={"credit_refunded": True, "updated_at": utcnow()})
            self._jobs[(tool, job_id)] = updated
        return updated

    def list_stale(
        self,
        tool: str,
        statuses: Iterable[JobStatus],
        updated_before: datetime,
        limit: int,
    ) -> List[JobRecord]:
        wanted = set(statuses)
        stale = [
            job for job in list(self._jobs.values())
            if job.tool == tool and job.status in wanted and job.updated_at < updated_before
        ]
        stale.sort(key=lambda j: j.updated_at)
        return stale[:limit]

    def all(self) -> List[JobRecord]:
        return list(self._jobs.values())
