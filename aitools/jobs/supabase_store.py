"""Job store backed by the per-tool Supabase job tables."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from supabase import Client

from aitools.jobs.models import ACTIVE_STATUSES, JobRecord, JobStatus, utcnow
from aitools.jobs.store import JobStore

logger = logging.getLogger(__name__)


def _to_json(changes: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in changes.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out


class SupabaseJobStore(JobStore):
    """One table per tool, e.g. ``pose_changer_jobs``.

    ``tables`` maps tool id -> table name and comes from the tool registry.
    """

    def __init__(self, client: Client, tables: Dict[str, str]):
        self._client = client
        self._tables = dict(tables)

    def _table(self, tool: str):
        try:
            return self._client.table(self._tables[tool])
        except KeyError:
            raise ValueError(f"Unknown tool '{tool}'")

    def create(self, job: JobRecord) -> JobRecord:
        response = self._table(job.tool).insert(job.to_row()).execute()
        rows = response.data or []
        return JobRecord.from_row(job.tool, rows[0]) if rows else job

    def get(self, tool: str, job_id: str) -> Optional[JobRecord]:
        response = self._table(tool).select("*").eq("id", job_id).limit(1).execute()
        rows = response.data or []
        return JobRecord.from_row(tool, rows[0]) if rows else None

    def find_by_task_id(self, task_id: str) -> Optional[JobRecord]:
        for tool in self._tables:
            response = self._table(tool).select("*").eq("task_id", task_id).limit(1).execute()
            rows = response.data or []
            if rows:
                return JobRecord.from_row(tool, rows[0])
        return None

    def find_active(self, user_id: str, tools: Sequence[str]) -> Optional[JobRecord]:
        active = [s.value for s in ACTIVE_STATUSES]
        for tool in tools:
            response = (
                self._table(tool)
                .select("*")
                .eq("user_id", user_id)
                .in_("status", active)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            if rows:
                return JobRecord.from_row(tool, rows[0])
        return None

    def update(
        self,
        tool: str,
        job_id: str,
        changes: Dict[str, Any],
        expect: Optional[Iterable[JobStatus]] = None,
    ) -> Optional[JobRecord]:
        changes = dict(changes)
        changes.setdefault("updated_at", utcnow())
        query = self._table(tool).update(_to_json(changes)).eq("id", job_id)
        if expect is not None:
            # Postgres evaluates the filter and the write in one statement.
            query = query.in_("status", [s.value for s in expect])
        rows = query.execute().data or []
        return JobRecord.from_row(tool, rows[0]) if rows else None

    def claim_refund(self, tool: str, job_id: str) -> Optional[JobRecord]:
        rows = (
            self._table(tool)
            .update({"credit_refunded": True, "updated_at": utcnow().isoformat()})
            .eq("id", job_id)
            .eq("credit_refunded", False)
            .gt("credit_cost", 0)
            .execute()
            .data
            or []
        )
        return JobRecord.from_row(tool, rows[0]) if rows else None

    def list_stale(
        self,
        tool: str,
        statuses: Iterable[JobStatus],
        updated_before: datetime,
        limit: int,
    ) -> List[JobRecord]:
        response = (
            self._table(tool)
            .select("*")
            .in_("status", [s.value for s in statuses])
            .lt("updated_at", updated_before.isoformat())
            .order("updated_at")
            .limit(limit)
            .execute()
        )
        return [JobRecord.from_row(tool, row) for row in response.data or []]
