"""Job record data model and lifecycle state machine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
ACTIVE_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.PENDING, JobStatus.QUEUED, JobStatus.RUNNING}
)

# COMPLETED -> PENDING is only taken by a refinement reopen.
ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.QUEUED: frozenset(
        {JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.RUNNING: frozenset(
        {JobStatus.QUEUED, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset({JobStatus.PENDING}),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class InvalidTransition(ValueError):
    def __init__(self, current: JobStatus, target: JobStatus):
        super().__init__(f"Cannot move job from {current.value} to {target.value}")
        self.current = current
        self.target = target


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: JobStatus) -> List[JobStatus]:
    """Non-terminal statuses from which ``target`` may be entered.

    Reopening a completed job is never implied; callers pass it explicitly.
    """
    return [
        s for s, targets in ALLOWED_TRANSITIONS.items()
        if target in targets and s not in TERMINAL_STATUSES
    ]


class JobRecord(BaseModel):
    """Tracks the lifecycle of one AI tool generation request."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    tool: str
    status: JobStatus = JobStatus.PENDING
    input_refs: Dict[str, Any] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    output_urls: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    task_id: Optional[str] = None
    credit_cost: int = 0
    credit_refunded: bool = False
    run_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def output_url(self) -> Optional[str]:
        """Latest output; earlier entries are the refinement history."""
        return self.output_urls[-1] if self.output_urls else None

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a table row (the tool is implied by the table)."""
        return self.model_dump(mode="json", exclude={"tool"})

    @classmethod
    def from_row(cls, tool: str, row: Dict[str, Any]) -> "JobRecord":
        data = dict(row)
        data["tool"] = tool
        data["output_urls"] = data.get("output_urls") or []
        data["input_refs"] = data.get("input_refs") or {}
        data["params"] = data.get("params") or {}
        return cls.model_validate(data)
