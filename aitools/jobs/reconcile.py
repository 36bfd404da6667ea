"""Pull-based reconciliation of job records with the provider.

RunningHub does not reliably deliver webhooks, so records can stay
``running`` after the task ended. ``reconcile_job`` re-queries one task;
``reconcile_stale_jobs`` is the watchdog sweep over every tool table.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from aitools.credits.ledger import CreditLedger
from aitools.errors import GatewayError
from aitools.jobs import lifecycle
from aitools.jobs.models import JobRecord, JobStatus, utcnow
from aitools.jobs.store import JobStore
from aitools.provider.runninghub import RunningHubClient
from aitools.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

NO_TASK_ID_MESSAGE = "Job timeout: no task_id after threshold"
UNVERIFIED_MESSAGE = "Job timeout: unable to verify status"
NEVER_SUBMITTED_MESSAGE = "Job never submitted to the provider"


@dataclass
class ReconcileResult:
    job_id: str
    task_id: Optional[str]
    provider_status: str
    job_status: JobStatus
    updated: bool
    outputs: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "task_id": self.task_id,
            "provider_status": self.provider_status,
            "job_status": self.job_status.value,
            "updated": self.updated,
            "outputs": self.outputs,
            "error": self.error,
        }


async def reconcile_job(
    jobs: JobStore, ledger: CreditLedger, provider: RunningHubClient, job: JobRecord
) -> ReconcileResult:
    """Re-query the job's task and settle it if the provider already finished."""
    if job.is_terminal:
        return ReconcileResult(job.id, job.task_id, "skipped", job.status, False)
    if not job.task_id:
        return ReconcileResult(job.id, None, "no_task_id", job.status, False)

    status = await provider.query(job.task_id)
    logger.info("Reconcile job_id=%s task_id=%s provider=%s", job.id, job.task_id, status.status)
    settled, updated = lifecycle.apply_task_status(jobs, ledger, job, status)
    return ReconcileResult(
        job.id, job.task_id, status.status, settled.status, updated, status.outputs, status.error
    )


async def reconcile_stale_jobs(
    jobs: JobStore,
    ledger: CreditLedger,
    provider: RunningHubClient,
    tools: ToolRegistry,
    running_minutes: int = 15,
    pending_minutes: int = 5,
    batch_size: int = 5,
) -> int:
    """Watchdog over all tool tables; returns how many jobs were settled.

    - running/queued past the threshold: re-query; failed or unverifiable
      tasks are failed and refunded
    - pending past the threshold: credits were taken but the run never
      happened (client crashed mid-start); fail and refund
    """
    now = utcnow()
    settled = 0
    for spec in tools.list_tools():
        stale = jobs.list_stale(
            spec.tool_id,
            [JobStatus.RUNNING, JobStatus.QUEUED],
            now - timedelta(minutes=running_minutes),
            batch_size,
        )
        for job in stale:
            if not job.task_id:
                lifecycle.fail_job(jobs, ledger, job.tool, job.id, NO_TASK_ID_MESSAGE)
                settled += 1
                continue
            try:
                status = await provider.query(job.task_id)
            except GatewayError as exc:
                logger.warning(
                    "Watchdog: query failed job_id=%s task_id=%s error=%s", job.id, job.task_id, exc.message
                )
                status = None
            if status is None or status.status == "unknown":
                lifecycle.fail_job(jobs, ledger, job.tool, job.id, UNVERIFIED_MESSAGE)
                settled += 1
                continue
            current, updated = lifecycle.apply_task_status(jobs, ledger, job, status)
            if updated and current.is_terminal:
                logger.info("Watchdog: job_id=%s %s", job.id, status.status)
                settled += 1

        orphaned = jobs.list_stale(
            spec.tool_id,
            [JobStatus.PENDING],
            now - timedelta(minutes=pending_minutes),
            batch_size,
        )
        for job in orphaned:
            lifecycle.fail_job(jobs, ledger, job.tool, job.id, NEVER_SUBMITTED_MESSAGE)
            settled += 1

    if settled:
        logger.info("Watchdog settled %s job(s)", settled)
    return settled
