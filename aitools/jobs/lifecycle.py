"""Job settlement: completion, failure, cancellation and refund-once.

Every path that ends a job (gateway error, webhook, reconcile, watchdog,
user cancel, client-side compensation) goes through these functions, so a
failed or cancelled job is refunded exactly once no matter how many of those
paths observe it.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from aitools.credits.ledger import CreditLedger
from aitools.errors import JobNotFound
from aitools.jobs.models import JobRecord, JobStatus, utcnow
from aitools.jobs.store import JobStore
from aitools.provider.runninghub import TaskStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500
NO_OUTPUT_MESSAGE = "Processing finished with no output"
PROGRESS_STATUSES = {"queued": JobStatus.QUEUED, "running": JobStatus.RUNNING}


@dataclass
class CancelResult:
    success: bool
    refunded_amount: int
    already_terminal: bool
    status: JobStatus
    error_message: Optional[str] = None


def refund_once(jobs: JobStore, ledger: CreditLedger, job: JobRecord, reason: str) -> int:
    """Refund the job's credits if nobody has yet; returns the amount refunded.

    The claim on ``credit_refunded`` is a conditional write, so only one
    caller ever reaches the ledger. If the ledger call fails the claim is
    released and the error propagates, leaving the refund for the next
    settlement pass instead of losing it.
    """
    claimed = jobs.claim_refund(job.tool, job.id)
    if claimed is None:
        return 0
    try:
        ledger.refund(
            claimed.user_id,
            claimed.credit_cost,
            f"Refund: {reason}"[:MAX_ERROR_LENGTH],
            job_id=claimed.id,
        )
    except Exception:
        logger.error("Refund failed, releasing claim job_id=%s", job.id)
        jobs.update(job.tool, job.id, {"credit_refunded": False})
        raise
    logger.info("Refunded %s credits user_id=%s job_id=%s", claimed.credit_cost, claimed.user_id, claimed.id)
    return claimed.credit_cost


def fail_job(
    jobs: JobStore, ledger: CreditLedger, tool: str, job_id: str, error_message: str
) -> JobRecord:
    """Mark a job failed (if still active) and make sure it was refunded.

    Safe to call repeatedly and from competing paths.
    """
    error_message = (error_message or "Processing failed")[:MAX_ERROR_LENGTH]
    job = jobs.transition(
        tool, job_id, JobStatus.FAILED, error_message=error_message, completed_at=utcnow()
    )
    if job is None:
        job = jobs.get(tool, job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.status != JobStatus.FAILED:
            logger.info("Not failing job_id=%s, already %s", job_id, job.status.value)
            return job
    else:
        logger.warning("Job failed tool=%s job_id=%s error=%s", tool, job_id, error_message)
    refund_once(jobs, ledger, job, job.error_message or error_message)
    return jobs.get(tool, job_id) or job


def complete_job(
    jobs: JobStore, ledger: CreditLedger, job: JobRecord, outputs: List[str]
) -> Optional[JobRecord]:
    """Record a successful run; the new output is appended to the history."""
    if not outputs:
        return fail_job(jobs, ledger, job.tool, job.id, NO_OUTPUT_MESSAGE)
    current = jobs.get(job.tool, job.id) or job
    updated = jobs.transition(
        job.tool,
        job.id,
        JobStatus.COMPLETED,
        output_urls=list(current.output_urls) + [outputs[0]],
        error_message=None,
        completed_at=utcnow(),
    )
    if updated is not None:
        logger.info("Job completed tool=%s job_id=%s output=%s", job.tool, job.id, outputs[0])
    return updated


def apply_task_status(
    jobs: JobStore, ledger: CreditLedger, job: JobRecord, status: TaskStatus
) -> Tuple[JobRecord, bool]:
    """Settle a job from a provider status; returns (job, whether it changed)."""
    if job.is_terminal:
        return job, False
    if status.status == "succeeded":
        updated = complete_job(jobs, ledger, job, status.outputs)
    elif status.status == "failed":
        message = status.error or f"RunningHub error: {status.error_code}"
        updated = fail_job(jobs, ledger, job.tool, job.id, message)
    elif status.status in PROGRESS_STATUSES:
        # Mirror the provider queue position; only a real change is written.
        target = PROGRESS_STATUSES[status.status]
        if job.status == target or job.status == JobStatus.PENDING:
            return job, False
        mirrored = jobs.transition(job.tool, job.id, target, expect=[job.status])
        return (mirrored, True) if mirrored is not None else (jobs.get(job.tool, job.id) or job, False)
    else:
        return job, False
    if updated is None:
        return jobs.get(job.tool, job.id) or job, False
    return updated, updated.is_terminal


def cancel_job(
    jobs: JobStore, ledger: CreditLedger, job: JobRecord, reason: str = "Cancelled by user"
) -> CancelResult:
    """Cancel an active job and refund it. A no-op on terminal jobs."""
    if job.is_terminal:
        return CancelResult(True, 0, True, job.status)
    cancelled = jobs.transition(
        job.tool, job.id, JobStatus.CANCELLED, error_message=reason, completed_at=utcnow()
    )
    if cancelled is None:
        # Lost the race against a webhook or another cancel.
        current = jobs.get(job.tool, job.id) or job
        return CancelResult(True, 0, True, current.status)
    refunded = refund_once(jobs, ledger, cancelled, reason)
    logger.info("Job cancelled tool=%s job_id=%s refunded=%s", job.tool, job.id, refunded)
    return CancelResult(True, refunded, False, JobStatus.CANCELLED)
