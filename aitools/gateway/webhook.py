"""RunningHub webhook ingestion (API v2 ``TASK_END`` events)."""

import logging
from typing import Any, Dict

from aitools.credits.ledger import CreditLedger
from aitools.errors import ValidationError
from aitools.jobs import lifecycle
from aitools.jobs.store import JobStore
from aitools.provider.runninghub import TaskStatus, pick_output_urls

logger = logging.getLogger(__name__)


def parse_task_end(payload: Dict[str, Any]) -> TaskStatus:
    event_data = payload.get("eventData") or {}
    outputs = pick_output_urls(event_data.get("results") or [])
    if str(event_data.get("status") or "").upper() == "FAILED":
        return TaskStatus(
            status="failed",
            outputs=outputs,
            error=event_data.get("errorMessage") or event_data.get("errorCode") or "Processing failed",
            error_code=event_data.get("errorCode"),
        )
    return TaskStatus(status="succeeded", outputs=outputs)


def handle_webhook(jobs: JobStore, ledger: CreditLedger, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Settle the job a provider event refers to.

    Unknown events and task ids are acknowledged so the provider stops
    retrying; a repeated delivery finds the job terminal and changes nothing.
    """
    event = payload.get("event")
    task_id = payload.get("taskId")
    logger.info("Webhook event=%s task_id=%s", event, task_id)

    if event != "TASK_END":
        return {"success": True, "message": "Event ignored"}
    if not task_id:
        raise ValidationError("Missing taskId")

    job = jobs.find_by_task_id(str(task_id))
    if job is None:
        logger.info("Webhook for unknown task_id=%s, might be already processed", task_id)
        return {"success": True, "message": "Job not found"}

    status = parse_task_end(payload)
    settled, updated = lifecycle.apply_task_status(jobs, ledger, job, status)
    return {
        "success": True,
        "job_id": settled.id,
        "tool": settled.tool,
        "status": settled.status.value,
        "updated": updated,
    }
