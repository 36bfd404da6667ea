"""Generic tool gateway: one request handler for every AI tool.

A ``ToolGateway`` is built per request from a ``ToolSpec`` plus the
request-scoped store, ledger, provider client and rate limiter. It holds no
state between calls.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from PIL import Image, UnidentifiedImageError

from aitools.credits.ledger import CreditLedger
from aitools.errors import (
    ForbiddenError,
    GatewayError,
    JobNotFound,
    ReconciliationMismatch,
    UpstreamUnavailable,
    ValidationError,
)
from aitools.jobs import lifecycle
from aitools.jobs.lifecycle import CancelResult
from aitools.jobs.models import JobRecord, JobStatus, utcnow
from aitools.jobs.reconcile import ReconcileResult, reconcile_job
from aitools.jobs.store import JobStore
from aitools.provider.runninghub import RunningHubClient, TaskStatus
from aitools.ratelimit import RateLimiter
from aitools.tools.base import ToolSpec, build_node_info_list, image_values

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024
MAX_JOB_ID_LENGTH = 100
_PIL_MIME = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}


@dataclass
class AssetRef:
    file_name: str
    mime_type: str


def decode_image(image_base64: str) -> Tuple[bytes, str]:
    """Decode a base64 (optionally data-URL) image and detect its MIME type."""
    if not image_base64:
        raise ValidationError("imageBase64 is required")
    if image_base64.startswith("data:") and "," in image_base64:
        image_base64 = image_base64.split(",", 1)[1]
    try:
        data = base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("imageBase64 is not valid base64")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError("Image too large (max 20 MB)")
    return data, sniff_image(data)


def sniff_image(data: bytes) -> str:
    """Verify ``data`` is a JPEG, PNG or WEBP image and return its MIME type."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationError("File must be an image")
    mime = _PIL_MIME.get(fmt or "")
    if mime is None:
        raise ValidationError(f"Unsupported image format: {fmt}")
    return mime


class ToolGateway:
    def __init__(
        self,
        spec: ToolSpec,
        jobs: JobStore,
        ledger: CreditLedger,
        provider: RunningHubClient,
        limiter: RateLimiter,
        webhook_url: str,
        allowed_hosts: Sequence[str],
    ):
        self.spec = spec
        self._jobs = jobs
        self._ledger = ledger
        self._provider = provider
        self._limiter = limiter
        self._webhook_url = webhook_url
        self._allowed_hosts = [h for h in allowed_hosts if h]

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------

    async def upload(self, user_id: str, image_base64: str, file_name: Optional[str] = None) -> AssetRef:
        """Send one image straight to the provider and return its file reference."""
        self._limiter.enforce(user_id, f"{self.spec.tool_id}/upload", self.spec.upload_limit)
        data, mime = decode_image(image_base64)
        name = file_name or f"upload.{mime.split('/')[-1]}"
        file_ref = await self._provider.upload(data, name, mime)
        return AssetRef(file_name=file_ref, mime_type=mime)

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------

    def get_job(self, user_id: str, job_id: str) -> JobRecord:
        if not job_id or not isinstance(job_id, str) or len(job_id) > MAX_JOB_ID_LENGTH:
            raise ValidationError("Valid jobId is required")
        job = self._jobs.get(self.spec.tool_id, job_id)
        if job is None:
            raise JobNotFound("Job not found")
        if job.user_id != user_id:
            raise ForbiddenError("Not authorized to access this job")
        return job

    def _check_image_url(self, url: str) -> None:
        try:
            host = urlparse(url).hostname
        except ValueError:
            host = None
        if not host:
            raise ValidationError("Invalid image URL format")
        if not any(host == allowed or host.endswith("." + allowed) for allowed in self._allowed_hosts):
            logger.warning("Rejected image URL host=%s tool=%s", host, self.spec.tool_id)
            raise ValidationError("Image URLs must be from Supabase storage")

    async def run(
        self,
        user_id: str,
        job_id: str,
        assets: Mapping[str, Any],
        params: Optional[Mapping[str, Any]] = None,
        variant: str = "default",
    ) -> str:
        """Submit a pending job to the provider; returns the external task id.

        Credits must already be consumed (``credit_cost`` set on the job).
        Any failure after validation fails the job and refunds it once.
        """
        self._limiter.enforce(user_id, f"{self.spec.tool_id}/run", self.spec.run_limit)
        params = dict(params or {})
        job = self.get_job(user_id, job_id)
        workflow = self.spec.workflow(variant)

        if job.status not in (JobStatus.PENDING, JobStatus.QUEUED):
            raise ValidationError(f"Job is {job.status.value}, expected pending")
        if job.credit_cost <= 0:
            raise ValidationError("Credits must be consumed before the job is submitted")
        self.spec.check_credit_cost(job.credit_cost)

        assets = dict(assets)
        # A refinement always reworks the latest output, never an earlier one.
        if variant == "refine" and job.output_url:
            assets["result"] = job.output_url

        image_urls: Dict[str, List[str]] = {}
        for slot in workflow.image_slots():
            urls = image_values(slot, assets.get(slot.name))
            for url in urls:
                if url not in job.output_urls:
                    self._check_image_url(url)
            image_urls[slot.name] = urls

        try:
            image_refs: Dict[str, List[str]] = {}
            for name, urls in image_urls.items():
                image_refs[name] = []
                for i, url in enumerate(urls):
                    image_refs[name].append(await self._provider.transfer_from_url(url, f"{name}_{i}.png"))
            node_info_list = build_node_info_list(workflow, params, image_refs)
            logger.info(
                "Submitting tool=%s job_id=%s variant=%s nodes=%s",
                self.spec.tool_id, job.id, variant, len(node_info_list),
            )
            task_id = await self._provider.run_app(workflow.webapp_id, node_info_list, self._webhook_url)
        except GatewayError as exc:
            lifecycle.fail_job(self._jobs, self._ledger, job.tool, job.id, exc.message)
            raise
        except Exception as exc:
            logger.exception("Run failed tool=%s job_id=%s", self.spec.tool_id, job.id)
            lifecycle.fail_job(self._jobs, self._ledger, job.tool, job.id, str(exc))
            raise UpstreamUnavailable(str(exc)) from exc

        started = self._jobs.transition(
            job.tool,
            job.id,
            JobStatus.RUNNING,
            expect=[JobStatus.PENDING, JobStatus.QUEUED],
            task_id=task_id,
            input_refs={k: v for k, v in assets.items() if v},
            params=params,
            started_at=utcnow(),
        )
        if started is None:
            # Cancelled while we were submitting.
            await self._provider.cancel(task_id)
            raise ReconciliationMismatch("Job changed state during submission", {"task_id": task_id})
        logger.info("Job running tool=%s job_id=%s task_id=%s", self.spec.tool_id, job.id, task_id)
        return task_id

    # ------------------------------------------------------------------
    # status / reconcile / cancel
    # ------------------------------------------------------------------

    async def query_status(self, task_id: str) -> TaskStatus:
        if not task_id:
            raise ValidationError("taskId is required")
        return await self._provider.query(task_id)

    async def reconcile(self, user_id: str, job_id: str, task_id: Optional[str] = None) -> ReconcileResult:
        job = self.get_job(user_id, job_id)
        if task_id and job.task_id and task_id != job.task_id:
            raise ReconciliationMismatch(
                "Task id does not belong to this job",
                {"job_task_id": job.task_id, "task_id": task_id},
            )
        return await reconcile_job(self._jobs, self._ledger, self._provider, job)

    async def cancel(self, user_id: str, job_id: str) -> CancelResult:
        """Cancel and refund; safe to call again once the job is terminal."""
        job = self.get_job(user_id, job_id)
        result = lifecycle.cancel_job(self._jobs, self._ledger, job)
        if not result.already_terminal and job.task_id:
            await self._provider.cancel(job.task_id)
        return result
