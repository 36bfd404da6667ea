"""Client-side job lifecycle: start, refine, cancel and follow tool jobs.

The manager runs the start saga for one authenticated user:

1. refuse if a job of the same tool family is active (or being started)
2. upload raw image assets to storage
3. pre-generate the job id and consume credits atomically
4. create the job record as ``pending`` with its ``credit_cost``
5. hand the job to the gateway

If anything fails after step 3 the job is failed and refunded once; if the
record itself could not be created the ledger is refunded directly.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Set, Union

from aitools.client.gateway_client import GatewayClient
from aitools.client.storage import StorageUploader
from aitools.client.subscription import JobFeed, JobSubscription, JobUpdate, collect
from aitools.credits.ledger import INSUFFICIENT_BALANCE_MESSAGE, CreditLedger
from aitools.errors import (
    ActiveJobExists,
    ForbiddenError,
    InsufficientCredits,
    JobNotFound,
    ReconciliationMismatch,
    ValidationError,
)
from aitools.gateway.service import sniff_image
from aitools.jobs import lifecycle
from aitools.jobs.lifecycle import CancelResult
from aitools.jobs.models import InvalidTransition, JobRecord, JobStatus
from aitools.jobs.store import JobStore
from aitools.tools.base import ToolSpec
from aitools.tools.registry import ToolRegistry, registry as default_registry

logger = logging.getLogger(__name__)

REFINE_TOOL = "character_generator"
REFINE_VARIANT = "refine"


@dataclass
class ClientContext:
    """Everything one signed-in user's session needs; passed explicitly."""
    user_id: str
    jobs: JobStore
    ledger: CreditLedger
    storage: StorageUploader
    gateway: GatewayClient
    feed: JobFeed
    tools: ToolRegistry = field(default_factory=lambda: default_registry)


@dataclass
class JobHandle:
    tool: str
    job_id: str
    task_id: str
    credit_cost: int
    variant: str = "default"


class JobManager:
    def __init__(self, ctx: ClientContext):
        self.ctx = ctx
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def _claim_family(self, spec: ToolSpec) -> None:
        if spec.family in self._in_flight:
            raise ActiveJobExists("A job is already being started", tool=spec.tool_id)
        self._in_flight.add(spec.family)

    def _check_no_active(self, spec: ToolSpec) -> None:
        active = self.ctx.jobs.find_active(self.ctx.user_id, self.ctx.tools.family_members(spec.tool_id))
        if active is not None:
            raise ActiveJobExists("You already have a job in progress", active.id, active.tool)

    async def _store_asset(self, spec: ToolSpec, slot: str, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [await self._store_asset(spec, slot, v) for v in value]
        if isinstance(value, (bytes, bytearray)):
            data = bytes(value)
            return await self.ctx.storage.upload(spec.tool_id, self.ctx.user_id, slot, data, sniff_image(data))
        return value

    async def _upload_assets(self, spec: ToolSpec, assets: Mapping[str, Any]) -> Dict[str, Any]:
        uploaded = {}
        for slot, value in assets.items():
            if value is None:
                continue
            uploaded[slot] = await self._store_asset(spec, slot, value)
        return uploaded

    def _consume(self, spec: ToolSpec, cost: int, job_id: str, description: str) -> None:
        result = self.ctx.ledger.consume(self.ctx.user_id, cost, description, job_id=job_id)
        if not result.success:
            logger.info(
                "Credit consume rejected user_id=%s tool=%s cost=%s balance=%s",
                self.ctx.user_id, spec.tool_id, cost, result.new_balance,
            )
            raise InsufficientCredits(
                result.error_message or INSUFFICIENT_BALANCE_MESSAGE, balance=result.new_balance
            )

    async def _submit(self, tool: str, job_id: str, assets, params, variant: str) -> str:
        try:
            return await self.ctx.gateway.run(tool, job_id, assets, params, variant)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc)
            logger.warning("Submit failed tool=%s job_id=%s error=%s", tool, job_id, message)
            lifecycle.fail_job(self.ctx.jobs, self.ctx.ledger, tool, job_id, message)
            raise

    async def start_job(
        self,
        tool: str,
        assets: Mapping[str, Any],
        params: Optional[Mapping[str, Any]] = None,
        credit_cost: Optional[int] = None,
        variant: str = "default",
    ) -> JobHandle:
        """Run the start saga; raises a ``GatewayError`` subclass on failure.

        ``assets`` maps image slot -> raw bytes, a storage URL, or a list of
        either. Raw bytes are uploaded to storage first.
        """
        spec = self.ctx.tools.require(tool)
        spec.workflow(variant)
        cost = spec.default_credit_cost if credit_cost is None else credit_cost
        spec.check_credit_cost(cost)
        params = dict(params or {})

        self._claim_family(spec)
        try:
            self._check_no_active(spec)
            urls = await self._upload_assets(spec, assets)

            job_id = str(uuid.uuid4())
            self._consume(spec, cost, job_id, spec.name)

            job = JobRecord(
                id=job_id,
                user_id=self.ctx.user_id,
                tool=tool,
                status=JobStatus.PENDING,
                input_refs=urls,
                params=params,
                credit_cost=cost,
                run_count=1,
            )
            try:
                self.ctx.jobs.create(job)
            except Exception:
                logger.exception("Job create failed, refunding user_id=%s job_id=%s", self.ctx.user_id, job_id)
                self.ctx.ledger.refund(self.ctx.user_id, cost, "Refund: job creation failed", job_id=job_id)
                raise

            task_id = await self._submit(tool, job_id, urls, params, variant)
            logger.info("Job started tool=%s job_id=%s task_id=%s", tool, job_id, task_id)
            return JobHandle(tool, job_id, task_id, cost, variant)
        finally:
            self._in_flight.discard(spec.family)

    # ------------------------------------------------------------------
    # refine
    # ------------------------------------------------------------------

    async def refine_job(
        self,
        job: Union[JobHandle, str],
        selection: str,
        credit_cost: Optional[int] = None,
        tool: str = REFINE_TOOL,
    ) -> JobHandle:
        """Rerun the refinement workflow on a completed job.

        ``selection`` names the views to regenerate (e.g. ``"1,3"``). The
        job reopens to ``pending`` with fresh credits; the new output is
        appended to ``output_urls``.
        """
        if isinstance(job, JobHandle):
            tool, job_id = job.tool, job.job_id
        else:
            job_id = job
        spec = self.ctx.tools.require(tool)
        spec.workflow(REFINE_VARIANT)
        if not selection:
            raise ValidationError("Select at least one image to refine")
        cost = spec.default_credit_cost if credit_cost is None else credit_cost
        spec.check_credit_cost(cost)

        current = self.ctx.jobs.get(tool, job_id)
        if current is None:
            raise JobNotFound("Job not found")
        if current.user_id != self.ctx.user_id:
            raise ForbiddenError("Not authorized to access this job")
        if current.status != JobStatus.COMPLETED or not current.output_url:
            raise ValidationError("Only completed jobs can be refined")

        self._claim_family(spec)
        try:
            self._check_no_active(spec)
            self._consume(spec, cost, job_id, f"{spec.name} refine")

            params = {**current.params, "selected_numbers": selection}
            try:
                reopened = self.ctx.jobs.require_transition(
                    current,
                    JobStatus.PENDING,
                    params=params,
                    credit_cost=cost,
                    credit_refunded=False,
                    task_id=None,
                    error_message=None,
                    completed_at=None,
                    run_count=current.run_count + 1,
                )
            except InvalidTransition:
                self.ctx.ledger.refund(self.ctx.user_id, cost, "Refund: refine reopen failed", job_id=job_id)
                raise

            task_id = await self._submit(tool, job_id, current.input_refs, params, REFINE_VARIANT)
            logger.info("Job refining tool=%s job_id=%s run=%s", tool, job_id, reopened.run_count)
            return JobHandle(tool, job_id, task_id, cost, REFINE_VARIANT)
        finally:
            self._in_flight.discard(spec.family)

    # ------------------------------------------------------------------
    # cancel / follow
    # ------------------------------------------------------------------

    async def cancel_job(self, tool: str, job_id: str) -> CancelResult:
        """Cancel and refund once; a no-op on a job that already ended."""
        return await self.ctx.gateway.cancel(tool, job_id)

    async def subscribe(self, tool: str, job_id: str) -> JobSubscription:
        return await self.ctx.feed.open(tool, job_id)

    async def wait(self, handle: JobHandle, timeout: Optional[float] = None) -> JobUpdate:
        """Follow the job until it settles and return the terminal update."""
        subscription = await self.subscribe(handle.tool, handle.job_id)
        try:
            updates = await asyncio.wait_for(collect(subscription), timeout)
        finally:
            await subscription.cancel()
        if not updates or not updates[-1].is_terminal:
            raise ReconciliationMismatch("Subscription ended before the job settled")
        return updates[-1]
