"""Job subscriptions: a stream of updates for one job that ends when it settles.

A :class:`JobSubscription` is explicit. Whoever opens it owns it and calls
:meth:`JobSubscription.cancel` when done; iterating stops after the first
terminal update. To follow the job again, open a new subscription.

Feeds decide where the updates come from:

- :class:`EventBusFeed` follows the in-process event bus of the in-memory store
- :class:`SupabaseRealtimeFeed` follows ``postgres_changes`` on the job table
- :class:`PollingFeed` re-reads the record on an interval
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from supabase import AsyncClient

from aitools.jobs.events import JobEventBus
from aitools.jobs.models import JobRecord, JobStatus
from aitools.jobs.store import JobStore
from aitools.messages import TranslatedError, translate

logger = logging.getLogger(__name__)


@dataclass
class JobUpdate:
    job: JobRecord
    user_message: Optional[TranslatedError] = None

    @classmethod
    def from_job(cls, job: JobRecord) -> "JobUpdate":
        message = translate(job.error_message) if job.status == JobStatus.FAILED else None
        return cls(job=job, user_message=message)

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def is_terminal(self) -> bool:
        return self.job.is_terminal

    @property
    def output_url(self) -> Optional[str]:
        return self.job.output_url


class JobSubscription:
    def __init__(
        self,
        tool: str,
        job_id: str,
        queue: "asyncio.Queue[Optional[JobRecord]]",
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.tool = tool
        self.job_id = job_id
        self._queue = queue
        self._on_close = on_close
        self._closed = False
        self._done = False

    def push(self, job: JobRecord) -> None:
        if not self._closed:
            self._queue.put_nowait(job)

    def __aiter__(self) -> "JobSubscription":
        return self

    async def __anext__(self) -> JobUpdate:
        while not self._done:
            job = await self._queue.get()
            if job is None:
                break
            if job.id != self.job_id:
                continue
            if job.is_terminal:
                self._done = True
                await self.cancel()
            return JobUpdate.from_job(job)
        self._done = True
        raise StopAsyncIteration

    async def cancel(self) -> None:
        """Stop listening. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._on_close is not None:
            await self._on_close()

    @property
    def closed(self) -> bool:
        return self._closed


class JobFeed(ABC):
    @abstractmethod
    async def open(self, tool: str, job_id: str) -> JobSubscription:
        ...


class EventBusFeed(JobFeed):
    def __init__(self, jobs: JobStore, bus: JobEventBus):
        self._jobs = jobs
        self._bus = bus

    async def open(self, tool: str, job_id: str) -> JobSubscription:
        queue = self._bus.listen(job_id)

        async def close() -> None:
            self._bus.unlisten(job_id, queue)

        subscription = JobSubscription(tool, job_id, queue, close)
        # Current state first, so a job that already settled still ends the stream.
        current = self._jobs.get(tool, job_id)
        if current is not None:
            subscription.push(current)
        return subscription


class PollingFeed(JobFeed):
    def __init__(self, jobs: JobStore, interval_seconds: float = 3.0):
        self._jobs = jobs
        self._interval = interval_seconds

    async def open(self, tool: str, job_id: str) -> JobSubscription:
        queue: "asyncio.Queue[Optional[JobRecord]]" = asyncio.Queue()
        task: Optional[asyncio.Task] = None

        async def close() -> None:
            if task is not None and task is not asyncio.current_task():
                task.cancel()

        subscription = JobSubscription(tool, job_id, queue, close)

        async def poll() -> None:
            last = None
            while not subscription.closed:
                job = self._jobs.get(tool, job_id)
                if job is not None and (job.status, job.updated_at) != last:
                    last = (job.status, job.updated_at)
                    subscription.push(job)
                    if job.is_terminal:
                        return
                await asyncio.sleep(self._interval)

        task = asyncio.create_task(poll())
        return subscription


def _record_from_payload(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    return data.get("record") or data.get("new")


class SupabaseRealtimeFeed(JobFeed):
    """Follows row updates on the tool's job table, filtered by job id."""

    def __init__(self, client: AsyncClient, tables: Dict[str, str], jobs: Optional[JobStore] = None):
        self._client = client
        self._tables = dict(tables)
        self._jobs = jobs

    async def open(self, tool: str, job_id: str) -> JobSubscription:
        queue: "asyncio.Queue[Optional[JobRecord]]" = asyncio.Queue()
        channel = self._client.channel(f"{tool}-job-{job_id}")

        async def close() -> None:
            await self._client.remove_channel(channel)

        subscription = JobSubscription(tool, job_id, queue, close)

        def on_change(payload: Dict[str, Any]) -> None:
            row = _record_from_payload(payload)
            if not row:
                return
            try:
                subscription.push(JobRecord.from_row(tool, row))
            except ValueError as exc:
                logger.warning("Ignoring malformed realtime row job_id=%s error=%s", job_id, exc)

        await channel.on_postgres_changes(
            "UPDATE",
            schema="public",
            table=self._tables[tool],
            filter=f"id=eq.{job_id}",
            callback=on_change,
        ).subscribe()

        if self._jobs is not None:
            current = self._jobs.get(tool, job_id)
            if current is not None:
                subscription.push(current)
        return subscription


async def collect(subscription: JobSubscription) -> List[JobUpdate]:
    """Drain a subscription; returns every update up to the terminal one."""
    return [update async for update in subscription]
