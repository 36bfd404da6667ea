"""Shared fixtures: in-memory backends and a fake RunningHub behind httpx.MockTransport."""

import io
import json
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest
from PIL import Image

from aitools.client.gateway_client import LocalGatewayClient
from aitools.client.job_manager import ClientContext, JobManager
from aitools.client.storage import InMemoryStorageUploader
from aitools.client.subscription import EventBusFeed
from aitools.credits.ledger import InMemoryCreditLedger
from aitools.gateway.service import ToolGateway
from aitools.jobs.in_memory_store import InMemoryJobStore
from aitools.provider.runninghub import RunningHubClient
from aitools.ratelimit import InMemoryRateLimiter
from aitools.tools.registry import registry

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
WEBHOOK_URL = "https://api.test/api/v1/webhooks/runninghub"
STORAGE_URL = "https://proj.supabase.co/storage/v1/object/public/artes-cloudinary"


def make_png(size=(4, 4)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


class FakeRunningHub:
    """Just enough of the RunningHub API for the gateway.

    ``run_error`` makes the next runs fail with that provider message;
    ``statuses`` maps task id -> the ``data`` object returned by query;
    ``broken_queries`` answers those task ids with an HTML 500.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.run_error: Optional[str] = None
        self.statuses: Dict[str, Dict[str, Any]] = {}
        self.broken_queries: Set[str] = set()
        self.cancelled: List[str] = []
        self.run_payloads: List[Dict[str, Any]] = []
        self._task_seq = 0
        self._file_seq = 0

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET":
            return httpx.Response(200, content=make_png(), headers={"content-type": "image/png"})
        if path == "/task/openapi/upload":
            self._file_seq += 1
            return httpx.Response(200, json={"code": 0, "data": {"fileName": f"api/file-{self._file_seq}.png"}})
        if path.startswith("/openapi/v2/run/ai-app/"):
            self.run_payloads.append(json.loads(request.content))
            if self.run_error:
                return httpx.Response(200, json={"code": 1, "msg": self.run_error})
            self._task_seq += 1
            return httpx.Response(200, json={"taskId": f"task-{self._task_seq}"})
        if path == "/openapi/v2/query":
            task_id = json.loads(request.content)["taskId"]
            if task_id in self.broken_queries:
                return httpx.Response(500, text="<html>boom</html>")
            data = self.statuses.get(task_id, {"taskStatus": "RUNNING"})
            return httpx.Response(200, json={"code": 0, "data": data})
        if path == "/task/openapi/cancel":
            self.cancelled.append(json.loads(request.content)["taskId"])
            return httpx.Response(200, json={"code": 0})
        return httpx.Response(404, text="not found")


def success_event(task_id: str, url: str = "https://rh-images.example/out.png") -> Dict[str, Any]:
    return {
        "event": "TASK_END",
        "taskId": task_id,
        "eventData": {"status": "SUCCESS", "results": [{"url": url, "outputType": "png"}]},
    }


def failure_event(task_id: str, message: str) -> Dict[str, Any]:
    return {
        "event": "TASK_END",
        "taskId": task_id,
        "eventData": {"status": "FAILED", "errorMessage": message, "errorCode": "805"},
    }


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def fake_hub():
    return FakeRunningHub()


@pytest.fixture
def provider(fake_hub):
    return RunningHubClient("test-key", transport=httpx.MockTransport(fake_hub.handle), retry_delays=[0, 0, 0])


@pytest.fixture
def jobs():
    return InMemoryJobStore()


@pytest.fixture
def ledger():
    return InMemoryCreditLedger(
        {USER_ID: 500, OTHER_USER_ID: 500},
        monthly_allowance={USER_ID: 500, OTHER_USER_ID: 500},
    )


@pytest.fixture
def limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def gateway_for(jobs, ledger, provider, limiter):
    def build(tool_id: str) -> ToolGateway:
        return ToolGateway(
            spec=registry.require(tool_id),
            jobs=jobs,
            ledger=ledger,
            provider=provider,
            limiter=limiter,
            webhook_url=WEBHOOK_URL,
            allowed_hosts=["supabase.co"],
        )

    return build


@pytest.fixture
def storage():
    return InMemoryStorageUploader(STORAGE_URL)


@pytest.fixture
def manager(jobs, ledger, storage, gateway_for):
    ctx = ClientContext(
        user_id=USER_ID,
        jobs=jobs,
        ledger=ledger,
        storage=storage,
        gateway=LocalGatewayClient(USER_ID, gateway_for),
        feed=EventBusFeed(jobs, jobs.bus),
    )
    return JobManager(ctx)
