import httpx
import pytest

from aitools.client.gateway_client import HttpGatewayClient
from aitools.errors import ActiveJobExists, RateLimited, UpstreamUnavailable, error_from_dict
from aitools.jobs.models import JobStatus


def client_for(handler) -> HttpGatewayClient:
    return HttpGatewayClient("https://api.test", "token-1", transport=httpx.MockTransport(handler))


async def test_run_posts_to_the_tool_endpoint():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "task_id": "t-1"})

    task_id = await client_for(handler).run("pose_changer", "j1", {"person": "u"}, {}, "default")
    assert task_id == "t-1"
    assert seen[0].url.path == "/api/v1/tools/pose_changer/run"
    assert seen[0].headers["Authorization"] == "Bearer token-1"


async def test_error_bodies_become_typed_errors():
    def handler(request):
        return httpx.Response(429, json={"kind": "rate_limited", "message": "slow down", "details": {"retry_after": 12}})

    with pytest.raises(RateLimited) as exc_info:
        await client_for(handler).run("pose_changer", "j1", {}, {})
    assert exc_info.value.retry_after == 12


async def test_non_json_errors_are_upstream_failures():
    def handler(request):
        return httpx.Response(503, text="<html>down</html>")

    with pytest.raises(UpstreamUnavailable):
        await client_for(handler).cancel("pose_changer", "j1")


async def test_cancel_result():
    def handler(request):
        return httpx.Response(200, json={"success": True, "refunded_amount": 60, "already_terminal": False, "status": "cancelled"})

    result = await client_for(handler).cancel("pose_changer", "j1")
    assert result.refunded_amount == 60
    assert result.status == JobStatus.CANCELLED


def test_error_from_dict_keeps_details():
    err = error_from_dict({"kind": "active_job_exists", "message": "busy", "details": {"active_job_id": "j", "active_tool": "veste_ai"}})
    assert isinstance(err, ActiveJobExists)
    assert err.job_id == "j" and err.tool == "veste_ai"
    assert type(error_from_dict({"kind": "???", "message": "x"})).__name__ == "GatewayError"
