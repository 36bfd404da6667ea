"""How the client job manager reaches the tool gateway.

``LocalGatewayClient`` calls a :class:`ToolGateway` in-process (tests, local
scripts); ``HttpGatewayClient`` goes through the FastAPI service and turns
error bodies back into the typed errors.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from aitools.errors import UpstreamUnavailable, error_from_dict
from aitools.gateway.service import ToolGateway
from aitools.jobs.lifecycle import CancelResult
from aitools.jobs.models import JobStatus

logger = logging.getLogger(__name__)


class GatewayClient(ABC):
    @abstractmethod
    async def run(
        self,
        tool: str,
        job_id: str,
        assets: Mapping[str, Any],
        params: Mapping[str, Any],
        variant: str = "default",
    ) -> str:
        """Submit the job; returns the external task id."""
        ...

    @abstractmethod
    async def cancel(self, tool: str, job_id: str) -> CancelResult:
        ...

    @abstractmethod
    async def reconcile(self, tool: str, job_id: str) -> Dict[str, Any]:
        ...


class LocalGatewayClient(GatewayClient):
    def __init__(self, user_id: str, gateway_for: Callable[[str], ToolGateway]):
        self._user_id = user_id
        self._gateway_for = gateway_for

    async def run(self, tool, job_id, assets, params, variant="default") -> str:
        return await self._gateway_for(tool).run(self._user_id, job_id, assets, params, variant)

    async def cancel(self, tool: str, job_id: str) -> CancelResult:
        return await self._gateway_for(tool).cancel(self._user_id, job_id)

    async def reconcile(self, tool: str, job_id: str) -> Dict[str, Any]:
        result = await self._gateway_for(tool).reconcile(self._user_id, job_id)
        return result.to_dict()


class HttpGatewayClient(GatewayClient):
    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._timeout = timeout
        self._transport = transport

    async def _post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self._base_url}/api/v1{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=body or {}, headers=self._headers)
        except httpx.HTTPError as exc:
            logger.error("Gateway request failed path=%s error=%s", path, exc)
            raise UpstreamUnavailable(f"Gateway network error: {exc}") from exc
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            if isinstance(data, dict) and data.get("kind"):
                raise error_from_dict(data)
            raise UpstreamUnavailable(f"Gateway error ({response.status_code}): {response.text[:100]}")
        return data

    async def run(self, tool, job_id, assets, params, variant="default") -> str:
        data = await self._post(
            f"/tools/{tool}/run",
            {"job_id": job_id, "assets": dict(assets), "params": dict(params), "variant": variant},
        )
        return data["task_id"]

    async def cancel(self, tool: str, job_id: str) -> CancelResult:
        data = await self._post(f"/tools/{tool}/jobs/{job_id}/cancel")
        return CancelResult(
            success=bool(data.get("success")),
            refunded_amount=int(data.get("refunded_amount") or 0),
            already_terminal=bool(data.get("already_terminal")),
            status=JobStatus(data.get("status", JobStatus.CANCELLED.value)),
        )

    async def reconcile(self, tool: str, job_id: str) -> Dict[str, Any]:
        return await self._post(f"/tools/{tool}/reconcile", {"job_id": job_id})
