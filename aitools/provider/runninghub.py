"""Async client for the RunningHub workflow API.

Covers the four calls the gateway needs: file upload, AI-app run, task
query and a best-effort cancel. Provider error text is surfaced verbatim
in the raised exceptions.
"""

import asyncio
import json
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from aitools.errors import ExternalTaskFailed, UpstreamUnavailable, ValidationError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 502, 503, 504}
RETRY_DELAYS = [0.5, 1.0, 2.0]
IMAGE_OUTPUT_TYPES = {"png", "jpg", "jpeg", "webp"}


@dataclass
class TaskStatus:
    """Provider task state normalized to queued | running | succeeded | failed | unknown."""
    status: str
    outputs: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("succeeded", "failed")

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "outputs": self.outputs, "error": self.error}


def pick_output_urls(results: Any) -> List[str]:
    """Image results first, then anything else that carries a URL."""
    if not isinstance(results, list):
        return []
    images, others = [], []
    for item in results:
        if not isinstance(item, dict):
            continue
        url = item.get("url") or item.get("fileUrl")
        if not url:
            continue
        output_type = str(item.get("outputType") or "").lower()
        (images if output_type in IMAGE_OUTPUT_TYPES else others).append(url)
    return images + others


def guess_mime_type(file_name: str) -> str:
    mime, _ = mimetypes.guess_type(file_name)
    return mime or "image/png"


class RunningHubClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://www.runninghub.ai",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delays: Optional[List[float]] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._retry_delays = RETRY_DELAYS if retry_delays is None else retry_delays

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _send(self, context: str, method: str, url: str, **kwargs) -> httpx.Response:
        """Send with retries on transient statuses (429, 502, 503, 504)."""
        attempts = len(self._retry_delays) or 1
        async with self._client() as client:
            for attempt in range(attempts):
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.HTTPError as exc:
                    logger.error("%s network error: %s", context, exc)
                    raise UpstreamUnavailable(f"{context} network error: {exc}") from exc

                if response.status_code not in RETRYABLE_STATUSES:
                    return response

                if attempt < attempts - 1:
                    delay = self._retry_delays[attempt]
                    logger.warning(
                        "%s got %s, retrying in %.1fs (attempt %s/%s)",
                        context, response.status_code, delay, attempt + 1, attempts,
                    )
                    await asyncio.sleep(delay)

        logger.error("%s failed after %s retries with status %s", context, attempts, response.status_code)
        raise UpstreamUnavailable(f"{context} failed after {attempts} retries ({response.status_code})")

    @staticmethod
    def _parse(response: httpx.Response, context: str) -> Dict[str, Any]:
        """Read JSON safely; Cloudflare and the provider sometimes answer with HTML."""
        text = response.text
        snippet = text[:100]
        if response.status_code >= 400:
            logger.error("%s failed status=%s body=%s", context, response.status_code, text[:300])
            raise UpstreamUnavailable(f"{context} failed ({response.status_code}): {snippet}")
        stripped = text.strip()
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type and not stripped.startswith(("{", "[")):
            raise UpstreamUnavailable(f"{context} returned HTML/error ({response.status_code}): {snippet}")
        try:
            return json.loads(text)
        except ValueError:
            raise UpstreamUnavailable(f"{context} invalid JSON ({response.status_code}): {snippet}")

    async def upload(self, data: bytes, file_name: str, mime_type: Optional[str] = None) -> str:
        """Upload a file and return the provider's file name reference."""
        response = await self._send(
            "Upload to RunningHub",
            "POST",
            f"{self._base_url}/task/openapi/upload",
            data={"apiKey": self._api_key, "fileType": "image"},
            files={"file": (file_name, data, mime_type or guess_mime_type(file_name))},
        )
        body = self._parse(response, "Upload response")
        if body.get("code") != 0:
            raise ExternalTaskFailed(body.get("msg") or "Upload failed", {"code": body.get("code")})
        file_ref = (body.get("data") or {}).get("fileName")
        if not file_ref:
            raise ExternalTaskFailed("Upload response carried no fileName")
        logger.info("Uploaded %s -> %s", file_name, file_ref)
        return file_ref

    async def transfer_from_url(self, url: str, fallback_name: str) -> str:
        """Download an asset from storage and re-upload it to the provider."""
        async with self._client() as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                raise UpstreamUnavailable(f"Failed to download {fallback_name}: {exc}") from exc
        if response.status_code >= 400:
            raise UpstreamUnavailable(f"Failed to download {fallback_name} ({response.status_code})")
        name = url.split("?")[0].rstrip("/").split("/")[-1] or fallback_name
        return await self.upload(response.content, name, response.headers.get("content-type"))

    async def run_app(self, webapp_id: str, node_info_list: List[Dict[str, str]], webhook_url: str) -> str:
        """Start an AI-app workflow; returns the external task id."""
        if not node_info_list:
            raise ValidationError("nodeInfoList is empty")
        payload = {
            "nodeInfoList": node_info_list,
            "instanceType": "default",
            "usePersonalQueue": False,
            "webhookUrl": webhook_url,
        }
        response = await self._send(
            "Run AI App",
            "POST",
            f"{self._base_url}/openapi/v2/run/ai-app/{webapp_id}",
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        body = self._parse(response, "AI App response")
        task_id = body.get("taskId") or (body.get("data") or {}).get("taskId")
        if not task_id:
            raise ExternalTaskFailed(
                body.get("msg") or body.get("message") or "Failed to start workflow",
                {"code": body.get("code")},
            )
        return str(task_id)

    async def query(self, task_id: str) -> TaskStatus:
        """Ask the provider for the real state of a task (webhook fallback)."""
        response = await self._send(
            "Query task",
            "POST",
            f"{self._base_url}/openapi/v2/query",
            json={"taskId": task_id},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        body = self._parse(response, "Query response")
        if body.get("code", 0) != 0:
            return TaskStatus(
                status="failed",
                error=body.get("message") or body.get("msg") or "RunningHub API error",
                error_code=str(body.get("code")),
            )
        data = body.get("data") or body
        task_status = str(data.get("taskStatus") or data.get("status") or "").upper()
        if task_status == "SUCCESS":
            return TaskStatus(status="succeeded", outputs=pick_output_urls(data.get("results")))
        if task_status == "FAILED":
            return TaskStatus(
                status="failed",
                error=data.get("errorMessage") or "Task failed on RunningHub",
                error_code=data.get("errorCode"),
            )
        if task_status in ("QUEUED", "PENDING"):
            return TaskStatus(status="queued")
        if task_status == "RUNNING":
            return TaskStatus(status="running")
        return TaskStatus(status="unknown")

    async def cancel(self, task_id: str) -> bool:
        """Best-effort upstream cancel. Never raises; the provider may keep billing."""
        try:
            response = await self._send(
                "Cancel task",
                "POST",
                f"{self._base_url}/task/openapi/cancel",
                json={"apiKey": self._api_key, "taskId": task_id},
            )
            body = self._parse(response, "Cancel response")
        except (UpstreamUnavailable, ExternalTaskFailed) as exc:
            logger.warning("Upstream cancel failed task_id=%s error=%s", task_id, exc.message)
            return False
        return body.get("code") == 0
