"""Tool gateway API: upload, run, status, reconcile, cancel."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from aitools.api.deps import ServiceContext, get_context
from aitools.auth.supabase_auth import get_current_user

router = APIRouter()


class UploadRequest(BaseModel):
    image_base64: str
    file_name: Optional[str] = None


class RunRequest(BaseModel):
    job_id: str
    assets: Dict[str, Any] = {}
    params: Dict[str, Any] = {}
    variant: str = "default"


class StatusRequest(BaseModel):
    task_id: str


class ReconcileRequest(BaseModel):
    job_id: str
    task_id: Optional[str] = None


@router.get("/tools")
async def list_tools(request: Request):
    """List registered tools with their workflows and credit bounds."""
    return {
        "tools": [
            {
                "tool_id": spec.tool_id,
                "name": spec.name,
                "family": spec.family,
                "description": spec.description,
                "default_credit_cost": spec.default_credit_cost,
                "min_credit_cost": spec.min_credit_cost,
                "max_credit_cost": spec.max_credit_cost,
                "variants": {
                    name: {
                        "slots": [
                            {"name": slot.name, "kind": slot.kind.value, "required": slot.required}
                            for slot in workflow.slots
                        ],
                    }
                    for name, workflow in spec.workflows.items()
                },
            }
            for spec in request.app.state.tools.list_tools()
        ]
    }


@router.post("/tools/{tool}/upload")
async def upload_image(
    tool: str,
    body: UploadRequest,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    asset = await ctx.gateway(tool).upload(user_id, body.image_base64, body.file_name)
    return {"success": True, "file_name": asset.file_name, "mime_type": asset.mime_type}


@router.post("/tools/{tool}/run")
async def run_tool(
    tool: str,
    body: RunRequest,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    task_id = await ctx.gateway(tool).run(user_id, body.job_id, body.assets, body.params, body.variant)
    return {"success": True, "task_id": task_id}


@router.post("/tools/{tool}/status")
async def task_status(
    tool: str,
    body: StatusRequest,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    status = await ctx.gateway(tool).query_status(body.task_id)
    return status.to_dict()


@router.post("/tools/{tool}/reconcile")
async def reconcile(
    tool: str,
    body: ReconcileRequest,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    result = await ctx.gateway(tool).reconcile(user_id, body.job_id, body.task_id)
    return result.to_dict()


@router.get("/tools/{tool}/jobs/{job_id}")
async def get_job(
    tool: str,
    job_id: str,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    job = ctx.gateway(tool).get_job(user_id, job_id)
    return job.model_dump(mode="json")


@router.post("/tools/{tool}/jobs/{job_id}/cancel")
async def cancel_job(
    tool: str,
    job_id: str,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    result = await ctx.gateway(tool).cancel(user_id, job_id)
    return {
        "success": result.success,
        "refunded_amount": result.refunded_amount,
        "already_terminal": result.already_terminal,
        "status": result.status.value,
    }
