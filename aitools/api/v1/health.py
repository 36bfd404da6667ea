"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service health, configured backend and registered tools."""
    state = request.app.state
    return {
        "status": "healthy",
        "job_backend": state.settings.job_backend,
        "tools": [spec.tool_id for spec in state.tools.list_tools()],
        "python_version": sys.version,
        "platform": platform.platform(),
    }
