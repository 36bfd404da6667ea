"""Aggregate all v1 API routers."""

from fastapi import APIRouter

from aitools.api.v1.credits import router as credits_router
from aitools.api.v1.health import router as health_router
from aitools.api.v1.jobs import router as jobs_router
from aitools.api.v1.push import router as push_router
from aitools.api.v1.tools import router as tools_router
from aitools.api.v1.webhook import router as webhook_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(tools_router, tags=["tools"])
v1_router.include_router(webhook_router, tags=["webhooks"])
v1_router.include_router(jobs_router, tags=["jobs"])
v1_router.include_router(credits_router, tags=["credits"])
v1_router.include_router(push_router, tags=["push"])
