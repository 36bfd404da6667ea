"""AI Tools Job Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aitools.api.deps import MemoryBackend
from aitools.api.v1.health import router as health_root_router
from aitools.api.v1.router import v1_router
from aitools.auth.supabase_auth import SupabaseTokenVerifier
from aitools.config import Settings, settings as default_settings
from aitools.errors import ConfigurationError, GatewayError, RateLimited
from aitools.tools.registry import ToolRegistry, registry as default_registry

logger = logging.getLogger(__name__)


def check_startup_config(settings: Settings) -> None:
    """Missing credentials are fatal: log at CRITICAL and refuse to start."""
    missing = []
    if not settings.runninghub_api_key:
        missing.append("RUNNINGHUB_API_KEY")
    if settings.job_backend == "supabase":
        if not settings.supabase_url:
            missing.append("SUPABASE_URL")
        if not settings.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
    elif settings.job_backend != "memory":
        missing.append(f"JOB_BACKEND (unknown value '{settings.job_backend}')")
    if missing:
        logger.critical("Missing configuration: %s", ", ".join(missing))
        raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    s: Settings = app.state.settings
    logger.info("Starting AI Tools Job Service on port %s", s.port)
    logger.info("Job backend: %s", s.job_backend)
    check_startup_config(s)
    logger.info("Tools: %s", ", ".join(spec.tool_id for spec in app.state.tools.list_tools()))

    yield

    logger.info("Shutting down AI Tools Job Service")


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    tools: Optional[ToolRegistry] = None,
    memory: Optional[MemoryBackend] = None,
    token_verifier=None,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="AI Tools Job Service",
        description="Job lifecycle, credits and provider gateway for the image tools",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.tools = tools or default_registry
    if memory is None and settings.job_backend == "memory":
        memory = MemoryBackend()
    app.state.memory = memory
    app.state.token_verifier = token_verifier or SupabaseTokenVerifier(settings)
    app.state.provider_transport = provider_transport

    app.add_exception_handler(GatewayError, gateway_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()
