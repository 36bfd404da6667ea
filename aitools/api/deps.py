"""Request-scoped service wiring.

With the Supabase backend every request gets a fresh service-role client and
the store/ledger/limiter built on it. With the in-memory backend the same
objects are shared through ``app.state.memory`` so state survives across
requests.
"""

from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import Request

from aitools.config import Settings
from aitools.credits.ledger import CreditLedger, InMemoryCreditLedger
from aitools.credits.supabase_ledger import SupabaseCreditLedger
from aitools.db.supabase_client import create_service_client
from aitools.gateway.service import ToolGateway
from aitools.jobs.in_memory_store import InMemoryJobStore
from aitools.jobs.store import JobStore
from aitools.jobs.supabase_store import SupabaseJobStore
from aitools.notifications.push import (
    InMemoryPushSubscriptionStore,
    PushBroadcaster,
    PushSubscriptionStore,
    SupabasePushSubscriptionStore,
    VapidConfig,
)
from aitools.provider.runninghub import RunningHubClient
from aitools.ratelimit import InMemoryRateLimiter, RateLimiter, SupabaseRateLimiter
from aitools.tools.registry import ToolRegistry


@dataclass
class MemoryBackend:
    jobs: InMemoryJobStore = field(default_factory=InMemoryJobStore)
    ledger: InMemoryCreditLedger = field(default_factory=InMemoryCreditLedger)
    limiter: InMemoryRateLimiter = field(default_factory=InMemoryRateLimiter)
    push: InMemoryPushSubscriptionStore = field(default_factory=InMemoryPushSubscriptionStore)


@dataclass
class ServiceContext:
    settings: Settings
    tools: ToolRegistry
    jobs: JobStore
    ledger: CreditLedger
    limiter: RateLimiter
    push_store: PushSubscriptionStore
    provider: RunningHubClient

    def gateway(self, tool_id: str) -> ToolGateway:
        return ToolGateway(
            spec=self.tools.require(tool_id),
            jobs=self.jobs,
            ledger=self.ledger,
            provider=self.provider,
            limiter=self.limiter,
            webhook_url=self.settings.webhook_url(),
            allowed_hosts=self.settings.image_hosts(),
        )

    def broadcaster(self) -> PushBroadcaster:
        s = self.settings
        vapid = None
        if s.vapid_public_key and s.vapid_private_key:
            vapid = VapidConfig(s.vapid_public_key, s.vapid_private_key, s.vapid_subject)
        return PushBroadcaster(self.push_store, vapid)


def build_provider(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> RunningHubClient:
    return RunningHubClient(
        api_key=settings.runninghub_api_key,
        base_url=settings.runninghub_base_url,
        timeout=settings.runninghub_timeout_seconds,
        transport=transport,
    )


def build_context(
    settings: Settings,
    tools: ToolRegistry,
    memory: Optional[MemoryBackend] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContext:
    provider = build_provider(settings, transport)
    if memory is not None:
        return ServiceContext(
            settings, tools, memory.jobs, memory.ledger, memory.limiter, memory.push, provider
        )
    client = create_service_client(settings)
    return ServiceContext(
        settings=settings,
        tools=tools,
        jobs=SupabaseJobStore(client, tools.tables()),
        ledger=SupabaseCreditLedger(client),
        limiter=SupabaseRateLimiter(client),
        push_store=SupabasePushSubscriptionStore(client),
        provider=provider,
    )


def get_context(request: Request) -> ServiceContext:
    state = request.app.state
    return build_context(
        state.settings,
        state.tools,
        getattr(state, "memory", None),
        getattr(state, "provider_transport", None),
    )
