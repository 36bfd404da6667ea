"""Scheduled job maintenance: the stale job sweep."""

from fastapi import APIRouter, Depends

from aitools.api.deps import ServiceContext, get_context
from aitools.auth.supabase_auth import verify_cron
from aitools.jobs.reconcile import reconcile_stale_jobs

router = APIRouter()


@router.post("/jobs/reconcile-stale", dependencies=[Depends(verify_cron)])
async def reconcile_stale(ctx: ServiceContext = Depends(get_context)):
    """Settle jobs stuck in pending/queued/running across every tool."""
    s = ctx.settings
    settled = await reconcile_stale_jobs(
        ctx.jobs,
        ctx.ledger,
        ctx.provider,
        ctx.tools,
        running_minutes=s.stale_running_minutes,
        pending_minutes=s.stale_pending_minutes,
        batch_size=s.stale_batch_size,
    )
    return {"success": True, "settled": settled}
