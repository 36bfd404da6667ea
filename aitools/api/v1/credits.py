"""Credit balance and the monthly reset trigger."""

import logging

from fastapi import APIRouter, Depends

from aitools.api.deps import ServiceContext, get_context
from aitools.auth.supabase_auth import get_current_user, verify_cron

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/credits/balance")
async def get_balance(user_id: str = Depends(get_current_user), ctx: ServiceContext = Depends(get_context)):
    return {"user_id": user_id, "balance": ctx.ledger.balance(user_id)}


@router.post("/credits/reset-monthly", dependencies=[Depends(verify_cron)])
async def reset_monthly(ctx: ServiceContext = Depends(get_context)):
    """Restore every user's monthly plan credits. Called by the scheduler."""
    users_reset = ctx.ledger.reset_monthly()
    logger.info("Monthly credit reset users_reset=%s", users_reset)
    return {"success": True, "users_reset": users_reset}
