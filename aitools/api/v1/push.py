"""Broadcast a web push notification to every subscriber."""

from fastapi import APIRouter, Depends

from aitools.api.deps import ServiceContext, get_context
from aitools.auth.supabase_auth import get_current_user
from aitools.notifications.push import PushPayload

router = APIRouter()


@router.post("/push/send")
async def send_push(
    body: PushPayload,
    user_id: str = Depends(get_current_user),
    ctx: ServiceContext = Depends(get_context),
):
    result = ctx.broadcaster().broadcast(body)
    return result.to_dict()
