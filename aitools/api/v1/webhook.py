"""Provider webhook endpoint."""

import logging

from fastapi import APIRouter, Depends, Request

from aitools.api.deps import ServiceContext, get_context
from aitools.errors import ValidationError
from aitools.gateway.webhook import handle_webhook

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/runninghub")
async def runninghub_webhook(request: Request, ctx: ServiceContext = Depends(get_context)):
    """RunningHub calls this when a task ends. Always 200 unless the payload is unusable."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid webhook payload")
    return handle_webhook(ctx.jobs, ctx.ledger, payload)
