"""Webhooks router - inbound events from integration providers."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.core.rate_limit import WEBHOOK_LIMIT, limiter
from app.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/zoom")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_zoom_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive Zoom events.

    Answers the endpoint.url_validation challenge and queues transcript
    imports for recording.transcript_completed. Requests are HMAC-verified.
    """
    return await get_handler("zoom").handle(request, db)
