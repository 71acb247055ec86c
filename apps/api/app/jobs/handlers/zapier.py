"""Zapier outbound delivery job handler."""

from __future__ import annotations

import logging
from uuid import UUID

from app.db.enums import WebhookDeliveryStatus
from app.db.models import ZapierWebhook
from app.jobs.utils import safe_url
from app.services import zapier_webhook_service
from app.services.zapier_webhook_service import WebhookDeliveryError

logger = logging.getLogger(__name__)


async def process_zapier_webhook_delivery(db, job) -> None:
    """
    Deliver one event to one Zapier hook.

    A failed attempt raises WebhookDeliveryError carrying the backoff delay,
    so the worker reschedules the job until max_attempts is reached.
    """
    payload = job.payload or {}
    webhook_id = payload.get("webhook_id")
    body = payload.get("body")
    if not webhook_id or body is None:
        raise ValueError("Missing webhook_id or body in job payload")

    webhook = db.query(ZapierWebhook).filter(ZapierWebhook.id == UUID(webhook_id)).first()
    if not webhook:
        logger.info("Zapier webhook %s no longer exists, dropping delivery", webhook_id)
        return

    log = await zapier_webhook_service.deliver_webhook(
        db,
        webhook,
        body,
        attempt=job.attempts,
        delivery_id=payload.get("delivery_id"),
    )
    if log is None or log.delivery_status == WebhookDeliveryStatus.DELIVERED.value:
        return

    raise WebhookDeliveryError(
        f"Delivery to {safe_url(webhook.webhook_url)} failed: {log.error_message}",
        retry_delay=zapier_webhook_service.retry_delay_for(job.attempts),
    )
