"""Email job handler."""

from __future__ import annotations

import logging

from app.jobs.utils import mask_email
from app.services import email_service

logger = logging.getLogger(__name__)


async def process_send_email(db, job) -> None:
    """Send a pre-rendered email (payload: to, subject, html, email_type)."""
    payload = job.payload or {}
    to_email = payload.get("to")
    subject = payload.get("subject")
    html = payload.get("html")
    if not to_email or not subject or not html:
        raise ValueError("Missing to, subject or html in email job payload")

    message_id = email_service.send_email(to_email, subject, html)
    logger.info(
        "Email job %s (%s) processed for %s message_id=%s",
        job.id,
        payload.get("email_type", "default"),
        mask_email(to_email),
        message_id,
    )
