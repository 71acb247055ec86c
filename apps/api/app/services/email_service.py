"""Transactional email via Resend.

Emails are rendered when queued and sent by the worker (`send_email` jobs).
Without RESEND_API_KEY the worker logs a dry run instead of sending.
"""

from __future__ import annotations

import html
import logging
from enum import Enum
from uuid import UUID

import resend
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import JobType
from app.db.models import Job
from app.services import job_service
from app.services.audit_service import hash_email

logger = logging.getLogger(__name__)


class EmailType(str, Enum):
    INVITE = "invite"
    REGISTRATION_FAILURE = "registration-failure"
    INTEGRATION_CONNECTED = "integration-connected"
    INTEGRATION_FAILED = "integration-failed"
    INTEGRATION_ERROR = "integration-error"
    INTEGRATION_TIPS = "integration-tips"
    DEFAULT = "default"


def _layout(title: str, body_html: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; color: #1f2937; max-width: 600px; margin: 0 auto; padding: 24px;">
    <h1 style="font-size: 22px;">{html.escape(title)}</h1>
    {body_html}
    <p style="color: #6b7280; font-size: 12px; margin-top: 32px;">Sales Whisperer</p>
  </body>
</html>"""


def _provider_label(provider: str | None) -> str:
    return (provider or "integration").replace("_", " ").title()


def _render_invite(data: dict) -> tuple[str, str]:
    inviter = html.escape(data.get("inviter_name") or "Your administrator")
    invite_url = html.escape(data.get("invite_url") or settings.FRONTEND_URL, quote=True)
    role = html.escape((data.get("role") or "sales_user").replace("_", " "))
    days = int(data.get("expires_days") or settings.INVITE_EXPIRES_DAYS)
    body = (
        f"<p>{inviter} invited you to join Sales Whisperer as a {role}.</p>"
        f'<p><a href="{invite_url}">Sign in with Google to accept</a></p>'
        f"<p>This invitation expires in {days} days.</p>"
    )
    return "You're invited to Sales Whisperer", _layout("You're invited", body)


def _render_registration_failure(data: dict) -> tuple[str, str]:
    failures = data.get("failures") or []
    count = len(failures)
    rows = "".join(
        "<tr>"
        f"<td>{html.escape(str(f.get('user_email', '')))}</td>"
        f"<td>{html.escape(str(f.get('error_code') or ''))}</td>"
        f"<td>{html.escape(str(f.get('error_message', '')))}</td>"
        f"<td>{html.escape(str(f.get('attempted_at', '')))}</td>"
        "</tr>"
        for f in failures
    )
    body = (
        f"<p>{count} user registration failure(s) were detected in the last "
        f"{int(data.get('window_minutes') or 30)} minutes.</p>"
        '<table border="1" cellpadding="6" cellspacing="0" style="border-collapse: collapse;">'
        "<tr><th>Email</th><th>Code</th><th>Error</th><th>Attempted</th></tr>"
        f"{rows}</table>"
        "<p>Review them in the admin console and resolve each failure.</p>"
    )
    subject = f"FAILURE: User Registration Issues Detected - Sales Whisperer ({count} affected)"
    return subject, _layout("User registration issues detected", body)


def _render_integration(email_type: EmailType, data: dict) -> tuple[str, str]:
    provider = _provider_label(data.get("provider"))
    error = html.escape(str(data.get("error") or ""))
    if email_type == EmailType.INTEGRATION_CONNECTED:
        subject = f"{provider} connected to Sales Whisperer"
        body = f"<p>Your {html.escape(provider)} integration was connected successfully.</p>"
    elif email_type == EmailType.INTEGRATION_FAILED:
        subject = f"{provider} connection failed"
        body = (
            f"<p>We could not connect your {html.escape(provider)} account.</p>"
            f"<p>Error: {error}</p><p>Please try connecting again from Settings.</p>"
        )
    elif email_type == EmailType.INTEGRATION_ERROR:
        subject = f"Action needed: {provider} integration error"
        body = (
            f"<p>Your {html.escape(provider)} integration stopped working.</p>"
            f"<p>Error: {error}</p><p>Reconnect it from Settings to resume syncing.</p>"
        )
    else:
        subject = f"Getting the most out of {provider}"
        body = (
            f"<p>Your {html.escape(provider)} integration is ready.</p>"
            "<ul><li>Record calls with cloud recording and transcripts enabled.</li>"
            "<li>Attach transcripts to an account to track deal heat over time.</li>"
            "<li>Use Zapier to push new analyses into your CRM.</li></ul>"
        )
    return subject, _layout(subject, body)


def render_email(email_type: EmailType, data: dict | None = None, subject: str | None = None) -> tuple[str, str]:
    """Return (subject, html) for an email type. An explicit subject wins."""
    data = data or {}
    if email_type == EmailType.INVITE:
        default_subject, body = _render_invite(data)
    elif email_type == EmailType.REGISTRATION_FAILURE:
        default_subject, body = _render_registration_failure(data)
    elif email_type in (
        EmailType.INTEGRATION_CONNECTED,
        EmailType.INTEGRATION_FAILED,
        EmailType.INTEGRATION_ERROR,
        EmailType.INTEGRATION_TIPS,
    ):
        default_subject, body = _render_integration(email_type, data)
    else:
        default_subject = "Notification from Sales Whisperer"
        message = html.escape(str(data.get("message") or ""))
        body = _layout(subject or default_subject, f"<p>{message}</p>")
    return subject or default_subject, body


def queue_email(
    db: Session,
    *,
    to_email: str,
    email_type: EmailType,
    data: dict | None = None,
    subject: str | None = None,
    user_id: UUID | None = None,
    idempotency_key: str | None = None,
    commit: bool = True,
) -> Job | None:
    """Render and queue an email. Returns None when the idempotency key was already used."""
    rendered_subject, body = render_email(email_type, data, subject)
    payload = {
        "to": to_email,
        "subject": rendered_subject,
        "html": body,
        "email_type": email_type.value,
    }
    if idempotency_key:
        return job_service.schedule_job_once(
            db,
            user_id=user_id,
            job_type=JobType.SEND_EMAIL,
            payload=payload,
            idempotency_key=idempotency_key,
        )
    return job_service.schedule_job(
        db,
        user_id=user_id,
        job_type=JobType.SEND_EMAIL,
        payload=payload,
        commit=commit,
    )


def send_email(to_email: str, subject: str, html_body: str) -> str | None:
    """
    Send one email through Resend. Returns the provider message id.

    Logs a dry run (and returns None) when RESEND_API_KEY is not set.
    """
    if not settings.RESEND_API_KEY:
        logger.info("[DRY RUN] Email send skipped to=%s subject=%s", hash_email(to_email), subject)
        return None

    resend.api_key = settings.RESEND_API_KEY
    result = resend.Emails.send(
        {
            "from": settings.EMAIL_FROM,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        }
    )
    message_id = result.get("id") if isinstance(result, dict) else getattr(result, "id", None)
    logger.info("Email sent to=%s message_id=%s", hash_email(to_email), message_id)
    return message_id
