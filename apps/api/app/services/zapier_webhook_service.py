"""Zapier REST-hook subscriptions and outbound event delivery.

Events are fanned out as one `zapier_webhook_delivery` job per matching
hook. The job handler calls deliver_webhook(); failed attempts are retried
by the worker with RETRY_DELAYS_SECONDS backoff.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hmac_sha256_hex
from app.core.url_validation import validate_outbound_webhook_url
from app.db.enums import JobType, WebhookDeliveryStatus, ZapierScope, ZapierTriggerType
from app.db.models import ZapierApiKey, ZapierWebhook, ZapierWebhookLog
from app.jobs.utils import safe_url
from app.services import job_service
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "Sales-Whisperer-Webhook/1.0"
RETRY_DELAYS_SECONDS = [1, 5, 15, 45, 135]
CIRCUIT_BREAKER_WINDOW = 10
CIRCUIT_BREAKER_ERROR = "Webhook disabled due to consecutive failures (circuit breaker)"
MAX_RESPONSE_BODY_CHARS = 1000

SAMPLE_DATA: dict[str, dict] = {
    ZapierTriggerType.NEW_ANALYSIS.value: {
        "analysis_id": "00000000-0000-0000-0000-000000000001",
        "transcript_id": "00000000-0000-0000-0000-000000000002",
        "transcript_title": "Discovery call with Acme Corp",
        "account_id": "00000000-0000-0000-0000-000000000003",
        "account_name": "Acme Corp",
        "heat_level": "HIGH",
        "challenger_scores": {"teaching": 4, "tailoring": 3, "control": 4},
        "overview": "Champion confirmed budget and asked for contract docs by Friday.",
        "recommendation": "Accelerate",
        "created_at": "2024-01-15T10:30:00+00:00",
    },
    ZapierTriggerType.TRANSCRIPT_UPLOADED.value: {
        "transcript_id": "00000000-0000-0000-0000-000000000002",
        "title": "Discovery call with Acme Corp",
        "account_id": "00000000-0000-0000-0000-000000000003",
        "participants": ["Jane Smith", "John Doe"],
        "duration_minutes": 32,
        "source": "upload",
        "created_at": "2024-01-15T10:00:00+00:00",
    },
    ZapierTriggerType.HEAT_LEVEL_CHANGED.value: {
        "analysis_id": "00000000-0000-0000-0000-000000000001",
        "transcript_id": "00000000-0000-0000-0000-000000000002",
        "account_id": "00000000-0000-0000-0000-000000000003",
        "account_name": "Acme Corp",
        "previous_heat_level": "MEDIUM",
        "heat_level": "HIGH",
        "created_at": "2024-01-15T10:30:00+00:00",
    },
    ZapierTriggerType.ACCOUNT_UPDATED.value: {
        "account_id": "00000000-0000-0000-0000-000000000003",
        "name": "Acme Corp",
        "deal_stage": "negotiation",
        "updated_at": "2024-01-15T11:00:00+00:00",
    },
}


class WebhookDeliveryError(Exception):
    """Delivery attempt failed; retry_delay tells the worker when to try again."""

    def __init__(self, message: str, retry_delay: timedelta | None = None):
        super().__init__(message)
        self.retry_delay = retry_delay


def retry_delay_for(attempt: int) -> timedelta:
    """Backoff after the given 1-based attempt."""
    index = min(max(attempt, 1) - 1, len(RETRY_DELAYS_SECONDS) - 1)
    return timedelta(seconds=RETRY_DELAYS_SECONDS[index])


def sign_payload(body: bytes, secret_token: str) -> str:
    return f"sha256={hmac_sha256_hex(secret_token, body)}"


# =============================================================================
# Subscriptions
# =============================================================================


def subscribe(
    db: Session,
    user_id: UUID,
    *,
    api_key_id: UUID,
    webhook_url: str,
    trigger_type: ZapierTriggerType,
    secret_token: str | None = None,
    filters: dict | None = None,
) -> ZapierWebhook:
    """
    Register a hook. Raises ValueError for a bad URL, or an API key that is not
    the user's, is inactive, or lacks webhook:subscribe.
    """
    normalized_url = validate_outbound_webhook_url(webhook_url)

    api_key = (
        db.query(ZapierApiKey)
        .filter(ZapierApiKey.id == api_key_id, ZapierApiKey.user_id == user_id)
        .first()
    )
    if not api_key or not api_key.is_active:
        raise ValueError("Invalid or inactive API key")
    if ZapierScope.WEBHOOK_SUBSCRIBE.value not in (api_key.scopes or []):
        raise ValueError("API key lacks webhook:subscribe scope")

    webhook = ZapierWebhook(
        user_id=user_id,
        api_key_id=api_key.id,
        webhook_url=normalized_url,
        trigger_type=trigger_type.value,
        secret_token=secret_token or str(uuid.uuid4()),
        filters=filters or {},
        is_active=True,
    )
    db.add(webhook)
    db.commit()
    db.refresh(webhook)
    logger.info(
        "Zapier webhook subscribed id=%s trigger=%s url=%s",
        webhook.id,
        webhook.trigger_type,
        safe_url(webhook.webhook_url),
    )
    return webhook


def get_webhook(db: Session, webhook_id: UUID, user_id: UUID) -> ZapierWebhook | None:
    return (
        db.query(ZapierWebhook)
        .filter(ZapierWebhook.id == webhook_id, ZapierWebhook.user_id == user_id)
        .first()
    )


def list_webhooks(db: Session, user_id: UUID, active_only: bool = False) -> list[ZapierWebhook]:
    query = db.query(ZapierWebhook).filter(ZapierWebhook.user_id == user_id)
    if active_only:
        query = query.filter(ZapierWebhook.is_active.is_(True))
    return query.order_by(ZapierWebhook.created_at.desc()).all()


def unsubscribe(db: Session, webhook: ZapierWebhook) -> None:
    db.delete(webhook)
    db.commit()
    logger.info("Zapier webhook unsubscribed id=%s", webhook.id)


def list_delivery_logs(db: Session, webhook: ZapierWebhook, limit: int = 50) -> list[ZapierWebhookLog]:
    return (
        db.query(ZapierWebhookLog)
        .filter(ZapierWebhookLog.webhook_id == webhook.id)
        .order_by(ZapierWebhookLog.created_at.desc())
        .limit(limit)
        .all()
    )


def sample_data(trigger_type: ZapierTriggerType) -> list[dict]:
    """Zapier's "perform list" for trigger setup: a list of example events."""
    return [
        {
            "trigger_type": trigger_type.value,
            "timestamp": "2024-01-15T10:30:00+00:00",
            "data": SAMPLE_DATA[trigger_type.value],
        }
    ]


# =============================================================================
# Fan-out
# =============================================================================


def _matches_filters(filters: dict | None, data: dict) -> bool:
    """Every filter key must equal (or, for a list, contain) the event's value."""
    for key, expected in (filters or {}).items():
        actual = data.get(key)
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def build_event_payload(
    trigger_type: ZapierTriggerType,
    user_id: UUID,
    data: dict,
    analysis_id: UUID | None = None,
) -> dict:
    return {
        "trigger_type": trigger_type.value,
        "user_id": str(user_id),
        "analysis_id": str(analysis_id) if analysis_id else None,
        "timestamp": utcnow().isoformat(),
        "data": data,
    }


def trigger_event(
    db: Session,
    *,
    user_id: UUID,
    trigger_type: ZapierTriggerType,
    data: dict,
    analysis_id: UUID | None = None,
) -> int:
    """Queue a delivery job for each of the user's active hooks on this trigger."""
    webhooks = (
        db.query(ZapierWebhook)
        .filter(
            ZapierWebhook.user_id == user_id,
            ZapierWebhook.trigger_type == trigger_type.value,
            ZapierWebhook.is_active.is_(True),
        )
        .all()
    )
    if not webhooks:
        return 0

    payload = build_event_payload(trigger_type, user_id, data, analysis_id)
    queued = 0
    for webhook in webhooks:
        if not _matches_filters(webhook.filters, data):
            continue
        job_service.schedule_job(
            db,
            user_id=user_id,
            job_type=JobType.ZAPIER_WEBHOOK_DELIVERY,
            payload={
                "webhook_id": str(webhook.id),
                "delivery_id": str(uuid.uuid4()),
                "body": payload,
            },
            max_attempts=settings.ZAPIER_WEBHOOK_MAX_ATTEMPTS,
            commit=False,
        )
        queued += 1
    db.commit()
    logger.info("Zapier %s queued for %s webhook(s)", trigger_type.value, queued)
    return queued


# =============================================================================
# Delivery
# =============================================================================


def check_circuit_breaker(db: Session, webhook: ZapierWebhook) -> bool:
    """Disable the hook when its last 10 deliveries all failed. Returns True if tripped."""
    statuses = [
        row[0]
        for row in db.query(ZapierWebhookLog.delivery_status)
        .filter(ZapierWebhookLog.webhook_id == webhook.id)
        .order_by(ZapierWebhookLog.created_at.desc())
        .limit(CIRCUIT_BREAKER_WINDOW)
        .all()
    ]
    if len(statuses) < CIRCUIT_BREAKER_WINDOW:
        return False
    if any(status != WebhookDeliveryStatus.FAILED.value for status in statuses):
        return False

    webhook.is_active = False
    webhook.last_error = CIRCUIT_BREAKER_ERROR
    db.commit()
    logger.warning("Zapier webhook %s disabled by circuit breaker", webhook.id)
    return True


def _record_failure(
    db: Session,
    webhook: ZapierWebhook,
    log: ZapierWebhookLog,
    error: str,
    status_code: int | None = None,
    response_body: str | None = None,
) -> None:
    log.delivery_status = WebhookDeliveryStatus.FAILED.value
    log.http_status_code = status_code
    log.response_body = response_body
    log.error_message = error
    webhook.failure_count += 1
    webhook.last_error = error
    db.commit()


async def deliver_webhook(
    db: Session,
    webhook: ZapierWebhook,
    body: dict,
    *,
    attempt: int = 1,
    delivery_id: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ZapierWebhookLog | None:
    """
    POST one event to one hook and log the attempt.

    Returns the log row (delivered or failed), or None when the hook is
    inactive or the circuit breaker trips.
    """
    if not webhook.is_active:
        logger.info("Skipping delivery to inactive webhook %s", webhook.id)
        return None
    if check_circuit_breaker(db, webhook):
        return None

    delivery_id = delivery_id or str(uuid.uuid4())
    raw_body = json.dumps(body, separators=(",", ":"), default=str).encode()
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-SW-Delivery-Id": delivery_id,
        "X-SW-Timestamp": utcnow().isoformat(),
        "X-SW-Attempt": str(attempt),
        "X-SW-Trigger-Type": webhook.trigger_type,
    }
    if webhook.secret_token:
        headers["X-SW-Signature"] = sign_payload(raw_body, webhook.secret_token)

    log = ZapierWebhookLog(
        webhook_id=webhook.id,
        delivery_id=delivery_id,
        trigger_type=webhook.trigger_type,
        payload=body,
        delivery_status=WebhookDeliveryStatus.PENDING.value,
        attempt=attempt,
    )
    db.add(log)
    db.commit()

    try:
        validate_outbound_webhook_url(webhook.webhook_url)
    except ValueError as exc:
        _record_failure(db, webhook, log, str(exc))
        return log

    try:
        async with httpx.AsyncClient(
            timeout=settings.ZAPIER_WEBHOOK_TIMEOUT_SECONDS,
            transport=transport,
            follow_redirects=False,
        ) as client:
            response = await client.post(webhook.webhook_url, content=raw_body, headers=headers)
    except httpx.HTTPError as exc:
        error = f"{type(exc).__name__}: {exc}"[:500]
        _record_failure(db, webhook, log, error)
        logger.warning(
            "Zapier delivery %s to %s failed: %s",
            delivery_id,
            safe_url(webhook.webhook_url),
            type(exc).__name__,
        )
        return log

    response_body = response.text[:MAX_RESPONSE_BODY_CHARS]
    if response.is_success:
        log.delivery_status = WebhookDeliveryStatus.DELIVERED.value
        log.http_status_code = response.status_code
        log.response_body = response_body
        log.delivered_at = utcnow()
        webhook.success_count += 1
        webhook.last_triggered = utcnow()
        webhook.last_error = None
        db.commit()
        logger.info(
            "Zapier delivery %s to %s succeeded (%s)",
            delivery_id,
            safe_url(webhook.webhook_url),
            response.status_code,
        )
    else:
        error = f"HTTP {response.status_code}: {response.reason_phrase}"
        _record_failure(db, webhook, log, error, response.status_code, response_body)
        logger.warning(
            "Zapier delivery %s to %s failed: %s",
            delivery_id,
            safe_url(webhook.webhook_url),
            error,
        )
    return log


async def send_test_event(
    db: Session,
    webhook: ZapierWebhook,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """Single-attempt delivery of a `test: true` payload."""
    body = {
        "test": True,
        "webhook_id": str(webhook.id),
        "trigger_type": webhook.trigger_type,
        "timestamp": utcnow().isoformat(),
        "message": "This is a test webhook delivery from Sales Whisperer",
        "sample_data": {
            "analysis_id": "test-analysis-id",
            "user_id": str(webhook.user_id),
            "trigger_type": webhook.trigger_type,
        },
    }
    log = await deliver_webhook(db, webhook, body, transport=transport)
    if log is None:
        return {"success": False, "webhook_id": webhook.id, "error": webhook.last_error or "Webhook inactive"}
    return {
        "success": log.delivery_status == WebhookDeliveryStatus.DELIVERED.value,
        "webhook_id": webhook.id,
        "status_code": log.http_status_code,
        "error": log.error_message,
    }
