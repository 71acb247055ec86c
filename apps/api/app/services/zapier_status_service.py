"""Zapier connection health for the settings page."""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.enums import ZapierHealth
from app.db.models import (
    ConversationAnalysis,
    User,
    ZapierApiKey,
    ZapierConnectionVerification,
    ZapierWebhook,
)
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

RECENT_VERIFICATION_WINDOW = timedelta(minutes=15)
HEALTH_LABELS = {
    ZapierHealth.SETUP: "Setup Required",
    ZapierHealth.HEALTHY: "Healthy",
    ZapierHealth.DEGRADED: "Degraded",
    ZapierHealth.CONNECTED: "Connected",
    ZapierHealth.ERROR: "Issues Detected",
}


def compute_success_rate(webhooks: list[ZapierWebhook]) -> int:
    """Percent of hooks with more successes than failures; 0 without hooks."""
    if not webhooks:
        return 0
    healthy = sum(1 for hook in webhooks if hook.success_count > hook.failure_count)
    return round(100 * healthy / len(webhooks))


def classify_health(is_setup_complete: bool, recent_success: bool, success_rate: int) -> ZapierHealth:
    if not is_setup_complete:
        return ZapierHealth.SETUP
    if not recent_success:
        return ZapierHealth.ERROR
    if success_rate >= 90:
        return ZapierHealth.HEALTHY
    if success_rate >= 70:
        return ZapierHealth.DEGRADED
    return ZapierHealth.CONNECTED


def get_status(db: Session, user_id: UUID) -> dict:
    api_keys = db.query(ZapierApiKey).filter(ZapierApiKey.user_id == user_id).all()
    webhooks = db.query(ZapierWebhook).filter(ZapierWebhook.user_id == user_id).all()
    verifications = (
        db.query(ZapierConnectionVerification)
        .filter(ZapierConnectionVerification.user_id == user_id)
        .order_by(ZapierConnectionVerification.created_at.desc())
        .limit(10)
        .all()
    )

    cutoff = utcnow() - RECENT_VERIFICATION_WINDOW
    recent = next(
        (v for v in verifications if v.success and ensure_utc(v.created_at) > cutoff),
        None,
    )
    is_setup_complete = len(api_keys) > 0
    success_rate = compute_success_rate(webhooks)
    health = classify_health(is_setup_complete, recent is not None, success_rate)

    return {
        "status": health.value,
        "text": HEALTH_LABELS[health],
        "success_rate": success_rate,
        "active_api_keys": sum(1 for key in api_keys if key.is_active),
        "active_webhooks": sum(1 for hook in webhooks if hook.is_active),
        "is_setup_complete": is_setup_complete,
        "last_verified_at": recent.created_at if recent else None,
        "verifications": verifications,
    }


def _check(name: str, passed: bool, message: str) -> dict:
    return {"name": name, "success": passed, "message": message}


def verify_connection(db: Session, user_id: UUID, api_key: ZapierApiKey) -> ZapierConnectionVerification:
    """Run the connection checks and store the result."""
    checks: list[dict] = []

    try:
        db.execute(text("SELECT 1"))
        user_exists = db.query(User.id).filter(User.id == user_id).first() is not None
        checks.append(
            _check(
                "database_connection",
                user_exists,
                "Database reachable" if user_exists else "User record not found",
            )
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Zapier verification database check failed: %s", type(exc).__name__)
        checks.append(_check("database_connection", False, "Database unreachable"))

    expires_at = ensure_utc(api_key.expires_at)
    if not api_key.is_active:
        checks.append(_check("api_key_validation", False, "API key is revoked"))
    elif expires_at and expires_at < utcnow():
        checks.append(_check("api_key_validation", False, "API key has expired"))
    else:
        checks.append(_check("api_key_validation", True, "API key is active"))

    analysis_count = (
        db.query(ConversationAnalysis)
        .filter(ConversationAnalysis.user_id == user_id)
        .count()
    )
    checks.append(
        _check("data_access", True, f"{analysis_count} analyses available")
    )

    success = all(check["success"] for check in checks)
    verification = ZapierConnectionVerification(
        user_id=user_id,
        success=success,
        test_results={
            "api_key_id": str(api_key.id),
            "checks": checks,
            "tested_at": utcnow().isoformat(),
        },
    )
    db.add(verification)
    db.commit()
    db.refresh(verification)
    logger.info("Zapier verification for user %s: success=%s", user_id, success)
    return verification
