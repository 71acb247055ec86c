"""Registration failures - record, alert admins, resolve."""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import RegistrationFailureReason
from app.db.models import RegistrationFailure
from app.services.audit_service import hash_email
from app.services.email_service import EmailType, queue_email
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

ALERT_WINDOW = timedelta(minutes=30)


def record_failure(
    db: Session,
    *,
    email: str,
    reason: RegistrationFailureReason,
    message: str,
    user_id: UUID | None = None,
) -> RegistrationFailure:
    failure = RegistrationFailure(
        user_id=user_id,
        user_email=email.lower(),
        error_code=reason.value,
        error_message=message,
    )
    db.add(failure)
    db.commit()
    db.refresh(failure)
    logger.warning("Registration failure %s for %s", reason.value, hash_email(email))
    return failure


def run_monitor(db: Session) -> dict:
    """
    Alert on unalerted failures from the last 30 minutes.

    Sends one email per run covering every recent failure, then marks them alerted.
    Older unalerted failures are left for the admin list.
    """
    now = utcnow()
    cutoff = now - ALERT_WINDOW
    unalerted = (
        db.query(RegistrationFailure)
        .filter(RegistrationFailure.alert_sent.is_(False))
        .order_by(RegistrationFailure.attempted_at.desc())
        .all()
    )
    recent = [f for f in unalerted if ensure_utc(f.attempted_at) >= cutoff]
    if not recent:
        return {"success": True, "failures_found": 0, "alert_sent": False}

    queue_email(
        db,
        to_email=settings.ADMIN_ALERT_EMAIL,
        email_type=EmailType.REGISTRATION_FAILURE,
        data={
            "window_minutes": int(ALERT_WINDOW.total_seconds() // 60),
            "failures": [
                {
                    "user_email": f.user_email,
                    "error_code": f.error_code,
                    "error_message": f.error_message,
                    "attempted_at": ensure_utc(f.attempted_at).isoformat(),
                }
                for f in recent
            ],
        },
        commit=False,
    )
    for failure in recent:
        failure.alert_sent = True
        failure.alert_sent_at = now
    db.commit()

    logger.info("Registration failure alert queued for %s failures", len(recent))
    return {"success": True, "failures_found": len(recent), "alert_sent": True}


def list_failures(
    db: Session,
    *,
    unresolved_only: bool = False,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[RegistrationFailure], int]:
    query = db.query(RegistrationFailure)
    if unresolved_only:
        query = query.filter(RegistrationFailure.resolved.is_(False))
    total = query.count()
    items = (
        query.order_by(RegistrationFailure.attempted_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def resolve_failure(
    db: Session, failure_id: UUID, resolution_method: str
) -> RegistrationFailure | None:
    failure = db.query(RegistrationFailure).filter(RegistrationFailure.id == failure_id).first()
    if not failure:
        return None
    failure.resolved = True
    failure.resolved_at = utcnow()
    failure.resolution_method = resolution_method
    db.commit()
    db.refresh(failure)
    return failure
