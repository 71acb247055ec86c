"""GDPR audit logging - data-subject-rights events.

Security guidelines:
- NEVER log secrets (API keys, tokens)
- Hash emails in details (use hash_email)
- IP: Trust X-Forwarded-For only when TRUST_PROXY_HEADERS is set
"""

import hashlib
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import GdprEventStatus, GdprEventType
from app.db.models import GdprAuditLog

DEFAULT_LEGAL_BASIS = "Article 6(1)(b) - Contract performance"

LEGAL_BASIS_BY_EVENT = {
    GdprEventType.DATA_EXPORT: "Article 15 - Right of access",
    GdprEventType.DATA_DELETION: "Article 17 - Right to erasure",
    GdprEventType.CONSENT_UPDATED: "Article 7 - Conditions for consent",
    GdprEventType.RETENTION_ACTION: "Article 5(1)(e) - Storage limitation",
}


def hash_email(email: str) -> str:
    """Hash email for logs (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    return ua[:500] if ua else None


def log_gdpr_event(
    db: Session,
    event_type: GdprEventType,
    user_id: UUID | None,
    admin_id: UUID | None = None,
    details: dict[str, Any] | None = None,
    status: GdprEventStatus = GdprEventStatus.COMPLETED,
    legal_basis: str | None = None,
    request: Request | None = None,
) -> GdprAuditLog:
    """
    Append a GDPR audit entry.

    Flushes but does not commit; the caller owns the transaction so the
    entry lands atomically with the change it describes.
    """
    entry = GdprAuditLog(
        event_type=event_type.value,
        user_id=user_id,
        admin_id=admin_id,
        details=details or {},
        legal_basis=legal_basis or LEGAL_BASIS_BY_EVENT.get(event_type, DEFAULT_LEGAL_BASIS),
        status=status.value,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    db.add(entry)
    db.flush()
    return entry


def list_audit_log(
    db: Session,
    user_id: UUID | None = None,
    event_type: GdprEventType | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[GdprAuditLog], int]:
    """List audit entries, newest first. user_id=None means all users (admin view)."""
    query = db.query(GdprAuditLog)
    if user_id:
        query = query.filter(GdprAuditLog.user_id == user_id)
    if event_type:
        query = query.filter(GdprAuditLog.event_type == event_type.value)
    total = query.count()
    items = (
        query.order_by(GdprAuditLog.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total
