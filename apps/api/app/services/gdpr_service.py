"""GDPR service - consent, data exports, deletion requests and retention."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID
from xml.etree import ElementTree

from fastapi import Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.security import generate_opaque_token
from app.db.enums import (
    DeletionStatus,
    ExportFormat,
    ExportStatus,
    GdprEventStatus,
    GdprEventType,
    JobType,
    RetentionStatus,
)
from app.db.models import (
    Account,
    ConversationAnalysis,
    DataExportRequest,
    DeletionRequest,
    GdprAuditLog,
    IntegrationConnection,
    Job,
    RegistrationFailure,
    Transcript,
    User,
    UserConsent,
    UserInvite,
)
from app.services import audit_service, job_service, user_deletion_service
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CONSENT_VERSION = "1.0"
CONSENT_LEGAL_BASIS = "Article 6(1)(b) - Contract performance"
DEFAULT_CONSENTS: dict[str, bool] = {
    "transcriptProcessing": True,
    "dataAnalytics": True,
    "emailCommunications": False,
    "marketingCommunications": False,
    "thirdPartySharing": False,
}

EXPORT_EXPIRY = timedelta(days=7)
DELETION_GRACE_PERIOD = timedelta(days=30)
UPCOMING_WINDOW_DAYS = 30

CSV_DANGEROUS_PREFIXES = ("=", "+", "-", "@")


# ============================================================================
# Consent
# ============================================================================


def get_consent(db: Session, user_id: UUID) -> UserConsent | None:
    return db.query(UserConsent).filter(UserConsent.user_id == user_id).first()


def consent_view(consent: UserConsent | None) -> dict[str, Any]:
    """Consent state with defaults filled in for users who never saved one."""
    if not consent:
        return {
            "granular_consents": dict(DEFAULT_CONSENTS),
            "consent_version": CONSENT_VERSION,
            "legal_basis": CONSENT_LEGAL_BASIS,
            "consent_date": None,
            "withdrawal_date": None,
            "renewal_required": False,
        }
    return {
        "granular_consents": {**DEFAULT_CONSENTS, **(consent.granular_consents or {})},
        "consent_version": consent.consent_version,
        "legal_basis": consent.legal_basis,
        "consent_date": consent.consent_date,
        "withdrawal_date": consent.withdrawal_date,
        "renewal_required": consent.renewal_required,
    }


def update_consent(
    db: Session,
    user_id: UUID,
    consents: dict[str, bool],
    *,
    legal_basis: str | None = None,
    admin_id: UUID | None = None,
    request: Request | None = None,
) -> UserConsent:
    """
    Merge granular consents and record the change.

    Unknown keys raise ValueError. Turning any consent off sets withdrawal_date.
    """
    unknown = sorted(set(consents) - set(DEFAULT_CONSENTS))
    if unknown:
        raise ValueError(f"Unknown consent keys: {', '.join(unknown)}")

    consent = get_consent(db, user_id)
    previous = {**DEFAULT_CONSENTS, **(consent.granular_consents if consent else {})}
    merged = {**previous, **{key: bool(value) for key, value in consents.items()}}
    withdrawn = sorted(key for key, value in merged.items() if previous.get(key) and not value)
    now = utcnow()

    if not consent:
        consent = UserConsent(user_id=user_id, consent_version=CONSENT_VERSION)
        db.add(consent)

    consent.granular_consents = merged
    consent.legal_basis = legal_basis or CONSENT_LEGAL_BASIS
    consent.consent_date = now
    consent.renewal_required = False
    consent.ip_address = audit_service.get_client_ip(request)
    consent.user_agent = audit_service.get_user_agent(request)
    if withdrawn:
        consent.withdrawal_date = now

    audit_service.log_gdpr_event(
        db,
        GdprEventType.CONSENT_UPDATED,
        user_id=user_id,
        admin_id=admin_id,
        details={"consents": merged, "withdrawn": withdrawn},
        request=request,
    )
    db.commit()
    db.refresh(consent)
    return consent


# ============================================================================
# Exports
# ============================================================================


def create_export_request(
    db: Session,
    user_id: UUID,
    export_format: ExportFormat,
    options: dict | None = None,
    request: Request | None = None,
) -> DataExportRequest:
    export = DataExportRequest(
        user_id=user_id,
        format=export_format.value,
        status=ExportStatus.PENDING.value,
        options=options or {},
    )
    db.add(export)
    db.flush()

    job_service.schedule_job(
        db,
        user_id=user_id,
        job_type=JobType.DATA_EXPORT,
        payload={"export_request_id": str(export.id)},
        commit=False,
    )
    audit_service.log_gdpr_event(
        db,
        GdprEventType.DATA_EXPORT,
        user_id=user_id,
        details={"export_request_id": str(export.id), "format": export_format.value},
        status=GdprEventStatus.PENDING,
        request=request,
    )
    db.commit()
    db.refresh(export)
    return export


def list_export_requests(db: Session, user_id: UUID) -> list[DataExportRequest]:
    return (
        db.query(DataExportRequest)
        .filter(DataExportRequest.user_id == user_id)
        .order_by(DataExportRequest.created_at.desc())
        .all()
    )


def get_export_request(db: Session, export_id: UUID, user_id: UUID) -> DataExportRequest | None:
    return (
        db.query(DataExportRequest)
        .filter(DataExportRequest.id == export_id, DataExportRequest.user_id == user_id)
        .first()
    )


def get_export_by_token(db: Session, download_token: str) -> DataExportRequest | None:
    return (
        db.query(DataExportRequest)
        .filter(DataExportRequest.download_token == download_token)
        .first()
    )


def is_export_downloadable(export: DataExportRequest) -> bool:
    expires_at = ensure_utc(export.expires_at)
    return (
        export.status == ExportStatus.COMPLETED.value
        and export.export_content is not None
        and expires_at is not None
        and expires_at > utcnow()
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def collect_user_data(db: Session, user_id: UUID) -> dict[str, Any]:
    """Everything held about a user, as plain JSON-able data. Tokens are never included."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError("User not found")

    accounts = db.query(Account).filter(Account.user_id == user_id).order_by(Account.created_at).all()
    transcripts = (
        db.query(Transcript).filter(Transcript.user_id == user_id).order_by(Transcript.created_at).all()
    )
    analyses = (
        db.query(ConversationAnalysis)
        .filter(ConversationAnalysis.user_id == user_id)
        .order_by(ConversationAnalysis.created_at)
        .all()
    )
    connections = db.query(IntegrationConnection).filter(IntegrationConnection.user_id == user_id).all()

    return {
        "profile": {
            "id": str(user.id),
            "email": user.email,
            "display_name": user.display_name,
            "role": user.role,
            "created_at": _iso(user.created_at),
            "last_login_at": _iso(user.last_login_at),
        },
        "accounts": [
            {
                "id": str(a.id),
                "name": a.name,
                "deal_stage": a.deal_stage,
                "notes": a.notes,
                "created_at": _iso(a.created_at),
            }
            for a in accounts
        ],
        "transcripts": [
            {
                "id": str(t.id),
                "account_id": str(t.account_id) if t.account_id else None,
                "title": t.title,
                "participants": t.participants,
                "meeting_date": _iso(t.meeting_date),
                "duration_minutes": t.duration_minutes,
                "source": t.source,
                "status": t.status,
                "raw_text": t.raw_text,
                "is_archived": t.is_archived,
                "archived_at": _iso(t.archived_at),
                "created_at": _iso(t.created_at),
            }
            for t in transcripts
        ],
        "analyses": [
            {
                "id": str(a.id),
                "transcript_id": str(a.transcript_id),
                "heat_level": a.heat_level,
                "challenger_scores": a.challenger_scores,
                "call_summary": a.call_summary,
                "key_takeaways": a.key_takeaways,
                "recommendations": a.recommendations,
                "created_at": _iso(a.created_at),
            }
            for a in analyses
        ],
        "consent": {
            key: (_iso(value) if isinstance(value, datetime) else value)
            for key, value in consent_view(get_consent(db, user_id)).items()
        },
        "integrations": [
            {
                "provider": c.connection_name,
                "status": c.status,
                "connected_at": (c.configuration or {}).get("connected_at"),
                "last_sync_at": _iso(c.last_sync_at),
            }
            for c in connections
        ],
        "exported_at": utcnow().isoformat(),
    }


def _csv_safe(value: str) -> str:
    if value and value.startswith(CSV_DANGEROUS_PREFIXES):
        return f"'{value}"
    return value


def _serialize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


def _render_csv(data: dict[str, Any]) -> str:
    """One row per record: section, record index, field, value."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["section", "record", "field", "value"])
    for section, content in data.items():
        records = content if isinstance(content, list) else [content]
        for index, record in enumerate(records):
            if isinstance(record, dict):
                for field_name, value in record.items():
                    writer.writerow([section, index, field_name, _csv_safe(_serialize_value(value))])
            else:
                writer.writerow([section, index, "", _csv_safe(_serialize_value(record))])
    return buffer.getvalue()


def _xml_append(parent: ElementTree.Element, tag: str, value: Any) -> None:
    element = ElementTree.SubElement(parent, tag)
    if isinstance(value, dict):
        for key, child in value.items():
            _xml_append(element, key, child)
    elif isinstance(value, list):
        for child in value:
            _xml_append(element, "item", child)
    elif value is not None:
        element.text = str(value)


def _render_xml(data: dict[str, Any]) -> str:
    root = ElementTree.Element("user_data_export")
    for key, value in data.items():
        _xml_append(root, key, value)
    return ElementTree.tostring(root, encoding="unicode", xml_declaration=True)


def render_export(data: dict[str, Any], export_format: ExportFormat) -> str:
    if export_format == ExportFormat.CSV:
        return _render_csv(data)
    if export_format == ExportFormat.XML:
        return _render_xml(data)
    return json.dumps(data, indent=2, default=str)


def process_export_request(db: Session, export_id: UUID) -> DataExportRequest:
    """Build the export content. Raises ValueError when the request is missing."""
    export = db.query(DataExportRequest).filter(DataExportRequest.id == export_id).first()
    if not export:
        raise ValueError("Export request not found")
    if export.status == ExportStatus.COMPLETED.value:
        return export

    export.status = ExportStatus.PROCESSING.value
    db.commit()

    try:
        data = collect_user_data(db, export.user_id)
        export.export_content = render_export(data, ExportFormat(export.format))
    except ValueError as exc:
        export.status = ExportStatus.FAILED.value
        export.error_message = str(exc)
        audit_service.log_gdpr_event(
            db,
            GdprEventType.DATA_EXPORT,
            user_id=export.user_id,
            details={"export_request_id": str(export.id), "error": str(exc)},
            status=GdprEventStatus.FAILED,
        )
        db.commit()
        raise

    now = utcnow()
    export.status = ExportStatus.COMPLETED.value
    export.download_token = generate_opaque_token()
    export.completed_at = now
    export.expires_at = now + EXPORT_EXPIRY
    audit_service.log_gdpr_event(
        db,
        GdprEventType.DATA_EXPORT,
        user_id=export.user_id,
        details={"export_request_id": str(export.id), "format": export.format},
    )
    db.commit()
    db.refresh(export)
    logger.info("Data export %s completed (%s)", export.id, export.format)
    return export


# ============================================================================
# Deletion requests
# ============================================================================


@dataclass
class CreatedDeletionRequest:
    request: DeletionRequest
    recovery_token: str


def get_pending_deletion(db: Session, user_id: UUID) -> DeletionRequest | None:
    return (
        db.query(DeletionRequest)
        .filter(
            DeletionRequest.user_id == user_id,
            DeletionRequest.status == DeletionStatus.PENDING.value,
        )
        .first()
    )


def list_deletion_requests(
    db: Session, user_id: UUID | None = None, status: DeletionStatus | None = None
) -> list[DeletionRequest]:
    query = db.query(DeletionRequest)
    if user_id:
        query = query.filter(DeletionRequest.user_id == user_id)
    if status:
        query = query.filter(DeletionRequest.status == status.value)
    return query.order_by(DeletionRequest.created_at.desc()).all()


def create_deletion_request(
    db: Session,
    user: User,
    *,
    reason: str | None = None,
    immediate: bool = False,
    admin_id: UUID | None = None,
    request: Request | None = None,
) -> CreatedDeletionRequest:
    """
    Request erasure of a user's data.

    Without `immediate`, processing waits out a 30-day grace period during
    which the recovery token cancels the request.
    """
    if get_pending_deletion(db, user.id):
        raise ValueError("A deletion request is already pending")

    now = utcnow()
    grace_end = now if immediate else now + DELETION_GRACE_PERIOD
    recovery_token = generate_opaque_token()
    deletion = DeletionRequest(
        user_id=user.id,
        user_email=user.email,
        reason=reason,
        status=DeletionStatus.PENDING.value,
        immediate_delete=immediate,
        scheduled_for=grace_end,
        grace_period_end=grace_end,
        recovery_token=recovery_token,
    )
    db.add(deletion)
    db.flush()

    audit_service.log_gdpr_event(
        db,
        GdprEventType.DATA_DELETION,
        user_id=user.id,
        admin_id=admin_id,
        details={
            "deletion_request_id": str(deletion.id),
            "immediate": immediate,
            "scheduled_for": grace_end.isoformat(),
        },
        status=GdprEventStatus.PENDING,
        request=request,
    )
    if immediate:
        _enqueue_deletion(db, deletion)
    db.commit()
    db.refresh(deletion)
    logger.info("Deletion request %s created (immediate=%s)", deletion.id, immediate)
    return CreatedDeletionRequest(request=deletion, recovery_token=recovery_token)


def cancel_deletion_request(
    db: Session,
    *,
    request_id: UUID | None = None,
    user_id: UUID | None = None,
    recovery_token: str | None = None,
    request: Request | None = None,
) -> DeletionRequest | None:
    """
    Cancel a pending request by id (scoped to user_id unless None) or recovery token.

    Returns None when no matching pending request exists.
    """
    query = db.query(DeletionRequest).filter(
        DeletionRequest.status.in_([DeletionStatus.PENDING.value, DeletionStatus.CONFIRMED.value])
    )
    if recovery_token:
        query = query.filter(DeletionRequest.recovery_token == recovery_token)
    elif request_id:
        query = query.filter(DeletionRequest.id == request_id)
        if user_id:
            query = query.filter(DeletionRequest.user_id == user_id)
    else:
        return None

    deletion = query.first()
    if not deletion:
        return None
    if deletion.immediate_delete:
        raise ValueError("Immediate deletion requests cannot be cancelled")
    if deletion.status == DeletionStatus.CONFIRMED.value:
        raise ValueError("Deletion is already in progress")

    deletion.status = DeletionStatus.CANCELLED.value
    deletion.recovery_token = None
    audit_service.log_gdpr_event(
        db,
        GdprEventType.DATA_DELETION,
        user_id=deletion.user_id,
        details={"deletion_request_id": str(deletion.id), "action": "cancelled"},
        request=request,
    )
    db.commit()
    db.refresh(deletion)
    return deletion


def _enqueue_deletion(db: Session, deletion: DeletionRequest) -> Job | None:
    deletion.status = DeletionStatus.CONFIRMED.value
    return job_service.schedule_job(
        db,
        user_id=None,
        job_type=JobType.ACCOUNT_DELETION,
        payload={"deletion_request_id": str(deletion.id)},
        idempotency_key=f"account-deletion:{deletion.id}",
        commit=False,
    )


def process_due_deletions(db: Session) -> dict[str, int]:
    """Cron: queue deletion jobs for requests whose grace period has ended."""
    due = (
        db.query(DeletionRequest)
        .filter(
            DeletionRequest.status == DeletionStatus.PENDING.value,
            DeletionRequest.grace_period_end <= utcnow(),
        )
        .all()
    )
    for deletion in due:
        _enqueue_deletion(db, deletion)
    db.commit()
    if due:
        logger.info("Queued %s account deletions", len(due))
    return {"queued": len(due)}


def execute_deletion(db: Session, deletion_id: UUID) -> DeletionRequest:
    """Delete the user's data for a confirmed request. Raises ValueError when missing."""
    deletion = db.query(DeletionRequest).filter(DeletionRequest.id == deletion_id).first()
    if not deletion:
        raise ValueError("Deletion request not found")
    if deletion.status in (DeletionStatus.COMPLETED.value, DeletionStatus.CANCELLED.value):
        return deletion

    user_id = deletion.user_id
    counts: dict[str, int] = {}
    if user_id:
        deletion.user_id = None
        db.flush()
        counts = user_deletion_service.delete_user_data(db, user_id)

    deletion.status = DeletionStatus.COMPLETED.value
    deletion.completed_at = utcnow()
    deletion.recovery_token = None
    audit_service.log_gdpr_event(
        db,
        GdprEventType.DATA_DELETION,
        user_id=user_id,
        details={
            "deletion_request_id": str(deletion.id),
            "user_email": audit_service.hash_email(deletion.user_email),
            "deleted": counts,
        },
    )
    db.commit()
    db.refresh(deletion)
    logger.info("Deletion request %s completed", deletion.id)
    return deletion


def mark_deletion_failed(db: Session, deletion_id: UUID, error: str) -> None:
    deletion = db.query(DeletionRequest).filter(DeletionRequest.id == deletion_id).first()
    if not deletion:
        return
    deletion.status = DeletionStatus.FAILED.value
    deletion.error_message = error[:2000]
    audit_service.log_gdpr_event(
        db,
        GdprEventType.DATA_DELETION,
        user_id=deletion.user_id,
        details={"deletion_request_id": str(deletion.id), "error": error[:500]},
        status=GdprEventStatus.FAILED,
    )
    db.commit()


# ============================================================================
# Retention
# ============================================================================


@dataclass(frozen=True)
class RetentionPolicy:
    data_type: str
    retention_days: int
    description: str


RETENTION_POLICIES: list[RetentionPolicy] = [
    RetentionPolicy("users", 7 * 365, "User profiles after last activity"),
    RetentionPolicy("transcripts", 5 * 365, "Call transcripts and analyses"),
    RetentionPolicy("activity_logs", 3 * 365, "GDPR audit trail entries"),
    RetentionPolicy("invite_tokens", 365, "User invitations"),
    RetentionPolicy("security_logs", 6 * 365, "Registration failure records"),
    RetentionPolicy("email_logs", 2 * 365, "Queued email jobs"),
]


def retention_status(
    created_at: datetime, retention_days: int, now: datetime | None = None
) -> tuple[RetentionStatus, int]:
    """Return (status, days_until_action) for one record."""
    now = now or utcnow()
    action_at = ensure_utc(created_at) + timedelta(days=retention_days)
    days_until = (action_at - now).days
    if days_until < 0:
        return RetentionStatus.IMMEDIATE, days_until
    if days_until < UPCOMING_WINDOW_DAYS:
        return RetentionStatus.UPCOMING, days_until
    return RetentionStatus.COMPLIANT, days_until


def _retention_query(db: Session, data_type: str):
    """(query, timestamp column) backing a policy."""
    if data_type == "users":
        return db.query(User), func.coalesce(User.last_login_at, User.created_at)
    if data_type == "transcripts":
        return db.query(Transcript), Transcript.created_at
    if data_type == "activity_logs":
        return db.query(GdprAuditLog), GdprAuditLog.created_at
    if data_type == "invite_tokens":
        return db.query(UserInvite), UserInvite.created_at
    if data_type == "security_logs":
        return db.query(RegistrationFailure), RegistrationFailure.attempted_at
    return db.query(Job).filter(Job.job_type == JobType.SEND_EMAIL.value), Job.created_at


def get_retention_summary(db: Session) -> list[dict[str, Any]]:
    """Per policy: record counts in each retention status."""
    now = utcnow()
    summary = []
    for policy in RETENTION_POLICIES:
        query, column = _retention_query(db, policy.data_type)
        expired_before = now - timedelta(days=policy.retention_days)
        upcoming_before = expired_before + timedelta(days=UPCOMING_WINDOW_DAYS)
        total = query.count()
        immediate = query.filter(column < expired_before).count()
        upcoming = query.filter(column >= expired_before, column < upcoming_before).count()
        summary.append(
            {
                "data_type": policy.data_type,
                "retention_days": policy.retention_days,
                "description": policy.description,
                "total": total,
                RetentionStatus.IMMEDIATE.value: immediate,
                RetentionStatus.UPCOMING.value: upcoming,
                RetentionStatus.COMPLIANT.value: total - immediate - upcoming,
            }
        )
    return summary


def apply_transcript_retention(db: Session) -> dict[str, int]:
    """Cron: delete transcripts (and their analyses) past the transcript retention period."""
    policy = next(p for p in RETENTION_POLICIES if p.data_type == "transcripts")
    cutoff = utcnow() - timedelta(days=policy.retention_days)
    expired = db.query(Transcript).filter(Transcript.created_at < cutoff).all()
    if not expired:
        return {"deleted": 0}

    per_user: dict[UUID, int] = {}
    for transcript in expired:
        per_user[transcript.user_id] = per_user.get(transcript.user_id, 0) + 1
        db.delete(transcript)

    for user_id, count in per_user.items():
        audit_service.log_gdpr_event(
            db,
            GdprEventType.RETENTION_ACTION,
            user_id=user_id,
            details={
                "data_type": policy.data_type,
                "deleted": count,
                "retention_days": policy.retention_days,
            },
        )
    db.commit()
    logger.info("Retention sweep deleted %s transcripts", len(expired))
    return {"deleted": len(expired)}
