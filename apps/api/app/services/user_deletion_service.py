"""Permanent user deletion.

Child rows are removed explicitly (not only via FK cascades) so SQLite test
databases and partially migrated Postgres schemas behave the same.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models import (
    Account,
    AnalysisQualityFlag,
    ConversationAnalysis,
    DataExportRequest,
    IntegrationConnection,
    Job,
    OAuthState,
    Transcript,
    User,
    UserConsent,
    ZapierApiKey,
    ZapierConnectionVerification,
    ZapierWebhook,
    ZapierWebhookLog,
)

logger = logging.getLogger(__name__)


def delete_user_data(db: Session, user_id: UUID) -> dict[str, int]:
    """
    Delete everything owned by one user, then the user row.

    Does not commit. Returns per-table counts; {} when the user does not exist.
    GDPR audit log rows and registration failures are kept (they carry no FK).
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return {}

    counts: dict[str, int] = {}

    analysis_ids = [
        row.id
        for row in db.query(ConversationAnalysis.id).filter(ConversationAnalysis.user_id == user_id)
    ]
    if analysis_ids:
        counts["analysis_quality_flags"] = (
            db.query(AnalysisQualityFlag)
            .filter(AnalysisQualityFlag.analysis_id.in_(analysis_ids))
            .delete(synchronize_session=False)
        )
    counts["conversation_analysis"] = (
        db.query(ConversationAnalysis)
        .filter(ConversationAnalysis.user_id == user_id)
        .delete(synchronize_session=False)
    )
    counts["transcripts"] = (
        db.query(Transcript).filter(Transcript.user_id == user_id).delete(synchronize_session=False)
    )
    counts["accounts"] = (
        db.query(Account).filter(Account.user_id == user_id).delete(synchronize_session=False)
    )
    counts["user_consent"] = (
        db.query(UserConsent).filter(UserConsent.user_id == user_id).delete(synchronize_session=False)
    )
    counts["data_export_requests"] = (
        db.query(DataExportRequest)
        .filter(DataExportRequest.user_id == user_id)
        .delete(synchronize_session=False)
    )
    counts["integration_connections"] = (
        db.query(IntegrationConnection)
        .filter(IntegrationConnection.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.query(OAuthState).filter(OAuthState.user_id == user_id).delete(synchronize_session=False)

    webhook_ids = [
        row.id for row in db.query(ZapierWebhook.id).filter(ZapierWebhook.user_id == user_id)
    ]
    if webhook_ids:
        db.query(ZapierWebhookLog).filter(ZapierWebhookLog.webhook_id.in_(webhook_ids)).delete(
            synchronize_session=False
        )
    counts["zapier_webhooks"] = (
        db.query(ZapierWebhook).filter(ZapierWebhook.user_id == user_id).delete(synchronize_session=False)
    )
    counts["zapier_api_keys"] = (
        db.query(ZapierApiKey).filter(ZapierApiKey.user_id == user_id).delete(synchronize_session=False)
    )
    db.query(ZapierConnectionVerification).filter(
        ZapierConnectionVerification.user_id == user_id
    ).delete(synchronize_session=False)
    db.query(Job).filter(Job.user_id == user_id).update(
        {Job.user_id: None}, synchronize_session=False
    )

    db.delete(user)
    db.flush()
    logger.info("Deleted user %s and owned data: %s", user_id, counts)
    return counts


def delete_users(db: Session, user_ids: list[UUID]) -> dict[str, dict[str, int]]:
    """Delete several users in one transaction. Missing ids are reported with empty counts."""
    results: dict[str, dict[str, int]] = {}
    for user_id in dict.fromkeys(user_ids):
        results[str(user_id)] = delete_user_data(db, user_id)
    db.commit()
    return results
