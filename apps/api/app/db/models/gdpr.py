"""GDPR models: consent, audit log, export and deletion requests."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JsonType
from app.utils.time import utcnow


class UserConsent(Base):
    """Current consent state for one user (one row per user)."""

    __tablename__ = "user_consent"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    granular_consents: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    consent_version: Mapped[str] = mapped_column(String(20), default="1.0", nullable=False)
    legal_basis: Mapped[str] = mapped_column(String(255), nullable=False)
    consent_date: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    withdrawal_date: Mapped[datetime | None] = mapped_column(nullable=True)
    renewal_required: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class GdprAuditLog(Base):
    """
    Append-only record of data-subject-rights events.

    user_id is deliberately not a foreign key: entries must outlive
    the user they describe.
    """

    __tablename__ = "gdpr_audit_log"
    __table_args__ = (
        Index("ix_gdpr_audit_log_user", "user_id", "created_at"),
        Index("ix_gdpr_audit_log_event", "event_type", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    admin_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    details: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    legal_basis: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="completed", nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class DataExportRequest(Base):
    """Right-of-access export; content is built by the worker."""

    __tablename__ = "data_export_requests"
    __table_args__ = (Index("ix_data_export_requests_user", "user_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    format: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    options: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    export_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class DeletionRequest(Base):
    """Right-to-erasure request with a grace period and recovery token."""

    __tablename__ = "deletion_requests"
    __table_args__ = (Index("ix_deletion_requests_status", "status", "grace_period_end"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    immediate_delete: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    grace_period_end: Mapped[datetime] = mapped_column(nullable=False)
    recovery_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
