"""Zapier API keys, outbound webhooks, delivery logs and verifications."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JsonType
from app.db.enums import WebhookDeliveryStatus
from app.utils.time import utcnow


class ZapierApiKey(Base):
    """
    API key Zapier uses to call back into the API.

    Only the SHA-256 hex digest is stored; the plain key is shown once.
    """

    __tablename__ = "zapier_api_keys"
    __table_args__ = (Index("ix_zapier_api_keys_user", "user_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    key_name: Mapped[str] = mapped_column(String(100), nullable=False)
    api_key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    scopes: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rate_limit_per_hour: Mapped[int] = mapped_column(
        Integer, default=1000, server_default=text("1000"), nullable=False
    )
    usage_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    last_used: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    webhooks: Mapped[list["ZapierWebhook"]] = relationship(back_populates="api_key")


class ZapierWebhook(Base):
    """A REST-hook subscription: POST trigger_type events to webhook_url."""

    __tablename__ = "zapier_webhooks"
    __table_args__ = (
        Index("ix_zapier_webhooks_user_trigger", "user_id", "trigger_type", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("zapier_api_keys.id", ondelete="CASCADE"), nullable=False
    )
    webhook_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    secret_token: Mapped[str] = mapped_column(String(255), nullable=False)
    filters: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    success_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    failure_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    last_triggered: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    api_key: Mapped[ZapierApiKey] = relationship(back_populates="webhooks")


class ZapierWebhookLog(Base):
    """One delivery attempt of one event to one webhook."""

    __tablename__ = "zapier_webhook_logs"
    __table_args__ = (
        Index("ix_zapier_webhook_logs_webhook", "webhook_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    webhook_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("zapier_webhooks.id", ondelete="CASCADE"), nullable=False
    )
    delivery_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    delivery_status: Mapped[str] = mapped_column(
        String(20), default=WebhookDeliveryStatus.PENDING.value, nullable=False
    )
    attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    http_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ZapierConnectionVerification(Base):
    """Result of an on-demand "verify connection" run."""

    __tablename__ = "zapier_connection_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    test_results: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
