"""Zapier API keys - issue, validate, revoke.

Keys look like `sw_` + 60 alphanumerics. Only the SHA-256 hex digest is
stored; the plain key is returned once at creation.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.security import sha256_hex
from app.db.enums import ZapierScope
from app.db.models import ZapierApiKey, ZapierWebhook, ZapierWebhookLog
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "sw_"
KEY_RANDOM_LENGTH = 60
DISPLAY_PREFIX_LENGTH = 8
KEY_ALPHABET = string.ascii_letters + string.digits
KEY_LIFETIME = timedelta(days=90)
DEFAULT_RATE_LIMIT_PER_HOUR = 1000
DEFAULT_SCOPES = [ZapierScope.READ_ANALYSIS.value, ZapierScope.WEBHOOK_SUBSCRIBE.value]


class ApiKeyError(Exception):
    """API key rejected; status_code is 401 (invalid/expired) or 429 (rate limited)."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ValidatedKey:
    user_id: UUID
    api_key_id: UUID
    scopes: list[str]
    expires_at: object


def generate_api_key() -> str:
    return KEY_PREFIX + "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_RANDOM_LENGTH))


def create_api_key(
    db: Session,
    user_id: UUID,
    key_name: str,
    scopes: list[str] | None = None,
) -> tuple[ZapierApiKey, str]:
    """Create a key. Returns (row, plain_key); the plain key is never stored."""
    requested = scopes or DEFAULT_SCOPES
    valid_scopes = {s.value for s in ZapierScope}
    unknown = [s for s in requested if s not in valid_scopes]
    if unknown:
        raise ValueError(f"Unknown scopes: {', '.join(unknown)}")

    plain_key = generate_api_key()
    key = ZapierApiKey(
        user_id=user_id,
        key_name=key_name.strip(),
        api_key_hash=sha256_hex(plain_key),
        key_prefix=plain_key[:DISPLAY_PREFIX_LENGTH],
        scopes=list(dict.fromkeys(requested)),
        is_active=True,
        expires_at=utcnow() + KEY_LIFETIME,
        rate_limit_per_hour=DEFAULT_RATE_LIMIT_PER_HOUR,
    )
    db.add(key)
    db.commit()
    db.refresh(key)
    logger.info("Zapier API key created id=%s user=%s", key.id, user_id)
    return key, plain_key


def list_api_keys(db: Session, user_id: UUID) -> list[ZapierApiKey]:
    return (
        db.query(ZapierApiKey)
        .filter(ZapierApiKey.user_id == user_id)
        .order_by(ZapierApiKey.created_at.desc())
        .all()
    )


def get_api_key(db: Session, key_id: UUID, user_id: UUID) -> ZapierApiKey | None:
    return (
        db.query(ZapierApiKey)
        .filter(ZapierApiKey.id == key_id, ZapierApiKey.user_id == user_id)
        .first()
    )


def recent_usage(db: Session, user_id: UUID) -> int:
    """Webhook deliveries for the user's hooks in the last hour."""
    since = utcnow() - timedelta(hours=1)
    return (
        db.query(ZapierWebhookLog)
        .join(ZapierWebhook, ZapierWebhook.id == ZapierWebhookLog.webhook_id)
        .filter(ZapierWebhook.user_id == user_id, ZapierWebhookLog.created_at >= since)
        .count()
    )


def validate_api_key(db: Session, api_key: str | None) -> ValidatedKey:
    """
    Resolve a plain key to its owner.

    Raises ApiKeyError(401) for unknown/inactive/expired keys and
    ApiKeyError(429) when the hourly limit is used up. Records usage on success.
    """
    if not api_key or not api_key.startswith(KEY_PREFIX):
        raise ApiKeyError("Invalid or expired API key")

    key = (
        db.query(ZapierApiKey)
        .filter(
            ZapierApiKey.api_key_hash == sha256_hex(api_key),
            ZapierApiKey.is_active.is_(True),
        )
        .first()
    )
    if not key:
        raise ApiKeyError("Invalid or expired API key")

    expires_at = ensure_utc(key.expires_at)
    if expires_at and expires_at < utcnow():
        raise ApiKeyError("Invalid or expired API key")

    if recent_usage(db, key.user_id) >= key.rate_limit_per_hour:
        logger.warning("Zapier rate limit exceeded for key %s", key.id)
        raise ApiKeyError("Rate limit exceeded", status_code=429)

    key.usage_count += 1
    key.last_used = utcnow()
    db.commit()

    return ValidatedKey(
        user_id=key.user_id,
        api_key_id=key.id,
        scopes=list(key.scopes or []),
        expires_at=key.expires_at,
    )


def revoke_api_key(db: Session, key_id: UUID, user_id: UUID) -> ZapierApiKey | None:
    """Deactivate a key and its webhooks. Returns None when missing or already revoked."""
    key = (
        db.query(ZapierApiKey)
        .filter(
            ZapierApiKey.id == key_id,
            ZapierApiKey.user_id == user_id,
            ZapierApiKey.is_active.is_(True),
        )
        .first()
    )
    if not key:
        return None

    key.is_active = False
    db.query(ZapierWebhook).filter(ZapierWebhook.api_key_id == key.id).update(
        {ZapierWebhook.is_active: False}, synchronize_session=False
    )
    db.commit()
    db.refresh(key)
    logger.info("Zapier API key revoked id=%s", key.id)
    return key
