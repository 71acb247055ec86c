"""Rate limiting for public and upload endpoints."""

import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")


def _default_limits() -> list[str]:
    if IS_TESTING or settings.RATE_LIMIT_API <= 0:
        return []
    return [f"{settings.RATE_LIMIT_API}/minute"]


def _resolve_storage_uri() -> str:
    """Redis when reachable (shared across API replicas), memory otherwise."""
    if IS_TESTING:
        return "memory://"
    try:
        import redis

        redis.from_url(REDIS_URL, socket_connect_timeout=1).ping()
        return REDIS_URL
    except Exception as e:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", e)
        return "memory://"


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_resolve_storage_uri(),
    default_limits=_default_limits(),
    enabled=not IS_TESTING,
)

UPLOAD_LIMIT = f"{settings.RATE_LIMIT_UPLOAD}/minute"
AUTH_LIMIT = f"{settings.RATE_LIMIT_AUTH}/minute"
WEBHOOK_LIMIT = f"{settings.RATE_LIMIT_WEBHOOK}/minute"
