"""Session JWTs, Google login state cookies, opaque tokens and HMAC helpers."""

import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from app.core.config import settings


JWT_ALGORITHM = "HS256"


# =============================================================================
# Session Token (JWT in cookie)
# =============================================================================

def create_session_token(
    user_id: UUID,
    role: str,
    token_version: int,
) -> str:
    """
    Sign a session JWT with JWT_SECRET.

    `token_version` is compared with the user row on every request, so bumping
    it on the user revokes every outstanding token.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "token_version": token_version,
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_session_token(token: str) -> dict:
    """
    Verify a session JWT against JWT_SECRET, then JWT_SECRET_PREVIOUS.

    Raises jwt.InvalidTokenError when no configured secret accepts it.
    """
    last_error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
        except jwt.InvalidTokenError as e:
            last_error = e
    raise last_error or jwt.InvalidTokenError("No JWT secret configured")


# =============================================================================
# Google login state cookie
# =============================================================================

def generate_oauth_state() -> str:
    return secrets.token_urlsafe(32)


def generate_oauth_nonce() -> str:
    return secrets.token_urlsafe(32)


def hash_user_agent(user_agent: str) -> str:
    return hashlib.sha256(user_agent.encode()).hexdigest()[:16]


def create_oauth_state_payload(state: str, nonce: str, user_agent: str) -> str:
    """Cookie value binding state and nonce to the browser that started the login."""
    return json.dumps(
        {
            "state": state,
            "nonce": nonce,
            "ua_hash": hash_user_agent(user_agent),
        }
    )


def parse_oauth_state_payload(cookie_value: str) -> dict:
    payload = json.loads(cookie_value)
    if not isinstance(payload, dict):
        raise ValueError("State cookie is not an object")
    return payload


def verify_oauth_state(
    stored_payload: dict,
    received_state: str,
    user_agent: str,
) -> tuple[bool, str]:
    """Returns (ok, reason). Both the state and the user-agent hash must match."""
    if not hmac.compare_digest(str(stored_payload.get("state", "")), received_state):
        return False, "State mismatch"
    if stored_payload.get("ua_hash") != hash_user_agent(user_agent):
        return False, "User-agent mismatch"
    return True, ""


# =============================================================================
# Opaque tokens and signatures
# =============================================================================

def generate_opaque_token() -> str:
    """Random URL-safe token (export downloads, deletion recovery)."""
    return secrets.token_urlsafe(32)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
