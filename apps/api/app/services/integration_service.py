"""OAuth integration service.

Handles OAuth flows for Zoom, Slack, GitHub and Google.
Stores Fernet-encrypted tokens per user in integration_connections.
"""

from __future__ import annotations

import base64
import html
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_token, encrypt_token
from app.db.enums import ConnectionStatus, IntegrationProvider
from app.db.models import IntegrationConnection, OAuthState, User
from app.services.email_service import EmailType, queue_email
from app.services.http_service import request_with_retries
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

STATE_MAX_AGE = timedelta(hours=1)
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
REFRESH_MARGIN = timedelta(minutes=10)
HTTP_TIMEOUT_SECONDS = 20.0

ZOOM_AUTH_URL = "https://zoom.us/oauth/authorize"
ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"
ZOOM_USER_URL = "https://api.zoom.us/v2/users/me"
ZOOM_SCOPES = "recording:read,user:read"

SLACK_AUTH_URL = "https://slack.com/oauth/v2/authorize"
SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
SLACK_SCOPES = "chat:write,channels:read"

GITHUB_AUTH_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_SCOPES = "read:user user:email"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/calendar.readonly",
]

REFRESHABLE_PROVIDERS = {IntegrationProvider.ZOOM, IntegrationProvider.GOOGLE}


class OAuthError(Exception):
    """OAuth flow failed; the message is safe to show to the user."""


@dataclass
class TokenResult:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    user_info: dict[str, Any] = field(default_factory=dict)
    external_account_id: str | None = None


def redirect_uri_for(provider: IntegrationProvider) -> str:
    return f"{settings.API_BASE_URL.rstrip('/')}/integrations/{provider.value}/callback"


def _client_credentials(provider: IntegrationProvider) -> tuple[str, str]:
    if provider == IntegrationProvider.ZOOM:
        return settings.ZOOM_CLIENT_ID, settings.ZOOM_CLIENT_SECRET
    if provider == IntegrationProvider.SLACK:
        return settings.SLACK_CLIENT_ID, settings.SLACK_CLIENT_SECRET
    if provider == IntegrationProvider.GITHUB:
        return settings.GITHUB_CLIENT_ID, settings.GITHUB_CLIENT_SECRET
    return settings.google_integration_client_id, settings.google_integration_client_secret


def _basic_auth(client_id: str, client_secret: str) -> str:
    return base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()


# ============================================================================
# State
# ============================================================================


def create_oauth_state(db: Session, user_id: UUID, provider: IntegrationProvider) -> str:
    """State is `user_id:provider:timestamp_ms:nonce`, stored until the callback."""
    timestamp_ms = int(utcnow().timestamp() * 1000)
    state = f"{user_id}:{provider.value}:{timestamp_ms}:{secrets.token_urlsafe(16)}"
    db.query(OAuthState).filter(
        OAuthState.user_id == user_id, OAuthState.provider == provider.value
    ).delete(synchronize_session=False)
    db.add(OAuthState(state=state, user_id=user_id, provider=provider.value))
    db.commit()
    return state


def consume_oauth_state(db: Session, state: str, provider: IntegrationProvider) -> OAuthState:
    """
    Validate a callback state and return its row (still present; caller deletes).

    Raises OAuthError for unknown, mismatched or expired states.
    """
    parts = state.split(":")
    if len(parts) != 4:
        raise OAuthError("Invalid OAuth state")
    _, state_provider, timestamp_ms, _ = parts

    row = db.query(OAuthState).filter(OAuthState.state == state).first()
    if not row:
        raise OAuthError("Invalid OAuth state")
    if state_provider != provider.value or row.provider != provider.value:
        raise OAuthError("OAuth state does not match provider")

    try:
        issued_at = datetime.fromtimestamp(int(timestamp_ms) / 1000, tz=utcnow().tzinfo)
    except ValueError:
        raise OAuthError("Invalid OAuth state")
    created_at = ensure_utc(row.created_at) or issued_at
    if utcnow() - min(issued_at, created_at) > STATE_MAX_AGE:
        db.delete(row)
        db.commit()
        raise OAuthError("OAuth state expired")
    return row


def get_authorization_url(db: Session, user_id: UUID, provider: IntegrationProvider) -> tuple[str, str]:
    """Return (auth_url, state). Raises ValueError when the provider app is not configured."""
    client_id, _ = _client_credentials(provider)
    if not client_id:
        raise ValueError(f"{provider.value.title()} client ID not configured")

    state = create_oauth_state(db, user_id, provider)
    redirect_uri = redirect_uri_for(provider)

    if provider == IntegrationProvider.ZOOM:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": ZOOM_SCOPES,
            "state": state,
        }
        return f"{ZOOM_AUTH_URL}?{urlencode(params)}", state
    if provider == IntegrationProvider.SLACK:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": SLACK_SCOPES,
            "state": state,
        }
        return f"{SLACK_AUTH_URL}?{urlencode(params)}", state
    if provider == IntegrationProvider.GITHUB:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": GITHUB_SCOPES,
            "state": state,
        }
        return f"{GITHUB_AUTH_URL}?{urlencode(params)}", state

    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}", state


# ============================================================================
# Code exchange / user info
# ============================================================================


async def _post_form(url: str, data: dict, headers: dict | None = None) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        response = await request_with_retries(
            lambda: client.post(url, data=data, headers={"Accept": "application/json", **(headers or {})})
        )
        response.raise_for_status()
        return response.json()


async def _get_json(url: str, access_token: str) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        response = await request_with_retries(
            lambda: client.get(url, headers={"Authorization": f"Bearer {access_token}"})
        )
        response.raise_for_status()
        return response.json()


async def exchange_code(provider: IntegrationProvider, code: str) -> TokenResult:
    """Exchange an authorization code and fetch the provider account's identity."""
    client_id, client_secret = _client_credentials(provider)
    redirect_uri = redirect_uri_for(provider)

    if provider == IntegrationProvider.ZOOM:
        data = await _post_form(
            ZOOM_TOKEN_URL,
            {"code": code, "grant_type": "authorization_code", "redirect_uri": redirect_uri},
            headers={"Authorization": f"Basic {_basic_auth(client_id, client_secret)}"},
        )
        access_token = data.get("access_token")
        if not access_token:
            raise OAuthError("Failed to obtain access token")
        user_info = await _get_json(ZOOM_USER_URL, access_token)
        return TokenResult(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            user_info=user_info,
            external_account_id=user_info.get("id"),
        )

    if provider == IntegrationProvider.GITHUB:
        data = await _post_form(
            GITHUB_TOKEN_URL,
            {"client_id": client_id, "client_secret": client_secret, "code": code},
        )
        access_token = data.get("access_token")
        if not access_token:
            raise OAuthError(data.get("error_description") or "Failed to obtain access token")
        user_info = await _get_json(GITHUB_USER_URL, access_token)
        return TokenResult(
            access_token=access_token,
            user_info=user_info,
            external_account_id=str(user_info["id"]) if user_info.get("id") else None,
        )

    if provider == IntegrationProvider.SLACK:
        data = await _post_form(
            SLACK_TOKEN_URL,
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        access_token = data.get("access_token")
        if not data.get("ok", True) or not access_token:
            raise OAuthError(data.get("error") or "Failed to obtain access token")
        team = data.get("team") or {}
        return TokenResult(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            user_info=team,
            external_account_id=team.get("id"),
        )

    data = await _post_form(
        GOOGLE_TOKEN_URL,
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        },
    )
    access_token = data.get("access_token")
    if not access_token:
        raise OAuthError("Failed to obtain access token")
    user_info = await _get_json(GOOGLE_USERINFO_URL, access_token)
    return TokenResult(
        access_token=access_token,
        refresh_token=data.get("refresh_token"),
        expires_in=data.get("expires_in"),
        user_info=user_info,
        external_account_id=user_info.get("id"),
    )


async def refresh_access_token(provider: IntegrationProvider, refresh_token: str) -> dict[str, Any]:
    client_id, client_secret = _client_credentials(provider)
    if provider == IntegrationProvider.ZOOM:
        return await _post_form(
            ZOOM_TOKEN_URL,
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            headers={"Authorization": f"Basic {_basic_auth(client_id, client_secret)}"},
        )
    if provider == IntegrationProvider.GOOGLE:
        return await _post_form(
            GOOGLE_TOKEN_URL,
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
    raise OAuthError(f"{provider.value} tokens cannot be refreshed")


# ============================================================================
# Connection CRUD
# ============================================================================


def get_connection(
    db: Session, user_id: UUID, provider: IntegrationProvider
) -> IntegrationConnection | None:
    return (
        db.query(IntegrationConnection)
        .filter(
            IntegrationConnection.user_id == user_id,
            IntegrationConnection.connection_name == provider.value,
        )
        .first()
    )


def list_connections(db: Session, user_id: UUID) -> list[IntegrationConnection]:
    return (
        db.query(IntegrationConnection)
        .filter(IntegrationConnection.user_id == user_id)
        .order_by(IntegrationConnection.created_at)
        .all()
    )


def _credentials_payload(access_token: str, refresh_token: str | None, expires_in: int | None) -> dict:
    lifetime = int(expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS)
    return {
        "access_token": encrypt_token(access_token),
        "refresh_token": encrypt_token(refresh_token) if refresh_token else "",
        "expires_at": (utcnow() + timedelta(seconds=lifetime)).isoformat(),
    }


def save_connection(
    db: Session,
    user_id: UUID,
    provider: IntegrationProvider,
    token: TokenResult,
) -> IntegrationConnection:
    """Insert or update the user's connection for this provider."""
    connection = get_connection(db, user_id, provider)
    credentials = _credentials_payload(token.access_token, token.refresh_token, token.expires_in)
    configuration = {
        "user_info": token.user_info,
        "connected_at": utcnow().isoformat(),
    }

    if connection:
        if not token.refresh_token and connection.credentials.get("refresh_token"):
            credentials["refresh_token"] = connection.credentials["refresh_token"]
        connection.credentials = credentials
        connection.configuration = configuration
        connection.status = ConnectionStatus.ACTIVE.value
        connection.external_account_id = token.external_account_id
        connection.last_error = None
    else:
        connection = IntegrationConnection(
            user_id=user_id,
            connection_name=provider.value,
            status=ConnectionStatus.ACTIVE.value,
            credentials=credentials,
            configuration=configuration,
            external_account_id=token.external_account_id,
        )
        db.add(connection)

    db.commit()
    db.refresh(connection)
    return connection


def token_expires_at(connection: IntegrationConnection) -> datetime | None:
    raw = (connection.credentials or {}).get("expires_at")
    if not raw:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def _mark_error(db: Session, connection: IntegrationConnection, error: str) -> None:
    connection.status = ConnectionStatus.ERROR.value
    connection.last_error = error[:500]
    db.commit()


async def refresh_connection(db: Session, connection: IntegrationConnection) -> bool:
    """Refresh an expiring token. Returns True on success; marks the connection errored otherwise."""
    provider = IntegrationProvider(connection.connection_name)
    refresh_token = decrypt_token((connection.credentials or {}).get("refresh_token"))
    if provider not in REFRESHABLE_PROVIDERS:
        return False
    if not refresh_token:
        _mark_error(db, connection, "No refresh token; reconnect required")
        return False

    try:
        result = await refresh_access_token(provider, refresh_token)
    except (httpx.HTTPError, OAuthError) as exc:
        logger.error("Token refresh failed for %s connection %s: %s", provider.value, connection.id, exc)
        _mark_error(db, connection, f"Token refresh failed: {type(exc).__name__}")
        return False

    access_token = result.get("access_token")
    if not access_token:
        _mark_error(db, connection, "Token refresh returned no access token")
        return False

    connection.credentials = _credentials_payload(
        access_token,
        result.get("refresh_token") or refresh_token,
        result.get("expires_in"),
    )
    connection.status = ConnectionStatus.ACTIVE.value
    connection.last_error = None
    db.commit()
    logger.info("Refreshed %s token for connection %s", provider.value, connection.id)
    return True


async def get_access_token(db: Session, connection: IntegrationConnection) -> str | None:
    """Decrypted access token, refreshed first when expired."""
    expires_at = token_expires_at(connection)
    if expires_at and expires_at <= utcnow():
        if not await refresh_connection(db, connection):
            return None
    return decrypt_token((connection.credentials or {}).get("access_token")) or None


async def refresh_expiring_tokens(db: Session) -> dict:
    """Cron: refresh Zoom/Google tokens expiring within REFRESH_MARGIN."""
    cutoff = utcnow() + REFRESH_MARGIN
    connections = (
        db.query(IntegrationConnection)
        .filter(
            IntegrationConnection.status == ConnectionStatus.ACTIVE.value,
            IntegrationConnection.connection_name.in_([p.value for p in REFRESHABLE_PROVIDERS]),
        )
        .all()
    )
    refreshed = failed = 0
    for connection in connections:
        expires_at = token_expires_at(connection)
        if not expires_at or expires_at > cutoff:
            continue
        if await refresh_connection(db, connection):
            refreshed += 1
        else:
            failed += 1
            _queue_integration_email(
                db,
                connection.user_id,
                connection.connection_name,
                EmailType.INTEGRATION_ERROR,
                connection.last_error,
            )
    return {"checked": len(connections), "refreshed": refreshed, "failed": failed}


def disconnect(db: Session, user_id: UUID, provider: IntegrationProvider) -> bool:
    connection = get_connection(db, user_id, provider)
    if not connection:
        return False
    db.delete(connection)
    db.commit()
    logger.info("Disconnected %s for user %s", provider.value, user_id)
    return True


async def sync_connection(db: Session, connection: IntegrationConnection) -> IntegrationConnection:
    """Manual sync: ensure the token still works and record last_sync_at."""
    access_token = await get_access_token(db, connection)
    if not access_token:
        _mark_error(db, connection, connection.last_error or "Access token unavailable")
        raise OAuthError("Integration needs to be reconnected")

    connection.last_sync_at = utcnow()
    connection.last_error = None
    connection.status = ConnectionStatus.ACTIVE.value
    db.commit()
    db.refresh(connection)
    return connection


# ============================================================================
# Callback orchestration
# ============================================================================


def _queue_integration_email(
    db: Session,
    user_id: UUID,
    provider: str,
    email_type: EmailType,
    error: str | None = None,
) -> None:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return
    queue_email(
        db,
        to_email=user.email,
        email_type=email_type,
        data={"provider": provider, "error": error},
        user_id=user.id,
    )


async def complete_oauth(
    db: Session,
    provider: IntegrationProvider,
    code: str | None,
    state: str | None,
) -> IntegrationConnection:
    """Validate state, exchange the code and store the connection. Raises OAuthError."""
    if not code or not state:
        raise OAuthError("Missing required parameters")

    state_row = consume_oauth_state(db, state, provider)
    user_id = state_row.user_id

    try:
        token = await exchange_code(provider, code)
    except httpx.HTTPError as exc:
        logger.error("%s code exchange failed: %s", provider.value, type(exc).__name__)
        db.delete(state_row)
        db.commit()
        _queue_integration_email(db, user_id, provider.value, EmailType.INTEGRATION_FAILED, "Token exchange failed")
        raise OAuthError("Failed to obtain access token") from exc
    except OAuthError as exc:
        db.delete(state_row)
        db.commit()
        _queue_integration_email(db, user_id, provider.value, EmailType.INTEGRATION_FAILED, str(exc))
        raise

    connection = save_connection(db, user_id, provider, token)
    db.delete(state_row)
    db.commit()
    _queue_integration_email(db, user_id, provider.value, EmailType.INTEGRATION_CONNECTED)
    logger.info("Connected %s for user %s", provider.value, user_id)
    return connection


def render_success_page(provider: str) -> str:
    label = html.escape(provider.title())
    return f"""<html>
  <head>
    <title>Connection Successful</title>
    <style>
      body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; }}
      .success {{ color: #28a745; }}
      .container {{ max-width: 400px; margin: 0 auto; }}
    </style>
  </head>
  <body>
    <div class="container">
      <h1 class="success">Connection Successful</h1>
      <p>Your {label} integration has been connected successfully.</p>
      <p>You can now close this window.</p>
      <script>setTimeout(() => window.close(), 3000);</script>
    </div>
  </body>
</html>"""


def render_failure_page(error: str) -> str:
    return f"""<html>
  <head><title>Connection Failed</title></head>
  <body style="font-family: Arial, sans-serif; text-align: center; padding: 50px;">
    <h1>Connection Failed</h1>
    <p>Error: {html.escape(error)}</p>
    <p>You can close this window and try again.</p>
  </body>
</html>"""
