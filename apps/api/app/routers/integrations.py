"""Integrations router - OAuth connections to Zoom, Slack, GitHub and Google."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_csrf_header
from app.db.enums import IntegrationProvider
from app.db.models import IntegrationConnection
from app.schemas.auth import UserSession
from app.schemas.integration import ConnectionRead, ConnectResponse
from app.services import integration_service
from app.services.integration_service import OAuthError

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_provider(provider: str) -> IntegrationProvider:
    if not IntegrationProvider.has_value(provider):
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider}'")
    return IntegrationProvider(provider)


def _account_label(connection: IntegrationConnection) -> str | None:
    info = (connection.configuration or {}).get("user_info") or {}
    for key in ("email", "login", "team_name", "name"):
        if info.get(key):
            return str(info[key])
    return None


def _to_read(connection: IntegrationConnection) -> ConnectionRead:
    return ConnectionRead(
        id=connection.id,
        provider=connection.connection_name,
        status=connection.status,
        external_account_id=connection.external_account_id,
        account_label=_account_label(connection),
        last_sync_at=connection.last_sync_at,
        sync_frequency_minutes=connection.sync_frequency_minutes,
        last_error=connection.last_error,
        token_expires_at=integration_service.token_expires_at(connection),
        created_at=connection.created_at,
        updated_at=connection.updated_at,
    )


@router.get("", response_model=list[ConnectionRead])
def list_integrations(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """The user's connections. Credentials never leave the server."""
    return [_to_read(c) for c in integration_service.list_connections(db, session.user_id)]


@router.get("/{provider}/connect", response_model=ConnectResponse)
def connect(
    provider: str,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Start the provider's OAuth flow; the client opens authorization_url in a popup."""
    parsed = _parse_provider(provider)
    try:
        url, state = integration_service.get_authorization_url(db, session.user_id, parsed)
    except ValueError as e:
        raise HTTPException(status_code=501, detail=str(e))
    return ConnectResponse(authorization_url=url, state=state)


@router.get("/{provider}/callback", response_class=HTMLResponse)
async def oauth_callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Provider redirect target.

    Not cookie-authenticated: the user is identified by the stored OAuth
    state. Always answers with a small HTML page for the popup window.
    """
    if not IntegrationProvider.has_value(provider):
        return HTMLResponse(integration_service.render_failure_page("Unknown provider"), status_code=400)
    if error:
        return HTMLResponse(integration_service.render_failure_page(error), status_code=400)

    try:
        await integration_service.complete_oauth(db, IntegrationProvider(provider), code, state)
    except OAuthError as e:
        logger.warning("OAuth callback for %s failed: %s", provider, e)
        return HTMLResponse(integration_service.render_failure_page(str(e)), status_code=400)

    return HTMLResponse(integration_service.render_success_page(provider))


@router.delete(
    "/{provider}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def disconnect(
    provider: str,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    parsed = _parse_provider(provider)
    if not integration_service.disconnect(db, session.user_id, parsed):
        raise HTTPException(status_code=404, detail="Integration not connected")


@router.post(
    "/{provider}/sync",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
async def sync(
    provider: str,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Check the stored token (refreshing if needed) and record the sync time."""
    parsed = _parse_provider(provider)
    connection = integration_service.get_connection(db, session.user_id, parsed)
    if not connection:
        raise HTTPException(status_code=404, detail="Integration not connected")
    try:
        connection = await integration_service.sync_connection(db, connection)
    except OAuthError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _to_read(connection)
