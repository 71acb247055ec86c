"""Tests for OAuth integrations (connect, callback, disconnect, sync)."""

from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from app.core.config import settings
from app.core.encryption import decrypt_token
from app.db.enums import ConnectionStatus, IntegrationProvider, JobType
from app.db.models import IntegrationConnection, Job, OAuthState
from app.services import integration_service
from app.services.integration_service import OAuthError, TokenResult
from app.utils.time import utcnow


@pytest.fixture
def zoom_app(monkeypatch):
    monkeypatch.setattr(settings, "ZOOM_CLIENT_ID", "zoom-client")
    monkeypatch.setattr(settings, "ZOOM_CLIENT_SECRET", "zoom-secret")


def _connection(db, user, provider=IntegrationProvider.ZOOM, expires_in=3600, refresh_token="refresh-1"):
    return integration_service.save_connection(
        db,
        user.id,
        provider,
        TokenResult(
            access_token="access-1",
            refresh_token=refresh_token,
            expires_in=expires_in,
            user_info={"email": "rep@zoom.test"},
            external_account_id="zoom-user-1",
        ),
    )


def _email_jobs(db) -> list[Job]:
    return db.query(Job).filter(Job.job_type == JobType.SEND_EMAIL.value).all()


@pytest.mark.asyncio
async def test_connect_returns_authorization_url(authed_client, db, zoom_app):
    res = await authed_client.get("/integrations/zoom/connect")
    assert res.status_code == 200, res.text
    data = res.json()

    url = urlsplit(data["authorization_url"])
    assert url.netloc == "zoom.us"
    params = parse_qs(url.query)
    assert params["client_id"] == ["zoom-client"]
    assert params["state"] == [data["state"]]
    assert params["redirect_uri"][0].endswith("/integrations/zoom/callback")
    assert db.query(OAuthState).count() == 1


@pytest.mark.asyncio
async def test_connect_unconfigured_provider_is_501(authed_client, monkeypatch):
    monkeypatch.setattr(settings, "SLACK_CLIENT_ID", "")
    res = await authed_client.get("/integrations/slack/connect")
    assert res.status_code == 501


@pytest.mark.asyncio
async def test_unknown_provider_is_404(authed_client):
    res = await authed_client.get("/integrations/dropbox/connect")
    assert res.status_code == 404


def test_new_state_replaces_previous(db, test_user):
    first = integration_service.create_oauth_state(db, test_user.id, IntegrationProvider.GITHUB)
    second = integration_service.create_oauth_state(db, test_user.id, IntegrationProvider.GITHUB)

    states = [row.state for row in db.query(OAuthState).all()]
    assert states == [second]
    assert first != second


def test_state_for_other_provider_is_rejected(db, test_user):
    state = integration_service.create_oauth_state(db, test_user.id, IntegrationProvider.GITHUB)
    with pytest.raises(OAuthError, match="does not match"):
        integration_service.consume_oauth_state(db, state, IntegrationProvider.ZOOM)


def test_expired_state_is_rejected(db, test_user):
    state = integration_service.create_oauth_state(db, test_user.id, IntegrationProvider.ZOOM)
    row = db.query(OAuthState).one()
    row.created_at = utcnow() - timedelta(hours=2)
    db.commit()

    with pytest.raises(OAuthError, match="expired"):
        integration_service.consume_oauth_state(db, state, IntegrationProvider.ZOOM)
    assert db.query(OAuthState).count() == 0


@pytest.mark.asyncio
async def test_callback_stores_encrypted_tokens(client, db, test_user, zoom_app, monkeypatch):
    state = integration_service.create_oauth_state(db, test_user.id, IntegrationProvider.ZOOM)

    async def fake_exchange(provider, code):
        assert code == "auth-code"
        return TokenResult(
            access_token="zoom-access",
            refresh_token="zoom-refresh",
            expires_in=3600,
            user_info={"id": "host-1", "email": "rep@zoom.test"},
            external_account_id="host-1",
        )

    monkeypatch.setattr(integration_service, "exchange_code", fake_exchange)

    res = await client.get("/integrations/zoom/callback", params={"code": "auth-code", "state": state})
    assert res.status_code == 200
    assert "Connection Successful" in res.text

    connection = db.query(IntegrationConnection).one()
    assert connection.status == ConnectionStatus.ACTIVE.value
    assert connection.external_account_id == "host-1"
    assert connection.credentials["access_token"] != "zoom-access"
    assert decrypt_token(connection.credentials["access_token"]) == "zoom-access"
    assert db.query(OAuthState).count() == 0

    [email_job] = _email_jobs(db)
    assert email_job.payload["email_type"] == "integration-connected"


@pytest.mark.asyncio
async def test_callback_failures_render_error_page(client, db, test_user, zoom_app, monkeypatch):
    res = await client.get("/integrations/zoom/callback", params={"error": "access_denied"})
    assert res.status_code == 400
    assert "access_denied" in res.text

    res = await client.get("/integrations/zoom/callback", params={"code": "x", "state": "bogus"})
    assert res.status_code == 400
    assert "Invalid OAuth state" in res.text

    state = integration_service.create_oauth_state(db, test_user.id, IntegrationProvider.ZOOM)

    async def failing_exchange(provider, code):
        raise httpx.ConnectError("down")

    monkeypatch.setattr(integration_service, "exchange_code", failing_exchange)
    res = await client.get("/integrations/zoom/callback", params={"code": "x", "state": state})
    assert res.status_code == 400
    assert db.query(IntegrationConnection).count() == 0
    [email_job] = _email_jobs(db)
    assert email_job.payload["email_type"] == "integration-failed"


@pytest.mark.asyncio
async def test_list_hides_credentials(authed_client, db, test_user):
    _connection(db, test_user)

    res = await authed_client.get("/integrations")
    assert res.status_code == 200
    [item] = res.json()
    assert item["provider"] == "zoom"
    assert item["account_label"] == "rep@zoom.test"
    assert "credentials" not in item
    assert "access-1" not in res.text


@pytest.mark.asyncio
async def test_disconnect(authed_client, db, test_user):
    _connection(db, test_user)

    res = await authed_client.delete("/integrations/zoom")
    assert res.status_code == 204
    assert db.query(IntegrationConnection).count() == 0

    res = await authed_client.delete("/integrations/zoom")
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_sync_records_last_sync(authed_client, db, test_user):
    _connection(db, test_user)

    res = await authed_client.post("/integrations/zoom/sync")
    assert res.status_code == 200, res.text
    assert res.json()["last_sync_at"] is not None


@pytest.mark.asyncio
async def test_sync_with_expired_unrefreshable_token_is_409(authed_client, db, test_user):
    connection = _connection(db, test_user, provider=IntegrationProvider.GITHUB, refresh_token=None)
    connection.credentials = {**connection.credentials, "expires_at": (utcnow() - timedelta(minutes=1)).isoformat()}
    db.commit()

    res = await authed_client.post("/integrations/github/sync")
    assert res.status_code == 409
    db.refresh(connection)
    assert connection.status == ConnectionStatus.ERROR.value


@pytest.mark.asyncio
async def test_refresh_expiring_tokens(db, test_user, monkeypatch):
    connection = _connection(db, test_user, expires_in=60)

    async def fake_refresh(provider, refresh_token):
        assert refresh_token == "refresh-1"
        return {"access_token": "access-2", "expires_in": 3600}

    monkeypatch.setattr(integration_service, "refresh_access_token", fake_refresh)

    result = await integration_service.refresh_expiring_tokens(db)

    assert result == {"checked": 1, "refreshed": 1, "failed": 0}
    db.refresh(connection)
    assert decrypt_token(connection.credentials["access_token"]) == "access-2"
    assert decrypt_token(connection.credentials["refresh_token"]) == "refresh-1"


@pytest.mark.asyncio
async def test_failed_refresh_marks_error_and_emails(db, test_user, monkeypatch):
    connection = _connection(db, test_user, expires_in=60)

    async def failing_refresh(provider, refresh_token):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(integration_service, "refresh_access_token", failing_refresh)

    result = await integration_service.refresh_expiring_tokens(db)

    assert result["failed"] == 1
    db.refresh(connection)
    assert connection.status == ConnectionStatus.ERROR.value
    [email_job] = _email_jobs(db)
    assert email_job.payload["email_type"] == "integration-error"


@pytest.mark.asyncio
async def test_missing_refresh_token_errors_once_and_stops_retrying(db, test_user, monkeypatch):
    connection = _connection(db, test_user, expires_in=60, refresh_token=None)

    async def unexpected_refresh(provider, refresh_token):
        raise AssertionError("refresh must not be attempted without a refresh token")

    monkeypatch.setattr(integration_service, "refresh_access_token", unexpected_refresh)

    first = await integration_service.refresh_expiring_tokens(db)
    second = await integration_service.refresh_expiring_tokens(db)

    assert first["failed"] == 1
    assert second == {"checked": 0, "refreshed": 0, "failed": 0}
    db.refresh(connection)
    assert connection.status == ConnectionStatus.ERROR.value
    assert "refresh token" in connection.last_error
    assert len(_email_jobs(db)) == 1
