"""Tests for sign-in resolution and session endpoints."""

from datetime import timedelta

import pytest

from app.core.config import settings
from app.core.deps import COOKIE_NAME
from app.core.security import create_session_token
from app.db.models import RegistrationFailure, User, UserInvite
from app.services import auth_service
from app.services.google_oauth import GoogleUserInfo
from app.utils.time import utcnow


def _google_user(email="new.rep@example.com", sub="google-sub-1") -> GoogleUserInfo:
    return GoogleUserInfo(sub=sub, email=email, name="New Rep", picture=None)


def _invite(db, email="new.rep@example.com", role="sales_user", expires_at=None) -> UserInvite:
    invite = UserInvite(
        email=email,
        role=role,
        expires_at=expires_at or utcnow() + timedelta(days=7),
    )
    db.add(invite)
    db.commit()
    return invite


def _failure_codes(db) -> list[str]:
    return [f.error_code for f in db.query(RegistrationFailure).all()]


# =============================================================================
# Sign-in resolution
# =============================================================================

def test_invited_user_is_created(db):
    invite = _invite(db, role="admin")

    result = auth_service.resolve_user_and_create_session(db, _google_user())

    assert result.error_code is None
    assert result.session_token
    user = db.query(User).filter(User.email == "new.rep@example.com").one()
    assert user.role == "admin"
    assert user.google_subject == "google-sub-1"
    db.refresh(invite)
    assert invite.accepted_at is not None


def test_existing_user_signs_in_and_links_subject(db, test_user):
    result = auth_service.resolve_user_and_create_session(
        db, _google_user(email=test_user.email, sub="linked-sub")
    )

    assert result.user.id == test_user.id
    db.refresh(test_user)
    assert test_user.google_subject == "linked-sub"
    assert test_user.last_login_at is not None


def test_uninvited_user_is_refused(db):
    result = auth_service.resolve_user_and_create_session(db, _google_user())

    assert result.error_code == "not_invited"
    assert result.session_token is None
    assert db.query(User).count() == 0
    assert _failure_codes(db) == ["not_invited"]


def test_expired_invite_is_refused(db):
    _invite(db, expires_at=utcnow() - timedelta(days=1))

    result = auth_service.resolve_user_and_create_session(db, _google_user())

    assert result.error_code == "invite_expired"
    assert _failure_codes(db) == ["invite_expired"]


def test_invite_with_unknown_role_is_refused(db):
    _invite(db, role="superuser")

    result = auth_service.resolve_user_and_create_session(db, _google_user())

    assert result.error_code == "invalid_invite_role"


def test_disabled_user_is_refused(db, test_user):
    test_user.is_active = False
    db.commit()

    result = auth_service.resolve_user_and_create_session(db, _google_user(email=test_user.email))

    assert result.error_code == "account_disabled"
    failure = db.query(RegistrationFailure).one()
    assert failure.user_id == test_user.id


# =============================================================================
# Endpoints
# =============================================================================

@pytest.mark.asyncio
async def test_google_login_requires_configuration(client, monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "")
    res = await client.get("/auth/google/login")
    assert res.status_code == 501


@pytest.mark.asyncio
async def test_google_login_redirects_with_state_cookie(client, monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "google-client")
    res = await client.get("/auth/google/login")
    assert res.status_code == 302
    assert res.headers["location"].startswith("https://accounts.google.com/")
    assert "oauth_state" in res.headers["set-cookie"]


@pytest.mark.asyncio
async def test_callback_without_state_cookie_redirects_to_login(client):
    res = await client.get("/auth/google/callback", params={"code": "c", "state": "s"})
    assert res.status_code == 302
    assert res.headers["location"].endswith("/login?error=state_expired")


@pytest.mark.asyncio
async def test_callback_provider_error(client):
    res = await client.get("/auth/google/callback", params={"error": "access_denied"})
    assert res.headers["location"].endswith("/login?error=google_access_denied")


@pytest.mark.asyncio
async def test_me(authed_client, test_user):
    res = await authed_client.get("/auth/me")
    assert res.status_code == 200
    data = res.json()
    assert data["user_id"] == str(test_user.id)
    assert data["role"] == "sales_user"
    assert data["display_name"] == "Sam Seller"


@pytest.mark.asyncio
async def test_me_requires_session(client):
    res = await client.get("/auth/me")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_garbage_cookie_is_401(client):
    client.cookies.set(COOKIE_NAME, "not-a-jwt")
    res = await client.get("/auth/me")
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid session"


@pytest.mark.asyncio
async def test_update_profile(authed_client):
    res = await authed_client.patch("/auth/me", json={"display_name": "Samantha Seller"})
    assert res.status_code == 200
    assert res.json()["display_name"] == "Samantha Seller"


@pytest.mark.asyncio
async def test_update_profile_requires_csrf(client, test_auth):
    client.cookies.set(test_auth.cookie_name, test_auth.token)
    res = await client.patch("/auth/me", json={"display_name": "X"})
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_revoked_session_is_401(authed_client, db, test_user):
    test_user.token_version += 1
    db.commit()

    res = await authed_client.get("/auth/me")
    assert res.status_code == 401
    assert res.json()["detail"] == "Session revoked"


@pytest.mark.asyncio
async def test_disabled_account_is_401(authed_client, db, test_user):
    test_user.is_active = False
    db.commit()

    res = await authed_client.get("/auth/me")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role_is_403(client, db, test_user):
    test_user.role = "ghost"
    db.commit()
    client.cookies.set(COOKIE_NAME, create_session_token(test_user.id, test_user.role, test_user.token_version))

    res = await client.get("/auth/me")
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_logout_clears_cookie(authed_client):
    res = await authed_client.post("/auth/logout")
    assert res.status_code == 200
    assert res.json() == {"status": "logged_out"}
    assert COOKIE_NAME in res.headers["set-cookie"]
