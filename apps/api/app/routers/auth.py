"""Authentication router with Google OAuth and session management."""

import logging
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import COOKIE_NAME, get_current_session, get_db, require_csrf_header
from app.core.rate_limit import AUTH_LIMIT, limiter
from app.core.security import (
    create_oauth_state_payload,
    generate_oauth_nonce,
    generate_oauth_state,
    parse_oauth_state_payload,
    verify_oauth_state,
)
from app.db.models import User
from app.schemas.auth import MeResponse, UpdateProfileRequest, UserSession
from app.services import user_service
from app.services.auth_service import resolve_user_and_create_session
from app.services.google_oauth import GOOGLE_AUTH_URL, exchange_code_for_tokens, verify_id_token

logger = logging.getLogger(__name__)

router = APIRouter()

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 300  # 5 minutes


# =============================================================================
# OAuth Endpoints
# =============================================================================

@router.get("/google/login")
@limiter.limit(AUTH_LIMIT)
def google_login(request: Request):
    """
    Initiate Google OAuth flow.

    State and nonce go into a short-lived cookie bound to the user-agent;
    the nonce is checked again inside the ID token.
    """
    if not settings.GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=501, detail="Google sign-in not configured")

    state = generate_oauth_state()
    nonce = generate_oauth_nonce()
    user_agent = request.headers.get("user-agent", "")

    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
        "nonce": nonce,
    }
    response = RedirectResponse(url=f"{GOOGLE_AUTH_URL}?{urlencode(params)}", status_code=302)
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=create_oauth_state_payload(state, nonce, user_agent),
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/auth",
    )
    return response


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Handle Google OAuth callback.

    Existing users get a session; new users need a valid invite. Refusals
    are recorded as registration failures by the auth service and the
    browser lands on /login?error=<code>.
    """
    error_response = RedirectResponse(url=_get_error_redirect("auth_failed"), status_code=302)
    error_response.delete_cookie(OAUTH_STATE_COOKIE, path="/auth")

    if error:
        error_response.headers["location"] = _get_error_redirect(f"google_{error}")
        return error_response

    if not code or not state:
        error_response.headers["location"] = _get_error_redirect("missing_params")
        return error_response

    state_cookie = request.cookies.get(OAUTH_STATE_COOKIE)
    if not state_cookie:
        error_response.headers["location"] = _get_error_redirect("state_expired")
        return error_response

    try:
        stored_payload = parse_oauth_state_payload(state_cookie)
    except ValueError:
        error_response.headers["location"] = _get_error_redirect("invalid_state")
        return error_response

    valid, _ = verify_oauth_state(stored_payload, state, request.headers.get("user-agent", ""))
    if not valid:
        error_response.headers["location"] = _get_error_redirect("state_mismatch")
        return error_response

    try:
        tokens = await exchange_code_for_tokens(code)
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("Google token exchange failed: %s", type(exc).__name__)
        error_response.headers["location"] = _get_error_redirect("token_exchange_failed")
        return error_response

    try:
        google_user = verify_id_token(tokens["id_token"], expected_nonce=stored_payload["nonce"])
    except (KeyError, ValueError):
        error_response.headers["location"] = _get_error_redirect("token_invalid")
        return error_response

    result = resolve_user_and_create_session(db, google_user)
    if result.error_code:
        error_response.headers["location"] = _get_error_redirect(result.error_code)
        return error_response

    success_response = RedirectResponse(url=_get_success_redirect(), status_code=302)
    success_response.delete_cookie(OAUTH_STATE_COOKIE, path="/auth")
    success_response.set_cookie(
        key=COOKIE_NAME,
        value=result.session_token,
        max_age=settings.JWT_EXPIRES_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )
    return success_response


# =============================================================================
# Session Endpoints
# =============================================================================

def _me_response(user: User, session: UserSession) -> MeResponse:
    return MeResponse(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        role=session.role,
        last_login_at=user.last_login_at,
    )


@router.get("/me", response_model=MeResponse)
def get_me(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> MeResponse:
    """Current user profile; used by the frontend to bootstrap auth state."""
    user = user_service.get_user_by_id(db, session.user_id)
    return _me_response(user, session)


@router.patch("/me", response_model=MeResponse, dependencies=[Depends(require_csrf_header)])
def update_me(
    body: UpdateProfileRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> MeResponse:
    user = user_service.update_user_profile(db, session.user_id, display_name=body.display_name)
    return _me_response(user, session)


@router.post("/logout", dependencies=[Depends(require_csrf_header)])
def logout(response: Response):
    """Clear the session cookie."""
    response.delete_cookie(COOKIE_NAME, path="/")
    return {"status": "logged_out"}


# =============================================================================
# Helper Functions
# =============================================================================

def _get_success_redirect() -> str:
    """Safe success redirect URL - fixed path, no user input."""
    return f"{settings.FRONTEND_URL.rstrip('/')}/dashboard"


def _get_error_redirect(error_code: str) -> str:
    """Safe error redirect URL - fixed path with error code."""
    return f"{settings.FRONTEND_URL.rstrip('/')}/login?error={error_code}"
