"""Zapier router - API keys, webhook subscriptions and connection status.

Two audiences:
- the signed-in rep managing keys and hooks (session cookie + CSRF header)
- Zapier itself calling back with `X-API-Key` (auth test, REST hooks, samples,
  analysis lookups)
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_csrf_header
from app.core.rate_limit import WEBHOOK_LIMIT, limiter
from app.db.enums import ZapierScope, ZapierTriggerType
from app.schemas.auth import UserSession
from app.schemas.zapier import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyRead,
    ApiKeyValidation,
    RestHookSubscribe,
    VerificationRead,
    VerifyRequest,
    WebhookLogRead,
    WebhookRead,
    WebhookSubscribe,
    WebhookSubscribed,
    WebhookTestResult,
    ZapierStatusRead,
)
from app.services import (
    analysis_service,
    zapier_key_service,
    zapier_status_service,
    zapier_webhook_service,
)
from app.services.zapier_key_service import ApiKeyError, ValidatedKey

logger = logging.getLogger(__name__)

router = APIRouter(tags=["zapier"])


def get_api_key_context(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    db: Session = Depends(get_db),
) -> ValidatedKey:
    """Authenticate Zapier's callbacks by API key (401 invalid, 429 over limit)."""
    try:
        return zapier_key_service.validate_api_key(db, x_api_key)
    except ApiKeyError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


def _require_scope(key: ValidatedKey, scope: ZapierScope) -> None:
    if scope.value not in key.scopes:
        raise HTTPException(status_code=403, detail=f"API key lacks {scope.value} scope")


# =============================================================================
# API keys
# =============================================================================

@router.post(
    "/keys",
    response_model=ApiKeyCreated,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_api_key(
    data: ApiKeyCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Create an API key. The plain key is only returned here."""
    try:
        key, plain_key = zapier_key_service.create_api_key(
            db, session.user_id, data.key_name, scopes=data.scopes
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ApiKeyCreated(**ApiKeyRead.model_validate(key).model_dump(), api_key=plain_key)


@router.get("/keys", response_model=list[ApiKeyRead])
def list_api_keys(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return zapier_key_service.list_api_keys(db, session.user_id)


@router.delete(
    "/keys/{key_id}",
    response_model=ApiKeyRead,
    dependencies=[Depends(require_csrf_header)],
)
def revoke_api_key(
    key_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Revoke a key; its webhooks stop firing."""
    key = zapier_key_service.revoke_api_key(db, key_id, session.user_id)
    if not key:
        raise HTTPException(status_code=404, detail="API key not found or already revoked")
    return key


@router.post("/auth/validate", response_model=ApiKeyValidation)
@limiter.limit(WEBHOOK_LIMIT)
def validate_api_key(
    request: Request,
    key: ValidatedKey = Depends(get_api_key_context),
):
    """Zapier's "test authentication" call."""
    return ApiKeyValidation(
        user_id=key.user_id,
        api_key_id=key.api_key_id,
        scopes=key.scopes,
        expires_at=key.expires_at,
    )


# =============================================================================
# Webhooks managed from the app
# =============================================================================

def _get_owned_webhook(db: Session, webhook_id: UUID, user_id: UUID):
    webhook = zapier_webhook_service.get_webhook(db, webhook_id, user_id)
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


@router.post(
    "/webhooks",
    response_model=WebhookSubscribed,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def subscribe_webhook(
    data: WebhookSubscribe,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    try:
        return zapier_webhook_service.subscribe(
            db,
            session.user_id,
            api_key_id=data.api_key_id,
            webhook_url=data.webhook_url,
            trigger_type=data.trigger_type,
            secret_token=data.secret_token,
            filters=data.filters,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/webhooks", response_model=list[WebhookRead])
def list_webhooks(
    active_only: bool = False,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return zapier_webhook_service.list_webhooks(db, session.user_id, active_only=active_only)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def unsubscribe_webhook(
    webhook_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    webhook = _get_owned_webhook(db, webhook_id, session.user_id)
    zapier_webhook_service.unsubscribe(db, webhook)


@router.post(
    "/webhooks/{webhook_id}/test",
    response_model=WebhookTestResult,
    dependencies=[Depends(require_csrf_header)],
)
async def test_webhook(
    webhook_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Send a single `test: true` delivery and report the outcome."""
    webhook = _get_owned_webhook(db, webhook_id, session.user_id)
    return await zapier_webhook_service.send_test_event(db, webhook)


@router.get("/webhooks/{webhook_id}/logs", response_model=list[WebhookLogRead])
def list_webhook_logs(
    webhook_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    webhook = _get_owned_webhook(db, webhook_id, session.user_id)
    return zapier_webhook_service.list_delivery_logs(db, webhook)


# =============================================================================
# REST hooks called by Zapier
# =============================================================================

@router.post("/hooks", response_model=WebhookSubscribed, status_code=201)
@limiter.limit(WEBHOOK_LIMIT)
def rest_hook_subscribe(
    request: Request,
    data: RestHookSubscribe,
    key: ValidatedKey = Depends(get_api_key_context),
    db: Session = Depends(get_db),
):
    """Zapier subscribes a hook when a Zap using one of our triggers is turned on."""
    try:
        return zapier_webhook_service.subscribe(
            db,
            key.user_id,
            api_key_id=key.api_key_id,
            webhook_url=data.hookUrl,
            trigger_type=data.trigger_type,
            filters=data.filters,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/hooks/{webhook_id}", status_code=204)
@limiter.limit(WEBHOOK_LIMIT)
def rest_hook_unsubscribe(
    request: Request,
    webhook_id: UUID,
    key: ValidatedKey = Depends(get_api_key_context),
    db: Session = Depends(get_db),
):
    webhook = _get_owned_webhook(db, webhook_id, key.user_id)
    zapier_webhook_service.unsubscribe(db, webhook)


@router.get("/hooks/sample/{trigger_type}")
@limiter.limit(WEBHOOK_LIMIT)
def rest_hook_sample(
    request: Request,
    trigger_type: ZapierTriggerType,
    key: ValidatedKey = Depends(get_api_key_context),
) -> list[dict]:
    """Sample events shown while a Zap's trigger is being configured."""
    _require_scope(key, ZapierScope.READ_ANALYSIS)
    return zapier_webhook_service.sample_data(trigger_type)


# =============================================================================
# Analysis lookups called by Zapier
# =============================================================================

@router.get("/analyses/recent")
@limiter.limit(WEBHOOK_LIMIT)
def recent_analyses(
    request: Request,
    limit: int = Query(default=10, ge=1, le=50),
    key: ValidatedKey = Depends(get_api_key_context),
    db: Session = Depends(get_db),
) -> dict:
    """Newest analyses of the key's owner, for Zapier polling triggers."""
    _require_scope(key, ZapierScope.READ_ANALYSIS)
    analyses, _ = analysis_service.list_analyses(db, key.user_id, limit=limit)
    data = [analysis_service.analysis_crm_data(analysis) for analysis in analyses]
    return {"success": True, "data": data, "count": len(data)}


@router.get("/analyses/{analysis_id}")
@limiter.limit(WEBHOOK_LIMIT)
def get_analysis(
    request: Request,
    analysis_id: UUID,
    key: ValidatedKey = Depends(get_api_key_context),
    db: Session = Depends(get_db),
) -> dict:
    _require_scope(key, ZapierScope.READ_ANALYSIS)
    analysis = analysis_service.get_analysis(db, analysis_id, key.user_id)
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return {"success": True, "data": analysis_service.analysis_crm_data(analysis)}


# =============================================================================
# Status
# =============================================================================

@router.get("/status", response_model=ZapierStatusRead)
def get_status(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return zapier_status_service.get_status(db, session.user_id)


@router.post(
    "/status/verify",
    response_model=VerificationRead,
    dependencies=[Depends(require_csrf_header)],
)
def verify_connection(
    data: VerifyRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Run the connection checks against one of the user's keys."""
    api_key = zapier_key_service.get_api_key(db, data.api_key_id, session.user_id)
    if not api_key:
        raise HTTPException(status_code=404, detail="API key not found")
    return zapier_status_service.verify_connection(db, session.user_id, api_key)
