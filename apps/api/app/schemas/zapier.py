"""Zapier API key, webhook and status schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import ZapierTriggerType


class ApiKeyCreate(BaseModel):
    key_name: str = Field(..., min_length=1, max_length=100)
    scopes: list[str] | None = None


class ApiKeyRead(BaseModel):
    id: UUID
    key_name: str
    key_prefix: str
    scopes: list[str]
    is_active: bool
    expires_at: datetime | None
    rate_limit_per_hour: int
    usage_count: int
    last_used: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApiKeyCreated(ApiKeyRead):
    """Only response that ever carries the plain key."""

    api_key: str


class ApiKeyValidation(BaseModel):
    valid: bool = True
    user_id: UUID
    api_key_id: UUID
    scopes: list[str]
    expires_at: datetime | None


class WebhookSubscribe(BaseModel):
    webhook_url: str = Field(..., min_length=1, max_length=2048)
    trigger_type: ZapierTriggerType
    api_key_id: UUID
    secret_token: str | None = Field(default=None, max_length=255)
    filters: dict | None = None


class RestHookSubscribe(BaseModel):
    """Zapier's own subscribe call; the API key comes from X-API-Key."""

    hookUrl: str = Field(..., min_length=1, max_length=2048)
    trigger_type: ZapierTriggerType
    filters: dict | None = None


class WebhookRead(BaseModel):
    id: UUID
    api_key_id: UUID
    webhook_url: str
    trigger_type: str
    filters: dict
    is_active: bool
    success_count: int
    failure_count: int
    last_triggered: datetime | None
    last_error: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookSubscribed(WebhookRead):
    secret_token: str


class WebhookLogRead(BaseModel):
    id: UUID
    delivery_id: str
    trigger_type: str
    delivery_status: str
    attempt: int
    http_status_code: int | None
    response_body: str | None
    error_message: str | None
    created_at: datetime
    delivered_at: datetime | None

    model_config = {"from_attributes": True}


class WebhookTestResult(BaseModel):
    success: bool
    webhook_id: UUID
    status_code: int | None = None
    error: str | None = None


class VerificationRead(BaseModel):
    id: UUID
    success: bool
    test_results: dict
    created_at: datetime

    model_config = {"from_attributes": True}


class ZapierStatusRead(BaseModel):
    status: str
    text: str
    success_rate: int
    active_api_keys: int
    active_webhooks: int
    is_setup_complete: bool
    last_verified_at: datetime | None
    verifications: list[VerificationRead]


class VerifyRequest(BaseModel):
    api_key_id: UUID
