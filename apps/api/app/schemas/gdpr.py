"""GDPR consent, export, deletion and audit schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import ExportFormat


class ConsentRead(BaseModel):
    granular_consents: dict[str, bool]
    consent_version: str
    legal_basis: str
    consent_date: datetime | None
    withdrawal_date: datetime | None
    renewal_required: bool


class ConsentUpdate(BaseModel):
    consents: dict[str, bool]
    legal_basis: str | None = Field(default=None, max_length=255)


class ExportCreate(BaseModel):
    format: ExportFormat = ExportFormat.JSON
    options: dict | None = None


class ExportRead(BaseModel):
    id: UUID
    format: str
    status: str
    options: dict
    error_message: str | None
    expires_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeletionCreate(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)
    immediate: bool = False


class DeletionRead(BaseModel):
    id: UUID
    user_id: UUID | None
    status: str
    reason: str | None
    immediate_delete: bool
    scheduled_for: datetime
    grace_period_end: datetime
    error_message: str | None
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeletionCreated(DeletionRead):
    """Returned once; the recovery token is not readable afterwards."""

    recovery_token: str


class DeletionCancelByToken(BaseModel):
    recovery_token: str = Field(..., min_length=16, max_length=128)


class AuditLogRead(BaseModel):
    id: UUID
    event_type: str
    user_id: UUID | None
    admin_id: UUID | None
    details: dict
    legal_basis: str | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogListResponse(BaseModel):
    items: list[AuditLogRead]
    total: int
    page: int
    per_page: int


class RetentionPolicyRead(BaseModel):
    data_type: str
    retention_days: int
    description: str
    total: int
    immediate: int
    upcoming: int
    compliant: int
