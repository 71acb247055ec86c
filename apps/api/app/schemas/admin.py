"""Admin-only schemas: registration failures, quality review, test email."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.schemas.transcript import QualityFlagRead


class RegistrationFailureRead(BaseModel):
    id: UUID
    user_id: UUID | None
    user_email: str
    error_code: str | None
    error_message: str
    attempted_at: datetime
    alert_sent: bool
    alert_sent_at: datetime | None
    resolved: bool
    resolved_at: datetime | None
    resolution_method: str | None

    model_config = {"from_attributes": True}


class RegistrationFailureListResponse(BaseModel):
    items: list[RegistrationFailureRead]
    total: int
    page: int
    per_page: int


class ResolveFailureRequest(BaseModel):
    resolution_method: str = Field(default="manual", min_length=1, max_length=100)


class QualityFlagListResponse(BaseModel):
    items: list[QualityFlagRead]
    total: int
    page: int
    per_page: int


class TestEmailRequest(BaseModel):
    to: EmailStr
    subject: str = Field(default="Sales Whisperer test email", max_length=200)
    message: str = Field(default="This is a test email from Sales Whisperer.", max_length=5000)
