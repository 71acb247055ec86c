"""User and invite schemas for admin screens."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, field_validator, model_validator

from app.db.enums import Role


class UserRead(BaseModel):
    """Response schema for reading a user."""

    id: UUID
    email: str
    display_name: str
    role: str
    avatar_url: str | None
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    items: list[UserRead]
    total: int
    page: int
    per_page: int


class RoleUpdate(BaseModel):
    role: Role


class UserDeleteRequest(BaseModel):
    """Permanent deletion of one user (`user_id`) or several (`user_ids`)."""

    user_id: UUID | None = None
    user_ids: list[UUID] | None = None

    @model_validator(mode="after")
    def require_target(self):
        if not self.user_id and not self.user_ids:
            raise ValueError("user_id or user_ids is required")
        return self

    def targets(self) -> list[UUID]:
        ids = list(self.user_ids or [])
        if self.user_id and self.user_id not in ids:
            ids.insert(0, self.user_id)
        return ids


class InviteCreate(BaseModel):
    email: EmailStr
    role: Role = Role.SALES_USER

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower()


class InviteRead(BaseModel):
    id: UUID
    email: str
    role: str
    status: Literal["pending", "accepted", "expired"]
    expires_at: datetime | None
    accepted_at: datetime | None
    created_at: datetime
