"""Pydantic schemas for API request/response models."""

from app.schemas.auth import MeResponse, UpdateProfileRequest, UserSession
from app.schemas.user import InviteCreate, InviteRead, RoleUpdate, UserRead

__all__ = [
    "InviteCreate",
    "InviteRead",
    "MeResponse",
    "RoleUpdate",
    "UpdateProfileRequest",
    "UserRead",
    "UserSession",
]
