"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    User roles.

    - SALES_USER: Uploads transcripts, manages own accounts and integrations
    - ADMIN: Manages users, prompts, quality review and GDPR requests
    """

    SALES_USER = "sales_user"
    ADMIN = "admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class RegistrationFailureReason(str, Enum):
    """Why a sign-in could not create or resolve a user."""

    NOT_INVITED = "not_invited"
    INVITE_EXPIRED = "invite_expired"
    INVALID_INVITE_ROLE = "invalid_invite_role"
    ACCOUNT_DISABLED = "account_disabled"
    USER_CREATION_FAILED = "user_creation_failed"
