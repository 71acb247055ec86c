"""Invitation management - invite-only onboarding."""

from datetime import timedelta
from typing import Literal
import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import Role
from app.db.models import User, UserInvite
from app.services.email_service import EmailType, queue_email
from app.utils.time import ensure_utc, utcnow


MAX_PENDING_INVITES = 50


def get_invite_status(invite: UserInvite) -> Literal["pending", "accepted", "expired"]:
    if invite.accepted_at:
        return "accepted"
    expires_at = ensure_utc(invite.expires_at)
    if expires_at and expires_at < utcnow():
        return "expired"
    return "pending"


def list_invites(db: Session) -> list[UserInvite]:
    """All invites, newest first (accepted ones kept for history)."""
    return db.query(UserInvite).order_by(UserInvite.created_at.desc()).limit(100).all()


def count_pending_invites(db: Session) -> int:
    return (
        db.query(func.count(UserInvite.id))
        .filter(UserInvite.accepted_at.is_(None), UserInvite.expires_at > utcnow())
        .scalar()
        or 0
    )


def create_invite(
    db: Session,
    email: str,
    role: Role,
    invited_by: User,
) -> UserInvite:
    """Create an invitation and queue the invite email."""
    email = email.lower().strip()

    if count_pending_invites(db) >= MAX_PENDING_INVITES:
        raise ValueError(f"Maximum of {MAX_PENDING_INVITES} pending invites reached")
    if db.query(User).filter(func.lower(User.email) == email).first():
        raise ValueError("A user with this email already exists")

    pending = (
        db.query(UserInvite)
        .filter(func.lower(UserInvite.email) == email, UserInvite.accepted_at.is_(None))
        .all()
    )
    if any(get_invite_status(invite) == "pending" for invite in pending):
        raise ValueError("A pending invite already exists for this email")

    invite = UserInvite(
        email=email,
        role=role.value,
        invited_by_user_id=invited_by.id,
        expires_at=utcnow() + timedelta(days=settings.INVITE_EXPIRES_DAYS),
    )
    db.add(invite)
    db.flush()

    queue_email(
        db,
        to_email=email,
        email_type=EmailType.INVITE,
        data={
            "inviter_name": invited_by.display_name,
            "role": role.value,
            "invite_url": f"{settings.FRONTEND_URL.rstrip('/')}/login",
            "expires_days": settings.INVITE_EXPIRES_DAYS,
        },
        user_id=invited_by.id,
        commit=False,
    )
    db.commit()
    db.refresh(invite)
    return invite


def get_invite(db: Session, invite_id: uuid.UUID) -> UserInvite | None:
    return db.query(UserInvite).filter(UserInvite.id == invite_id).first()


def revoke_invite(db: Session, invite: UserInvite) -> None:
    """Delete a pending invitation."""
    if invite.accepted_at:
        raise ValueError("Cannot revoke an accepted invite")
    db.delete(invite)
    db.commit()
