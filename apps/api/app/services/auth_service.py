"""Authentication service - user resolution, invite acceptance, session creation."""

import logging
from dataclasses import dataclass

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.security import create_session_token
from app.db.enums import RegistrationFailureReason, Role
from app.db.models import User, UserInvite
from app.services import registration_monitor_service
from app.services.google_oauth import GoogleUserInfo
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

FAILURE_MESSAGES = {
    RegistrationFailureReason.NOT_INVITED: "No pending invitation for this email",
    RegistrationFailureReason.INVITE_EXPIRED: "Invitation has expired",
    RegistrationFailureReason.INVALID_INVITE_ROLE: "Invitation carries an unknown role",
    RegistrationFailureReason.ACCOUNT_DISABLED: "Account is disabled",
    RegistrationFailureReason.USER_CREATION_FAILED: "User record could not be created",
}


@dataclass
class SignInResult:
    session_token: str | None = None
    error_code: str | None = None
    user: User | None = None


def find_user(db: Session, google_user: GoogleUserInfo) -> User | None:
    """Match by Google subject, then by email for users created before first sign-in."""
    user = db.query(User).filter(User.google_subject == google_user.sub).first()
    if user:
        return user
    return db.query(User).filter(func.lower(User.email) == google_user.email).first()


def get_valid_invite(db: Session, email: str) -> UserInvite | None:
    """Pending (not accepted) invite that has not expired."""
    return (
        db.query(UserInvite)
        .filter(
            func.lower(UserInvite.email) == email.lower(),
            UserInvite.accepted_at.is_(None),
            or_(UserInvite.expires_at.is_(None), UserInvite.expires_at > utcnow()),
        )
        .order_by(UserInvite.created_at.desc())
        .first()
    )


def get_expired_invite(db: Session, email: str) -> UserInvite | None:
    return (
        db.query(UserInvite)
        .filter(
            func.lower(UserInvite.email) == email.lower(),
            UserInvite.accepted_at.is_(None),
            UserInvite.expires_at.isnot(None),
            UserInvite.expires_at <= utcnow(),
        )
        .first()
    )


def create_user_from_invite(db: Session, invite: UserInvite, google_user: GoogleUserInfo) -> User:
    """Create the user with the invite's role and mark the invite accepted."""
    user = User(
        email=google_user.email,
        display_name=google_user.name or google_user.email.split("@")[0],
        role=invite.role,
        google_subject=google_user.sub,
        avatar_url=google_user.picture,
        last_login_at=utcnow(),
    )
    db.add(user)
    invite.accepted_at = utcnow()
    db.commit()
    db.refresh(user)
    return user


def _fail(
    db: Session,
    google_user: GoogleUserInfo,
    reason: RegistrationFailureReason,
    user: User | None = None,
) -> SignInResult:
    registration_monitor_service.record_failure(
        db,
        email=google_user.email,
        reason=reason,
        message=FAILURE_MESSAGES[reason],
        user_id=user.id if user else None,
    )
    return SignInResult(error_code=reason.value)


def resolve_user_and_create_session(db: Session, google_user: GoogleUserInfo) -> SignInResult:
    """
    Find or create the user for a verified Google identity.

    Existing active users get a session. New users need a valid invite.
    Every refusal is recorded as a registration failure.
    """
    user = find_user(db, google_user)

    if user:
        if not user.is_active:
            return _fail(db, google_user, RegistrationFailureReason.ACCOUNT_DISABLED, user)
        if not user.google_subject:
            user.google_subject = google_user.sub
        user.last_login_at = utcnow()
        db.commit()
        token = create_session_token(user.id, user.role, user.token_version)
        return SignInResult(session_token=token, user=user)

    invite = get_valid_invite(db, google_user.email)
    if not invite:
        if get_expired_invite(db, google_user.email):
            return _fail(db, google_user, RegistrationFailureReason.INVITE_EXPIRED)
        return _fail(db, google_user, RegistrationFailureReason.NOT_INVITED)

    if not Role.has_value(invite.role):
        return _fail(db, google_user, RegistrationFailureReason.INVALID_INVITE_ROLE)

    try:
        user = create_user_from_invite(db, invite, google_user)
    except IntegrityError:
        db.rollback()
        logger.exception("User creation from invite %s failed", invite.id)
        return _fail(db, google_user, RegistrationFailureReason.USER_CREATION_FAILED)

    token = create_session_token(user.id, user.role, user.token_version)
    return SignInResult(session_token=token, user=user)
