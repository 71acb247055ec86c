"""User service - profile updates, roles and session revocation."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import Role
from app.db.models import User


def get_user_by_id(db: Session, user_id: UUID) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def list_users(
    db: Session,
    *,
    include_inactive: bool = True,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[User], int]:
    query = db.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    total = query.count()
    users = query.order_by(User.created_at.desc()).offset(offset).limit(limit).all()
    return users, total


def disable_user(db: Session, user_id: UUID) -> User | None:
    """
    Disable a user account.

    Also revokes all sessions by bumping token_version.
    """
    user = get_user_by_id(db, user_id)
    if not user:
        return None
    user.is_active = False
    user.token_version += 1
    db.commit()
    db.refresh(user)
    return user


def enable_user(db: Session, user_id: UUID) -> User | None:
    user = get_user_by_id(db, user_id)
    if not user:
        return None
    user.is_active = True
    db.commit()
    db.refresh(user)
    return user


def change_role(db: Session, user_id: UUID, role: Role) -> User | None:
    """Set a user's role; existing sessions are revoked so the new role applies at once."""
    user = get_user_by_id(db, user_id)
    if not user:
        return None
    if user.role != role.value:
        user.role = role.value
        user.token_version += 1
        db.commit()
        db.refresh(user)
    return user


def update_user_profile(
    db: Session,
    user_id: UUID,
    display_name: str | None = None,
) -> User | None:
    user = get_user_by_id(db, user_id)
    if not user:
        return None
    if display_name is not None:
        user.display_name = display_name.strip()
    db.commit()
    db.refresh(user)
    return user
