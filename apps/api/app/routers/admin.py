"""Admin router - users, invites, registration failures and test email."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.deps import get_db, require_csrf_header, require_roles
from app.db.enums import Role
from app.db.models import User, UserInvite
from app.schemas.admin import (
    RegistrationFailureListResponse,
    RegistrationFailureRead,
    ResolveFailureRequest,
    TestEmailRequest,
)
from app.schemas.auth import UserSession
from app.schemas.user import (
    InviteCreate,
    InviteRead,
    RoleUpdate,
    UserDeleteRequest,
    UserListResponse,
    UserRead,
)
from app.services import (
    email_service,
    invite_service,
    registration_monitor_service,
    user_deletion_service,
    user_service,
)
from app.utils.pagination import PaginationParams, get_pagination, page_response

logger = logging.getLogger(__name__)

require_admin = require_roles([Role.ADMIN])

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class UserDeleteResponse(BaseModel):
    deleted: dict[str, dict[str, int]]


# =============================================================================
# Users
# =============================================================================

@router.get("/users", response_model=UserListResponse)
def list_users(
    include_inactive: bool = True,
    pagination: PaginationParams = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    users, total = user_service.list_users(
        db,
        include_inactive=include_inactive,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return page_response(users, total, pagination)


def _guard_self(session: UserSession, user_id: UUID, action: str) -> None:
    if session.user_id == user_id:
        raise HTTPException(status_code=409, detail=f"You cannot {action} your own account")


@router.patch(
    "/users/{user_id}/role",
    response_model=UserRead,
    dependencies=[Depends(require_csrf_header)],
)
def change_role(
    user_id: UUID,
    data: RoleUpdate,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Change a user's role. Their sessions are revoked so the role applies at once."""
    _guard_self(session, user_id, "change the role of")
    user = user_service.change_role(db, user_id, data.role)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s role set to %s by %s", user_id, data.role.value, session.user_id)
    return user


@router.post(
    "/users/{user_id}/deactivate",
    response_model=UserRead,
    dependencies=[Depends(require_csrf_header)],
)
def deactivate_user(
    user_id: UUID,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    _guard_self(session, user_id, "deactivate")
    user = user_service.disable_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post(
    "/users/{user_id}/enable",
    response_model=UserRead,
    dependencies=[Depends(require_csrf_header)],
)
def enable_user(user_id: UUID, db: Session = Depends(get_db)):
    user = user_service.enable_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post(
    "/users/delete",
    response_model=UserDeleteResponse,
    dependencies=[Depends(require_csrf_header)],
)
def delete_users(
    data: UserDeleteRequest,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Permanently delete one user (`user_id`) or several (`user_ids`) with
    their analyses, transcripts, accounts, consent, integrations and Zapier data.
    """
    targets = data.targets()
    if session.user_id in targets:
        raise HTTPException(status_code=409, detail="You cannot delete your own account")
    found = {row.id for row in db.query(User.id).filter(User.id.in_(targets)).all()}
    missing = [str(t) for t in targets if t not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"Users not found: {', '.join(missing)}")

    deleted = user_deletion_service.delete_users(db, targets)
    logger.info("Admin %s permanently deleted %s users", session.user_id, len(deleted))
    return UserDeleteResponse(deleted=deleted)


# =============================================================================
# Invites
# =============================================================================

def _invite_read(invite: UserInvite) -> InviteRead:
    return InviteRead(
        id=invite.id,
        email=invite.email,
        role=invite.role,
        status=invite_service.get_invite_status(invite),
        expires_at=invite.expires_at,
        accepted_at=invite.accepted_at,
        created_at=invite.created_at,
    )


@router.get("/invites", response_model=list[InviteRead])
def list_invites(db: Session = Depends(get_db)):
    return [_invite_read(i) for i in invite_service.list_invites(db)]


@router.post(
    "/invites",
    response_model=InviteRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_invite(
    data: InviteCreate,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Invite a user by email; the invite email is queued."""
    inviter = user_service.get_user_by_id(db, session.user_id)
    try:
        invite = invite_service.create_invite(db, data.email, data.role, inviter)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _invite_read(invite)


@router.delete(
    "/invites/{invite_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def revoke_invite(invite_id: UUID, db: Session = Depends(get_db)):
    invite = invite_service.get_invite(db, invite_id)
    if not invite:
        raise HTTPException(status_code=404, detail="Invite not found")
    try:
        invite_service.revoke_invite(db, invite)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# Registration failures
# =============================================================================

@router.get("/registration-failures", response_model=RegistrationFailureListResponse)
def list_registration_failures(
    unresolved_only: bool = False,
    pagination: PaginationParams = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    items, total = registration_monitor_service.list_failures(
        db,
        unresolved_only=unresolved_only,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return page_response(items, total, pagination)


@router.post(
    "/registration-failures/{failure_id}/resolve",
    response_model=RegistrationFailureRead,
    dependencies=[Depends(require_csrf_header)],
)
def resolve_registration_failure(
    failure_id: UUID,
    data: ResolveFailureRequest,
    db: Session = Depends(get_db),
):
    failure = registration_monitor_service.resolve_failure(db, failure_id, data.resolution_method)
    if not failure:
        raise HTTPException(status_code=404, detail="Registration failure not found")
    return failure


# =============================================================================
# Email
# =============================================================================

@router.post("/emails/test", dependencies=[Depends(require_csrf_header)])
def send_test_email(data: TestEmailRequest):
    """One-off send through Resend, bypassing the job queue."""
    subject, body = email_service.render_email(
        email_service.EmailType.DEFAULT, {"message": data.message}, data.subject
    )
    try:
        message_id = email_service.send_email(data.to, subject, body)
    except Exception as e:
        logger.exception("Test email failed")
        raise HTTPException(status_code=502, detail=f"Email provider error: {type(e).__name__}")
    return {"success": True, "message_id": message_id, "dry_run": message_id is None}
