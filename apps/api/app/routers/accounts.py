"""Accounts router - deals that transcripts are attached to."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_csrf_header
from app.schemas.auth import UserSession
from app.schemas.transcript import AccountCreate, AccountListItem, AccountRead, AccountUpdate
from app.services import account_service

router = APIRouter()


@router.get("", response_model=list[AccountListItem])
def list_accounts(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Accounts with transcript counts and the latest heat level."""
    rows = account_service.list_accounts(db, session.user_id)
    return [
        AccountListItem(
            **AccountRead.model_validate(row["account"]).model_dump(),
            transcript_count=row["transcript_count"],
            latest_heat_level=row["latest_heat_level"],
        )
        for row in rows
    ]


@router.post(
    "",
    response_model=AccountRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_account(
    data: AccountCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return account_service.create_account(
        db, session.user_id, data.name, deal_stage=data.deal_stage, notes=data.notes
    )


@router.get("/{account_id}", response_model=AccountRead)
def get_account(
    account_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    account = account_service.get_account(db, account_id, session.user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.patch(
    "/{account_id}",
    response_model=AccountRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_account(
    account_id: UUID,
    data: AccountUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    account = account_service.get_account(db, account_id, session.user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account_service.update_account(db, account, **data.model_dump(exclude_unset=True))


@router.delete(
    "/{account_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_account(
    account_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Delete an account. Its transcripts are kept and detached."""
    account = account_service.get_account(db, account_id, session.user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    account_service.delete_account(db, account)
