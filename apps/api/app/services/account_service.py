"""Account service - deals that a rep attaches transcripts to."""

from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.enums import ZapierTriggerType
from app.db.models import Account, ConversationAnalysis, Transcript


def list_accounts(db: Session, user_id: UUID) -> list[dict]:
    """Accounts with transcript counts and the most recent heat level."""
    accounts = (
        db.query(Account)
        .filter(Account.user_id == user_id)
        .order_by(Account.updated_at.desc())
        .all()
    )
    if not accounts:
        return []

    account_ids = [a.id for a in accounts]
    counts = dict(
        db.query(Transcript.account_id, func.count(Transcript.id))
        .filter(Transcript.account_id.in_(account_ids))
        .group_by(Transcript.account_id)
        .all()
    )

    latest_heat: dict[UUID, str | None] = {}
    rows = (
        db.query(Transcript.account_id, ConversationAnalysis.heat_level)
        .join(ConversationAnalysis, ConversationAnalysis.transcript_id == Transcript.id)
        .filter(Transcript.account_id.in_(account_ids))
        .order_by(ConversationAnalysis.created_at.desc())
        .all()
    )
    for account_id, heat_level in rows:
        latest_heat.setdefault(account_id, heat_level)

    return [
        {
            "account": account,
            "transcript_count": counts.get(account.id, 0),
            "latest_heat_level": latest_heat.get(account.id),
        }
        for account in accounts
    ]


def get_account(db: Session, account_id: UUID, user_id: UUID) -> Account | None:
    return (
        db.query(Account)
        .filter(Account.id == account_id, Account.user_id == user_id)
        .first()
    )


def create_account(
    db: Session,
    user_id: UUID,
    name: str,
    deal_stage: str | None = None,
    notes: str | None = None,
) -> Account:
    account = Account(user_id=user_id, name=name.strip(), deal_stage=deal_stage, notes=notes)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def update_account(db: Session, account: Account, **changes) -> Account:
    """Apply non-None changes and fire the account_updated trigger."""
    for field, value in changes.items():
        if value is not None:
            setattr(account, field, value.strip() if field == "name" else value)
    db.commit()
    db.refresh(account)

    from app.services import zapier_webhook_service

    zapier_webhook_service.trigger_event(
        db,
        user_id=account.user_id,
        trigger_type=ZapierTriggerType.ACCOUNT_UPDATED,
        data={
            "account_id": str(account.id),
            "name": account.name,
            "deal_stage": account.deal_stage,
            "updated_at": account.updated_at.isoformat() if account.updated_at else None,
        },
    )
    return account


def delete_account(db: Session, account: Account) -> None:
    """Delete the account; its transcripts are kept and detached."""
    db.query(Transcript).filter(Transcript.account_id == account.id).update(
        {Transcript.account_id: None}, synchronize_session=False
    )
    db.delete(account)
    db.commit()
