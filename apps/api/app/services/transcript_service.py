"""Transcript service - create, list and re-run analysis for call transcripts."""

import logging
import re
from datetime import datetime
from pathlib import PurePath
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import JobType, TranscriptSource, TranscriptStatus, ZapierTriggerType
from app.db.models import Account, ConversationAnalysis, Transcript
from app.services import job_service
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
DEFAULT_PARTICIPANTS = ["Speaker 1", "Speaker 2"]
FULL_NAME_SPEAKER_RE = re.compile(r"^([A-Z][a-z]+ [A-Z][a-z]+):", re.MULTILINE)
FIRST_NAME_SPEAKER_RE = re.compile(r"^([A-Z][a-z]+):", re.MULTILINE)


def extract_participants(text: str) -> list[str]:
    """Speaker names from `First Last:` / `Name:` line prefixes, first-seen order."""
    names: list[str] = []
    for pattern in (FULL_NAME_SPEAKER_RE, FIRST_NAME_SPEAKER_RE):
        for match in pattern.finditer(text):
            name = match.group(1).strip()
            if name not in names:
                names.append(name)
    return names or list(DEFAULT_PARTICIPANTS)


def estimate_duration(text: str) -> int:
    """Rough meeting length in minutes: one minute per 1,000 characters, 5..120."""
    return max(5, min(120, len(text) // 1000))


def derive_title(custom_title: str | None, file_name: str | None) -> str:
    title = (custom_title or "").strip()
    if not title and file_name:
        title = PurePath(file_name).stem.strip()
    if not title:
        title = f"Call transcript {utcnow().strftime('%Y-%m-%d %H:%M')}"
    return title[:MAX_TITLE_LENGTH]


def get_account_for_user(db: Session, account_id: UUID, user_id: UUID) -> Account | None:
    return (
        db.query(Account)
        .filter(Account.id == account_id, Account.user_id == user_id)
        .first()
    )


def create_transcript(
    db: Session,
    user_id: UUID,
    raw_text: str,
    *,
    title: str | None = None,
    file_name: str | None = None,
    account_id: UUID | None = None,
    participants: list[str] | None = None,
    duration_minutes: int | None = None,
    meeting_date: datetime | None = None,
    source: TranscriptSource = TranscriptSource.UPLOAD,
    external_id: str | None = None,
) -> Transcript:
    """
    Insert a transcript in `uploaded` status and queue its analysis.

    Raises ValueError if account_id does not belong to the user.
    """
    if account_id and not get_account_for_user(db, account_id, user_id):
        raise ValueError("Account not found")

    transcript = Transcript(
        user_id=user_id,
        account_id=account_id,
        title=derive_title(title, file_name),
        participants=participants or extract_participants(raw_text),
        meeting_date=meeting_date or utcnow(),
        duration_minutes=duration_minutes or estimate_duration(raw_text),
        raw_text=raw_text,
        source=source.value,
        external_id=external_id,
        status=TranscriptStatus.UPLOADED.value,
    )
    db.add(transcript)
    db.flush()

    enqueue_analysis(db, transcript, commit=False)
    db.commit()
    db.refresh(transcript)

    logger.info(
        "Transcript created id=%s source=%s chars=%s",
        transcript.id,
        transcript.source,
        len(raw_text),
    )

    from app.services import zapier_webhook_service

    zapier_webhook_service.trigger_event(
        db,
        user_id=user_id,
        trigger_type=ZapierTriggerType.TRANSCRIPT_UPLOADED,
        data=transcript_event_data(transcript),
    )
    return transcript


def enqueue_analysis(db: Session, transcript: Transcript, commit: bool = True):
    return job_service.schedule_job(
        db,
        user_id=transcript.user_id,
        job_type=JobType.TRANSCRIPT_ANALYSIS,
        payload={"transcript_id": str(transcript.id)},
        max_attempts=1,
        commit=commit,
    )


def transcript_event_data(transcript: Transcript) -> dict:
    return {
        "transcript_id": str(transcript.id),
        "title": transcript.title,
        "account_id": str(transcript.account_id) if transcript.account_id else None,
        "participants": transcript.participants,
        "duration_minutes": transcript.duration_minutes,
        "source": transcript.source,
        "created_at": transcript.created_at.isoformat() if transcript.created_at else None,
    }


def get_transcript(db: Session, transcript_id: UUID, user_id: UUID) -> Transcript | None:
    return (
        db.query(Transcript)
        .filter(Transcript.id == transcript_id, Transcript.user_id == user_id)
        .first()
    )


def list_transcripts(
    db: Session,
    user_id: UUID,
    *,
    account_id: UUID | None = None,
    status: TranscriptStatus | None = None,
    archived: bool = False,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Transcript], int]:
    query = db.query(Transcript).filter(
        Transcript.user_id == user_id,
        Transcript.is_archived.is_(archived),
    )
    if account_id:
        query = query.filter(Transcript.account_id == account_id)
    if status:
        query = query.filter(Transcript.status == status.value)
    total = query.count()
    items = (
        query.order_by(Transcript.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def latest_analysis(db: Session, transcript_id: UUID) -> ConversationAnalysis | None:
    return (
        db.query(ConversationAnalysis)
        .filter(ConversationAnalysis.transcript_id == transcript_id)
        .order_by(ConversationAnalysis.created_at.desc())
        .first()
    )


def get_status(db: Session, transcript: Transcript) -> dict:
    """Payload for the client's polling loop."""
    analysis = latest_analysis(db, transcript.id)
    return {
        "transcript_id": transcript.id,
        "status": transcript.status,
        "error_message": transcript.error_message,
        "processed_at": transcript.processed_at,
        "analysis_id": analysis.id if analysis else None,
        "heat_level": analysis.heat_level if analysis else None,
    }


def reanalyze(db: Session, transcript: Transcript) -> Transcript:
    """
    Reset an errored or completed transcript and queue a fresh analysis.

    Raises ValueError while an analysis is already in progress.
    """
    if transcript.status == TranscriptStatus.PROCESSING.value:
        raise ValueError("Analysis already in progress")

    transcript.status = TranscriptStatus.UPLOADED.value
    transcript.error_message = None
    enqueue_analysis(db, transcript, commit=False)
    db.commit()
    db.refresh(transcript)
    return transcript


def delete_transcript(db: Session, transcript: Transcript) -> None:
    db.delete(transcript)
    db.commit()


def set_archived(db: Session, transcript: Transcript, archived: bool, user_id: UUID) -> Transcript:
    """Archive or restore a transcript; archived_by records who archived it."""
    transcript.is_archived = archived
    transcript.archived_at = utcnow() if archived else None
    transcript.archived_by = user_id if archived else None
    db.commit()
    db.refresh(transcript)
    logger.info(
        "Transcript %s %s by user %s",
        transcript.id,
        "archived" if archived else "unarchived",
        user_id,
    )
    return transcript
