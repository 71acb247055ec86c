"""Transcripts router - upload, paste, polling status, retry and archive."""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_csrf_header
from app.core.rate_limit import UPLOAD_LIMIT, limiter
from app.db.enums import TranscriptSource, TranscriptStatus
from app.schemas.auth import UserSession
from app.schemas.transcript import (
    AnalysisRead,
    TranscriptArchive,
    TranscriptCreate,
    TranscriptDetail,
    TranscriptListResponse,
    TranscriptRead,
    TranscriptStatusRead,
    TranscriptUploadResponse,
)
from app.services import transcript_service
from app.services.transcript_file_service import (
    MAX_FILE_SIZE_BYTES,
    TranscriptFileError,
    extract_transcript,
    normalize_text,
    scan_content,
    validate_transcript_text,
)
from app.utils.file_upload import content_length_exceeds_limit, read_upload_bytes
from app.utils.pagination import PaginationParams, get_pagination, page_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_owned_transcript(db: Session, transcript_id: UUID, session: UserSession):
    transcript = transcript_service.get_transcript(db, transcript_id, session.user_id)
    if not transcript:
        raise HTTPException(status_code=404, detail="Transcript not found")
    return transcript


@router.post(
    "/upload",
    response_model=TranscriptUploadResponse,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(UPLOAD_LIMIT)
async def upload_transcript(
    request: Request,
    file: UploadFile = File(...),
    title: str | None = Form(default=None, max_length=200),
    account_id: UUID | None = Form(default=None),
    duration_minutes: int | None = Form(default=None, gt=0),
    meeting_date: datetime | None = Form(default=None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Upload a .txt, .vtt or .docx transcript (max 10MB).

    The file is signature-checked and content-scanned before it is stored
    with status `uploaded`; analysis is queued immediately. Poll
    /transcripts/{id}/status for progress.
    """
    if content_length_exceeds_limit(
        request.headers.get("content-length"), max_size_bytes=MAX_FILE_SIZE_BYTES
    ):
        raise HTTPException(status_code=413, detail="File size exceeds 10MB limit")

    data = await read_upload_bytes(file, max_size_bytes=MAX_FILE_SIZE_BYTES)
    try:
        extracted = extract_transcript(file.filename, data)
    except TranscriptFileError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    try:
        transcript = transcript_service.create_transcript(
            db,
            session.user_id,
            extracted.text,
            title=title,
            file_name=extracted.filename,
            account_id=account_id,
            duration_minutes=duration_minutes,
            meeting_date=meeting_date,
            source=TranscriptSource.UPLOAD,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return TranscriptUploadResponse(
        transcript=TranscriptRead.model_validate(transcript),
        warnings=extracted.warnings,
    )


@router.post(
    "",
    response_model=TranscriptUploadResponse,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(UPLOAD_LIMIT)
def create_transcript(
    request: Request,
    data: TranscriptCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Create a transcript from pasted text."""
    text = normalize_text(data.raw_text)
    try:
        validate_transcript_text(text)
    except TranscriptFileError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    warnings: list[str] = []
    scan = scan_content(text, "pasted.txt")
    if not scan.safe:
        if scan.has_high_severity:
            raise HTTPException(
                status_code=422, detail="Content contains potentially dangerous patterns"
            )
        warnings.append("Content has suspicious characteristics")

    try:
        transcript = transcript_service.create_transcript(
            db,
            session.user_id,
            text,
            title=data.title,
            account_id=data.account_id,
            participants=data.participants,
            duration_minutes=data.duration_minutes,
            meeting_date=data.meeting_date,
            source=TranscriptSource.PASTE,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return TranscriptUploadResponse(
        transcript=TranscriptRead.model_validate(transcript),
        warnings=warnings,
    )


@router.get("", response_model=TranscriptListResponse)
def list_transcripts(
    account_id: UUID | None = None,
    status: TranscriptStatus | None = None,
    archived: bool = False,
    pagination: PaginationParams = Depends(get_pagination),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = transcript_service.list_transcripts(
        db,
        session.user_id,
        account_id=account_id,
        status=status,
        archived=archived,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return page_response(items, total, pagination)


@router.get("/{transcript_id}", response_model=TranscriptDetail)
def get_transcript(
    transcript_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_owned_transcript(db, transcript_id, session)


@router.get("/{transcript_id}/status", response_model=TranscriptStatusRead)
def get_transcript_status(
    transcript_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Analysis progress for the client's polling loop."""
    transcript = _get_owned_transcript(db, transcript_id, session)
    return transcript_service.get_status(db, transcript)


@router.get("/{transcript_id}/analysis", response_model=AnalysisRead)
def get_transcript_analysis(
    transcript_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    transcript = _get_owned_transcript(db, transcript_id, session)
    analysis = transcript_service.latest_analysis(db, transcript.id)
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return analysis


@router.post(
    "/{transcript_id}/reanalyze",
    response_model=TranscriptRead,
    dependencies=[Depends(require_csrf_header)],
)
def reanalyze_transcript(
    transcript_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Queue a fresh analysis (the Retry button for errored transcripts)."""
    transcript = _get_owned_transcript(db, transcript_id, session)
    try:
        return transcript_service.reanalyze(db, transcript)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/{transcript_id}/archive",
    response_model=TranscriptRead,
    dependencies=[Depends(require_csrf_header)],
)
def archive_transcript(
    transcript_id: UUID,
    data: TranscriptArchive | None = None,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Archive a transcript, or restore it with `{"archived": false}`."""
    transcript = _get_owned_transcript(db, transcript_id, session)
    archived = data.archived if data else True
    return transcript_service.set_archived(db, transcript, archived, session.user_id)


@router.delete(
    "/{transcript_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_transcript(
    transcript_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    transcript = _get_owned_transcript(db, transcript_id, session)
    transcript_service.delete_transcript(db, transcript)
    logger.info("Transcript %s deleted by user %s", transcript_id, session.user_id)
