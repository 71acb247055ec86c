"""Analyses router - read access to conversation analyses."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db
from app.db.enums import HeatLevel
from app.schemas.auth import UserSession
from app.schemas.transcript import AnalysisListResponse, AnalysisRead, FollowupEmail
from app.services import analysis_service
from app.utils.pagination import PaginationParams, get_pagination, page_response

router = APIRouter()


@router.get("", response_model=AnalysisListResponse)
def list_analyses(
    heat_level: HeatLevel | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = analysis_service.list_analyses(
        db,
        session.user_id,
        heat_level=heat_level.value if heat_level else None,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return page_response(items, total, pagination)


@router.get("/{analysis_id}", response_model=AnalysisRead)
def get_analysis(
    analysis_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    analysis = analysis_service.get_analysis(db, analysis_id, session.user_id)
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return analysis


@router.get("/{analysis_id}/email", response_model=FollowupEmail)
def get_followup_email(
    analysis_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Follow-up email drafted by the analysis, ready to copy."""
    analysis = analysis_service.get_analysis(db, analysis_id, session.user_id)
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return analysis_service.format_followup_email(analysis)
