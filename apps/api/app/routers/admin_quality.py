"""Admin router - analysis prompts and quality review."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_db, require_csrf_header, require_roles
from app.db.enums import QualityFlagType, Role
from app.schemas.admin import QualityFlagListResponse
from app.schemas.auth import UserSession
from app.schemas.transcript import PromptCreate, PromptRead, QualityFlagRead
from app.services import prompt_service, quality_service
from app.utils.pagination import PaginationParams, get_pagination, page_response

require_admin = require_roles([Role.ADMIN])

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# =============================================================================
# Prompts
# =============================================================================

@router.get("/prompts", response_model=list[PromptRead])
def list_prompts(db: Session = Depends(get_db)):
    return prompt_service.list_prompts(db)


@router.post(
    "/prompts",
    response_model=PromptRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_prompt(
    data: PromptCreate,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Create the next prompt version, optionally activating it."""
    try:
        return prompt_service.create_prompt(
            db,
            name=data.name,
            prompt_text=data.prompt_text,
            ai_provider=data.ai_provider,
            created_by_user_id=session.user_id,
            activate=data.activate,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post(
    "/prompts/{prompt_id}/activate",
    response_model=PromptRead,
    dependencies=[Depends(require_csrf_header)],
)
def activate_prompt(prompt_id: UUID, db: Session = Depends(get_db)):
    """Make this prompt the one used for new analyses."""
    prompt = prompt_service.get_prompt(db, prompt_id)
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return prompt_service.activate_prompt(db, prompt)


# =============================================================================
# Quality flags
# =============================================================================

@router.get("/quality/flags", response_model=QualityFlagListResponse)
def list_quality_flags(
    unresolved_only: bool = True,
    flag_type: QualityFlagType | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    db: Session = Depends(get_db),
):
    items, total = quality_service.list_flags(
        db,
        unresolved_only=unresolved_only,
        flag_type=flag_type,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return page_response(items, total, pagination)


@router.get("/quality/stats")
def quality_stats(
    days: int = Query(7, ge=1, le=90),
    db: Session = Depends(get_db),
):
    """Flag counts per type over the last `days` days."""
    return quality_service.get_quality_stats(db, days=days)


@router.post(
    "/quality/flags/{flag_id}/resolve",
    response_model=QualityFlagRead,
    dependencies=[Depends(require_csrf_header)],
)
def resolve_quality_flag(
    flag_id: UUID,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    flag = quality_service.get_flag(db, flag_id)
    if not flag:
        raise HTTPException(status_code=404, detail="Quality flag not found")
    return quality_service.resolve_flag(db, flag, session.user_id)
