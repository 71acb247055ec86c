"""GDPR router - consent, data export, deletion requests, retention and audit log."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_current_user, get_db, is_admin, require_csrf_header, require_roles
from app.core.rate_limit import AUTH_LIMIT, limiter
from app.db.enums import ExportFormat, GdprEventType, Role
from app.db.models import DataExportRequest, User
from app.schemas.auth import UserSession
from app.schemas.gdpr import (
    AuditLogListResponse,
    ConsentRead,
    ConsentUpdate,
    DeletionCancelByToken,
    DeletionCreate,
    DeletionCreated,
    DeletionRead,
    ExportCreate,
    ExportRead,
    RetentionPolicyRead,
)
from app.services import audit_service, gdpr_service
from app.utils.pagination import PaginationParams, get_pagination, page_response

logger = logging.getLogger(__name__)

router = APIRouter()

EXPORT_MEDIA_TYPES = {
    ExportFormat.JSON.value: "application/json",
    ExportFormat.CSV.value: "text/csv",
    ExportFormat.XML.value: "application/xml",
}


# =============================================================================
# Consent
# =============================================================================

@router.get("/consent", response_model=ConsentRead)
def get_consent(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return gdpr_service.consent_view(gdpr_service.get_consent(db, session.user_id))


@router.put(
    "/consent",
    response_model=ConsentRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_consent(
    data: ConsentUpdate,
    request: Request,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Merge granular consents; withdrawing any consent stamps withdrawal_date."""
    try:
        consent = gdpr_service.update_consent(
            db,
            session.user_id,
            data.consents,
            legal_basis=data.legal_basis,
            request=request,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return gdpr_service.consent_view(consent)


# =============================================================================
# Data export
# =============================================================================

@router.post(
    "/exports",
    response_model=ExportRead,
    status_code=202,
    dependencies=[Depends(require_csrf_header)],
)
def request_export(
    data: ExportCreate,
    request: Request,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Queue an export of the user's data. Poll GET /gdpr/exports for completion."""
    return gdpr_service.create_export_request(
        db, session.user_id, data.format, options=data.options, request=request
    )


@router.get("/exports", response_model=list[ExportRead])
def list_exports(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return gdpr_service.list_export_requests(db, session.user_id)


def _export_response(export: DataExportRequest) -> Response:
    if not gdpr_service.is_export_downloadable(export):
        raise HTTPException(status_code=410, detail="Export is not available for download")
    filename = f"sales-whisperer-export-{export.created_at:%Y%m%d}.{export.format}"
    return Response(
        content=export.export_content,
        media_type=EXPORT_MEDIA_TYPES.get(export.format, "application/octet-stream"),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/exports/download")
@limiter.limit(AUTH_LIMIT)
def download_export_by_token(request: Request, token: str, db: Session = Depends(get_db)):
    """Download link for emails; the token is valid until the export expires."""
    export = gdpr_service.get_export_by_token(db, token)
    if not export:
        raise HTTPException(status_code=404, detail="Export not found")
    return _export_response(export)


@router.get("/exports/{export_id}/download")
def download_export(
    export_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    export = gdpr_service.get_export_request(db, export_id, session.user_id)
    if not export:
        raise HTTPException(status_code=404, detail="Export not found")
    return _export_response(export)


# =============================================================================
# Deletion requests
# =============================================================================

@router.post(
    "/deletion-requests",
    response_model=DeletionCreated,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def request_deletion(
    data: DeletionCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Request deletion of the caller's account and data.

    Without `immediate` the data is kept for a 30-day grace period; the
    recovery token returned here cancels the request until then.
    """
    try:
        created = gdpr_service.create_deletion_request(
            db, user, reason=data.reason, immediate=data.immediate, request=request
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return DeletionCreated(
        **DeletionRead.model_validate(created.request).model_dump(),
        recovery_token=created.recovery_token,
    )


@router.get("/deletion-requests", response_model=list[DeletionRead])
def list_deletion_requests(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Own requests; admins see every request."""
    user_id = None if is_admin(session) else session.user_id
    return gdpr_service.list_deletion_requests(db, user_id=user_id)


@router.post(
    "/deletion-requests/cancel",
    response_model=DeletionRead,
)
@limiter.limit(AUTH_LIMIT)
def cancel_deletion_by_token(
    request: Request,
    data: DeletionCancelByToken,
    db: Session = Depends(get_db),
):
    """Cancel with the recovery token (works without a session)."""
    try:
        deletion = gdpr_service.cancel_deletion_request(
            db, recovery_token=data.recovery_token, request=request
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deletion:
        raise HTTPException(status_code=404, detail="No pending deletion request for this token")
    return deletion


@router.post(
    "/deletion-requests/{request_id}/cancel",
    response_model=DeletionRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_deletion(
    request_id: UUID,
    request: Request,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    try:
        deletion = gdpr_service.cancel_deletion_request(
            db,
            request_id=request_id,
            user_id=None if is_admin(session) else session.user_id,
            request=request,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deletion:
        raise HTTPException(status_code=404, detail="Pending deletion request not found")
    return deletion


# =============================================================================
# Retention and audit
# =============================================================================

@router.get(
    "/retention",
    response_model=list[RetentionPolicyRead],
    dependencies=[Depends(require_roles([Role.ADMIN]))],
)
def retention_summary(db: Session = Depends(get_db)):
    """Record counts per retention policy, bucketed by status."""
    return gdpr_service.get_retention_summary(db)


@router.get("/audit-log", response_model=AuditLogListResponse)
def audit_log(
    event_type: GdprEventType | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Admins see every entry; other users see entries about themselves."""
    items, total = audit_service.list_audit_log(
        db,
        user_id=None if is_admin(session) else session.user_id,
        event_type=event_type,
        limit=pagination.per_page,
        offset=pagination.offset,
    )
    return page_response(items, total, pagination)
