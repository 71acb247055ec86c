"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db
from app.services import gdpr_service, integration_service, registration_monitor_service

logger = logging.getLogger(__name__)


def verify_internal_secret(x_internal_secret: str | None = Header(default=None)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not x_internal_secret or not hmac.compare_digest(x_internal_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


class RegistrationMonitorResponse(BaseModel):
    success: bool
    failures_found: int
    alert_sent: bool


class DeletionSweepResponse(BaseModel):
    queued: int


class RetentionSweepResponse(BaseModel):
    deleted: int


class TokenRefreshResponse(BaseModel):
    checked: int
    refreshed: int
    failed: int


@router.post("/registration-monitor", response_model=RegistrationMonitorResponse)
def registration_monitor(db: Session = Depends(get_db)):
    """
    Email the admin about registration failures from the last 30 minutes.

    Suggested schedule: every 15 minutes.
    """
    return registration_monitor_service.run_monitor(db)


@router.post("/process-deletions", response_model=DeletionSweepResponse)
def process_deletions(db: Session = Depends(get_db)):
    """Queue account deletions whose grace period has ended. Suggested: hourly."""
    return gdpr_service.process_due_deletions(db)


@router.post("/retention-sweep", response_model=RetentionSweepResponse)
def retention_sweep(db: Session = Depends(get_db)):
    """Delete transcripts past their retention period. Suggested: daily."""
    result = gdpr_service.apply_transcript_retention(db)
    if result["deleted"]:
        logger.info("Retention sweep deleted %s transcripts", result["deleted"])
    return result


@router.post("/refresh-tokens", response_model=TokenRefreshResponse)
async def refresh_tokens(db: Session = Depends(get_db)):
    """Refresh Zoom/Google tokens about to expire. Suggested: every 5 minutes."""
    return await integration_service.refresh_expiring_tokens(db)
