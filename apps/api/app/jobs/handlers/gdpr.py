"""GDPR job handlers: data exports and account deletion."""

from __future__ import annotations

import logging
from uuid import UUID

from app.services import gdpr_service

logger = logging.getLogger(__name__)


async def process_data_export(db, job) -> None:
    export_id = (job.payload or {}).get("export_request_id")
    if not export_id:
        raise ValueError("Missing export_request_id in job payload")
    export = gdpr_service.process_export_request(db, UUID(export_id))
    logger.info("Data export %s is %s", export.id, export.status)


async def process_account_deletion(db, job) -> None:
    """Erase a user's data; a failure marks the request failed before re-raising."""
    deletion_id = (job.payload or {}).get("deletion_request_id")
    if not deletion_id:
        raise ValueError("Missing deletion_request_id in job payload")
    try:
        gdpr_service.execute_deletion(db, UUID(deletion_id))
    except Exception as exc:
        db.rollback()
        gdpr_service.mark_deletion_failed(db, UUID(deletion_id), f"{type(exc).__name__}: {exc}")
        raise
