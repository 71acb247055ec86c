"""Zoom transcript import job handler."""

from __future__ import annotations

import logging

from app.services import zoom_service

logger = logging.getLogger(__name__)


async def process_zoom_transcript_import(db, job) -> None:
    payload = job.payload or {}
    if not payload.get("connection_id") or not payload.get("download_url"):
        raise ValueError("Missing connection_id or download_url in job payload")
    transcript = await zoom_service.import_recording_transcript(db, payload)
    logger.info("Zoom import job %s produced transcript %s", job.id, transcript.id)
