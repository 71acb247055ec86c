"""Transcript analysis job handler."""

from __future__ import annotations

import logging
from uuid import UUID

from app.services import analysis_service

logger = logging.getLogger(__name__)


async def process_transcript_analysis(db, job) -> None:
    """
    Run AI analysis for one transcript.

    An analysis that fails (no prompt, both providers down) leaves the
    transcript in `error` and completes the job; retry is manual.
    """
    transcript_id = (job.payload or {}).get("transcript_id")
    if not transcript_id:
        raise ValueError("Missing transcript_id in job payload")

    result = await analysis_service.run_analysis(db, UUID(transcript_id))
    if result.get("success"):
        logger.info(
            "Analysis %s stored for transcript %s (heat=%s)",
            result.get("analysis_id"),
            transcript_id,
            result.get("heat_level"),
        )
    else:
        logger.warning("Analysis for transcript %s failed: %s", transcript_id, result.get("error"))
