"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from app.db.enums import JobType
from app.jobs.handlers import analysis, email, gdpr, zapier, zoom

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.TRANSCRIPT_ANALYSIS.value: analysis.process_transcript_analysis,
    JobType.ZAPIER_WEBHOOK_DELIVERY.value: zapier.process_zapier_webhook_delivery,
    JobType.SEND_EMAIL.value: email.process_send_email,
    JobType.DATA_EXPORT.value: gdpr.process_data_export,
    JobType.ACCOUNT_DELETION.value: gdpr.process_account_deletion,
    JobType.ZOOM_TRANSCRIPT_IMPORT.value: zoom.process_zoom_transcript_import,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
