"""Zoom cloud-recording transcript import.

Triggered by the `recording.transcript_completed` webhook. Downloads the
TRANSCRIPT (VTT) file with the host's OAuth token and stores it as a
transcript with source `zoom`.
"""

import logging
import uuid
from datetime import datetime

import httpx
from sqlalchemy.orm import Session

from app.db.enums import TranscriptSource
from app.db.models import IntegrationConnection, Transcript
from app.services import integration_service, transcript_service
from app.services.http_service import request_with_retries
from app.services.transcript_file_service import normalize_text, validate_transcript_text, vtt_to_text

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 60.0


class ZoomImportError(Exception):
    """Import cannot proceed (missing connection or token)."""


def _parse_start_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def find_existing_import(db: Session, user_id: uuid.UUID, meeting_uuid: str) -> Transcript | None:
    return (
        db.query(Transcript)
        .filter(
            Transcript.user_id == user_id,
            Transcript.source == TranscriptSource.ZOOM.value,
            Transcript.external_id == meeting_uuid,
        )
        .first()
    )


async def download_transcript(
    download_url: str,
    access_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    async with httpx.AsyncClient(
        timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True, transport=transport
    ) as client:
        response = await request_with_retries(
            lambda: client.get(download_url, headers={"Authorization": f"Bearer {access_token}"})
        )
        response.raise_for_status()
        return response.content.decode("utf-8", errors="replace")


async def import_recording_transcript(
    db: Session,
    payload: dict,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Transcript:
    """
    Create a transcript from a completed Zoom recording.

    Idempotent per meeting: a second import of the same meeting returns the
    existing transcript. Raises ZoomImportError or httpx.HTTPError.
    """
    connection = (
        db.query(IntegrationConnection)
        .filter(IntegrationConnection.id == uuid.UUID(payload["connection_id"]))
        .first()
    )
    if not connection:
        raise ZoomImportError("Zoom connection no longer exists")

    meeting_uuid = payload["meeting_uuid"]
    existing = find_existing_import(db, connection.user_id, meeting_uuid)
    if existing:
        return existing

    access_token = payload.get("download_token") or await integration_service.get_access_token(
        db, connection
    )
    if not access_token:
        raise ZoomImportError("Zoom access token unavailable")

    raw = await download_transcript(payload["download_url"], access_token, transport=transport)
    text = normalize_text(vtt_to_text(raw))
    validate_transcript_text(text)

    transcript = transcript_service.create_transcript(
        db,
        connection.user_id,
        text,
        title=payload.get("topic") or "Zoom meeting",
        duration_minutes=payload.get("duration") or None,
        meeting_date=_parse_start_time(payload.get("start_time")),
        source=TranscriptSource.ZOOM,
        external_id=meeting_uuid,
    )
    logger.info("Imported Zoom transcript %s for meeting %s", transcript.id, meeting_uuid)
    return transcript
