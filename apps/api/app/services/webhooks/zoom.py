"""Zoom webhook handler."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import ConnectionStatus, IntegrationProvider, JobType
from app.db.models import IntegrationConnection, ProcessedWebhookEvent
from app.services import job_service

logger = logging.getLogger(__name__)
MAX_PAYLOAD_BYTES = 1 * 1024 * 1024  # 1 MB
TIMESTAMP_TOLERANCE_SECONDS = 300
TRANSCRIPT_COMPLETED = "recording.transcript_completed"


def _verify_zoom_webhook_signature(
    body: bytes,
    signature: str,
    timestamp: str,
    secret: str,
) -> bool:
    """
    Verify Zoom webhook signature.

    Zoom signs `v0:{timestamp}:{body}` with HMAC-SHA256 and sends `v0={hex}`.
    """
    message = b"v0:" + timestamp.encode("utf-8") + b":" + body
    expected = hmac.new(
        secret.encode("utf-8"),
        message,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(f"v0={expected}", signature)


def _timestamp_is_fresh(timestamp: str, now: float | None = None) -> bool:
    """Zoom timestamps may be seconds or milliseconds."""
    try:
        value = int(timestamp)
    except ValueError:
        return False
    if value > 10**12:
        value //= 1000
    now = now if now is not None else time.time()
    return abs(now - value) <= TIMESTAMP_TOLERANCE_SECONDS


async def _read_body_safe(request: Request) -> bytes:
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > MAX_PAYLOAD_BYTES:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > MAX_PAYLOAD_BYTES:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


def _transcript_file(recording: dict) -> dict | None:
    for item in recording.get("recording_files") or []:
        if item.get("file_type") == "TRANSCRIPT" and item.get("download_url"):
            return item
    return None


class ZoomWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive Zoom webhook events.

        Handles:
        - endpoint.url_validation: Zoom verification challenge
        - recording.transcript_completed: queue a transcript import for the host

        Events are signature-checked and deduplicated via processed_webhook_events.
        """
        if not settings.ZOOM_WEBHOOK_SECRET:
            logger.error("ZOOM_WEBHOOK_SECRET not configured")
            raise HTTPException(501, "Webhook not configured")

        body = await _read_body_safe(request)
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise HTTPException(400, "Invalid JSON")
        if not isinstance(data, dict):
            raise HTTPException(400, "Invalid JSON")

        if data.get("event") == "endpoint.url_validation":
            plain_token = (data.get("payload") or {}).get("plainToken", "")
            if not plain_token:
                raise HTTPException(400, "Missing plainToken")
            encrypted_token = hmac.new(
                settings.ZOOM_WEBHOOK_SECRET.encode("utf-8"),
                plain_token.encode("utf-8"),
                hashlib.sha256,
            ).hexdigest()
            return JSONResponse({"plainToken": plain_token, "encryptedToken": encrypted_token})

        signature = request.headers.get("x-zm-signature", "")
        timestamp = request.headers.get("x-zm-request-timestamp", "")
        if not signature or not timestamp:
            logger.warning("Zoom webhook missing signature or timestamp")
            raise HTTPException(403, "Missing signature")
        if not _timestamp_is_fresh(timestamp):
            logger.warning("Zoom webhook timestamp outside tolerance")
            raise HTTPException(403, "Stale timestamp")
        if not _verify_zoom_webhook_signature(body, signature, timestamp, settings.ZOOM_WEBHOOK_SECRET):
            logger.warning("Zoom webhook invalid signature")
            raise HTTPException(403, "Invalid signature")

        event_type = data.get("event", "")
        payload = data.get("payload") or {}
        recording = payload.get("object") or {}
        meeting_uuid = str(recording.get("uuid") or recording.get("id") or "")
        event_id = f"{event_type}:{meeting_uuid}:{data.get('event_ts', '')}"

        try:
            db.add(
                ProcessedWebhookEvent(
                    provider=IntegrationProvider.ZOOM.value,
                    event_id=event_id,
                    event_type=event_type,
                    payload=data,
                )
            )
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Zoom webhook duplicate event: %s", event_id)
            return {"status": "ok", "message": "Duplicate event"}

        if event_type != TRANSCRIPT_COMPLETED:
            db.commit()
            return {"status": "ok", "message": "Event ignored"}

        host_id = recording.get("host_id")
        connection = None
        if host_id:
            connection = (
                db.query(IntegrationConnection)
                .filter(
                    IntegrationConnection.connection_name == IntegrationProvider.ZOOM.value,
                    IntegrationConnection.external_account_id == host_id,
                    IntegrationConnection.status == ConnectionStatus.ACTIVE.value,
                )
                .first()
            )
        if not connection:
            logger.info("Zoom webhook: no active connection for host %s", host_id)
            db.commit()
            return {"status": "ok", "message": "No matching connection"}

        transcript_file = _transcript_file(recording)
        if not transcript_file:
            db.commit()
            return {"status": "ok", "message": "No transcript file"}

        job_service.schedule_job_once(
            db,
            user_id=connection.user_id,
            job_type=JobType.ZOOM_TRANSCRIPT_IMPORT,
            payload={
                "connection_id": str(connection.id),
                "meeting_uuid": meeting_uuid,
                "topic": recording.get("topic"),
                "start_time": recording.get("start_time"),
                "duration": recording.get("duration"),
                "download_url": transcript_file["download_url"],
                "download_token": data.get("download_token"),
            },
            idempotency_key=f"zoom-import:{meeting_uuid}",
        )
        db.commit()
        logger.info("Queued Zoom transcript import for meeting %s", meeting_uuid)
        return {"status": "ok", "event": event_type, "meeting_uuid": meeting_uuid}
