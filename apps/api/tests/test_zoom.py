"""Tests for the Zoom webhook and transcript import."""

import hashlib
import hmac
import json
import time

import httpx
import pytest

from app.core.config import settings
from app.db.enums import IntegrationProvider, JobType, TranscriptSource
from app.db.models import Job, ProcessedWebhookEvent, Transcript
from app.services import integration_service, zoom_service
from app.services.integration_service import TokenResult
from app.services.zoom_service import ZoomImportError


ZOOM_WEBHOOK_SECRET = settings.ZOOM_WEBHOOK_SECRET

VTT = (
    "WEBVTT\n\n"
    "1\n00:00:01.000 --> 00:00:04.000\nSam Seller: Thanks for making time today.\n\n"
    "2\n00:00:04.500 --> 00:00:08.000\nJane Buyer: Happy to, we need a decision by Friday.\n"
)


def _signed_headers(body: bytes, timestamp: str | None = None, secret: str = ZOOM_WEBHOOK_SECRET) -> dict:
    timestamp = timestamp or str(int(time.time()))
    digest = hmac.new(secret.encode(), f"v0:{timestamp}:".encode() + body, hashlib.sha256).hexdigest()
    return {
        "Content-Type": "application/json",
        "x-zm-signature": f"v0={digest}",
        "x-zm-request-timestamp": timestamp,
    }


def _transcript_event(host_id="host-1", meeting_uuid="meeting-abc==", event_ts=1700000000000) -> dict:
    return {
        "event": "recording.transcript_completed",
        "event_ts": event_ts,
        "download_token": "dl-token",
        "payload": {
            "object": {
                "uuid": meeting_uuid,
                "host_id": host_id,
                "topic": "Acme discovery",
                "start_time": "2024-03-01T15:00:00Z",
                "duration": 32,
                "recording_files": [
                    {"file_type": "MP4", "download_url": "https://zoom.us/rec/video"},
                    {"file_type": "TRANSCRIPT", "download_url": "https://zoom.us/rec/download/vtt"},
                ],
            }
        },
    }


@pytest.fixture
def zoom_connection(db, test_user):
    return integration_service.save_connection(
        db,
        test_user.id,
        IntegrationProvider.ZOOM,
        TokenResult(access_token="zoom-access", refresh_token="zoom-refresh", expires_in=3600, external_account_id="host-1"),
    )


@pytest.mark.asyncio
async def test_url_validation_challenge(client):
    body = {"event": "endpoint.url_validation", "payload": {"plainToken": "abc123"}}
    res = await client.post("/webhooks/zoom", json=body)

    assert res.status_code == 200
    expected = hmac.new(ZOOM_WEBHOOK_SECRET.encode(), b"abc123", hashlib.sha256).hexdigest()
    assert res.json() == {"plainToken": "abc123", "encryptedToken": expected}


@pytest.mark.asyncio
async def test_missing_signature_is_403(client):
    res = await client.post("/webhooks/zoom", json=_transcript_event())
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_bad_signature_is_403(client):
    body = json.dumps(_transcript_event()).encode()
    res = await client.post("/webhooks/zoom", content=body, headers=_signed_headers(body, secret="wrong"))
    assert res.status_code == 403
    assert res.json()["detail"] == "Invalid signature"


@pytest.mark.asyncio
async def test_stale_timestamp_is_403(client):
    body = json.dumps(_transcript_event()).encode()
    stale = str(int(time.time()) - 600)
    res = await client.post("/webhooks/zoom", content=body, headers=_signed_headers(body, timestamp=stale))
    assert res.status_code == 403
    assert res.json()["detail"] == "Stale timestamp"


@pytest.mark.asyncio
async def test_millisecond_timestamp_is_accepted(client, db):
    body = json.dumps({"event": "meeting.started", "event_ts": 1, "payload": {"object": {"uuid": "m"}}}).encode()
    millis = str(int(time.time() * 1000))
    res = await client.post("/webhooks/zoom", content=body, headers=_signed_headers(body, timestamp=millis))
    assert res.status_code == 200
    assert res.json()["message"] == "Event ignored"


@pytest.mark.asyncio
async def test_invalid_json_is_400(client):
    res = await client.post("/webhooks/zoom", content=b"not json", headers={"Content-Type": "application/json"})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_transcript_completed_queues_import(client, db, zoom_connection):
    body = json.dumps(_transcript_event()).encode()

    res = await client.post("/webhooks/zoom", content=body, headers=_signed_headers(body))
    assert res.status_code == 200, res.text
    assert res.json()["meeting_uuid"] == "meeting-abc=="

    job = db.query(Job).filter(Job.job_type == JobType.ZOOM_TRANSCRIPT_IMPORT.value).one()
    assert job.user_id == zoom_connection.user_id
    assert job.idempotency_key == "zoom-import:meeting-abc=="
    assert job.payload["download_url"] == "https://zoom.us/rec/download/vtt"
    assert job.payload["connection_id"] == str(zoom_connection.id)

    res = await client.post("/webhooks/zoom", content=body, headers=_signed_headers(body))
    assert res.json()["message"] == "Duplicate event"
    assert db.query(ProcessedWebhookEvent).count() == 1
    assert db.query(Job).count() == 1


@pytest.mark.asyncio
async def test_unknown_host_is_ignored(client, db, zoom_connection):
    body = json.dumps(_transcript_event(host_id="someone-else")).encode()

    res = await client.post("/webhooks/zoom", content=body, headers=_signed_headers(body))

    assert res.json()["message"] == "No matching connection"
    assert db.query(Job).count() == 0


def _payload(connection) -> dict:
    return {
        "connection_id": str(connection.id),
        "meeting_uuid": "meeting-abc==",
        "topic": "Acme discovery",
        "start_time": "2024-03-01T15:00:00Z",
        "duration": 32,
        "download_url": "https://zoom.us/rec/download/vtt",
        "download_token": None,
    }


@pytest.mark.asyncio
async def test_import_creates_zoom_transcript(db, zoom_connection):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, text=VTT)

    transport = httpx.MockTransport(handler)
    transcript = await zoom_service.import_recording_transcript(db, _payload(zoom_connection), transport=transport)

    assert seen["auth"] == "Bearer zoom-access"
    assert transcript.source == TranscriptSource.ZOOM.value
    assert transcript.title == "Acme discovery"
    assert transcript.duration_minutes == 32
    assert transcript.participants == ["Sam Seller", "Jane Buyer"]
    assert "we need a decision by Friday" in transcript.raw_text
    assert db.query(Job).filter(Job.job_type == JobType.TRANSCRIPT_ANALYSIS.value).count() == 1

    again = await zoom_service.import_recording_transcript(db, _payload(zoom_connection), transport=transport)
    assert again.id == transcript.id
    assert db.query(Transcript).count() == 1


@pytest.mark.asyncio
async def test_import_prefers_download_token(db, zoom_connection):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, text=VTT)

    payload = {**_payload(zoom_connection), "download_token": "dl-token"}
    await zoom_service.import_recording_transcript(db, payload, transport=httpx.MockTransport(handler))

    assert seen["auth"] == "Bearer dl-token"


@pytest.mark.asyncio
async def test_import_without_connection_fails(db, zoom_connection):
    payload = {**_payload(zoom_connection), "connection_id": "00000000-0000-0000-0000-000000000000"}
    with pytest.raises(ZoomImportError):
        await zoom_service.import_recording_transcript(db, payload)
