"""Tests for the transcript analysis pipeline."""

import json
import uuid

import httpx
import pytest

from app.db.enums import (
    AnalysisStrategy,
    JobType,
    QualityFlagType,
    TranscriptStatus,
    ZapierTriggerType,
)
from app.db.models import AnalysisQualityFlag, ConversationAnalysis, Job
from app.services import (
    analysis_service,
    prompt_service,
    transcript_service,
    zapier_key_service,
    zapier_webhook_service,
)
from app.services.analysis_service import NO_ACTIVE_PROMPT_ERROR, select_strategy


TRANSCRIPT_TEXT = (
    "Sam Seller: Thanks for joining today.\n"
    "Jane Buyer: We need this before the audit in March.\n"
    "Sam Seller: Understood, let's plan for that."
)

HOT_ANALYSIS = {
    "challengerScores": {"teaching": 4, "tailoring": 3, "control": 4},
    "guidance": {"recommendation": "Accelerate", "message": "Move fast", "keyActions": ["Send proposal"]},
    "emailFollowUp": {"subject": "Next steps", "body": "Thanks for the call, Jane."},
    "participants": {
        "salesRep": {"name": "Sam Seller"},
        "clientContacts": [{"name": "Jane Buyer", "title": "VP Sales"}],
    },
    "callSummary": {
        "overview": "Audit deadline drives urgency.",
        "painSeverity": {"level": "high", "indicators": ["Audit in March"]},
    },
    "keyTakeaways": ['Jane said "we need this before the audit"'],
    "recommendations": {"recommendation": "Accelerate", "nextSteps": ["Proposal by Friday"]},
    "reasoning": {"whyTheseRecommendations": "Hard deadline", "evidence": []},
    "actionPlan": {"actions": [{"action": "Send proposal", "owner": "Sam", "timeline": "Friday"}]},
}

COLD_ANALYSIS = {
    **HOT_ANALYSIS,
    "callSummary": {"overview": "Just browsing.", "urgencyDrivers": {"generalFactors": ["Curious"]}},
}


@pytest.fixture
def transcript(db, test_user):
    prompt_service.ensure_default_prompt(db)
    return transcript_service.create_transcript(db, test_user.id, TRANSCRIPT_TEXT)


def _flags(db, analysis_id) -> set[str]:
    rows = db.query(AnalysisQualityFlag).filter(AnalysisQualityFlag.analysis_id == analysis_id).all()
    return {row.flag_type for row in rows}


def test_select_strategy_by_duration():
    assert select_strategy(30) == AnalysisStrategy.SINGLE_PASS
    assert select_strategy(31) == AnalysisStrategy.SMART_CHUNKING
    assert select_strategy(90) == AnalysisStrategy.SMART_CHUNKING
    assert select_strategy(91) == AnalysisStrategy.HIERARCHICAL


def test_create_transcript_queues_single_attempt_analysis(db, transcript):
    job = db.query(Job).filter(Job.job_type == JobType.TRANSCRIPT_ANALYSIS.value).one()
    assert job.payload == {"transcript_id": str(transcript.id)}
    assert job.max_attempts == 1
    assert transcript.status == TranscriptStatus.UPLOADED.value
    assert transcript.participants == ["Sam Seller", "Jane Buyer"]
    assert transcript.duration_minutes == 5


@pytest.mark.asyncio
async def test_successful_analysis_is_stored(db, transcript, fake_provider):
    provider = fake_provider("openai", content=json.dumps(HOT_ANALYSIS))

    result = await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    assert result["success"] is True
    assert result["heat_level"] == "HIGH"
    assert result["strategy"] == AnalysisStrategy.SINGLE_PASS.value

    db.refresh(transcript)
    assert transcript.status == TranscriptStatus.COMPLETED.value
    assert transcript.error_message is None
    assert transcript.processed_at is not None

    analysis = db.query(ConversationAnalysis).filter_by(transcript_id=transcript.id).one()
    assert analysis.challenger_scores == {"teaching": 4, "tailoring": 3, "control": 4}
    assert analysis.email_followup["subject"] == "Next steps"
    assert analysis.ai_provider == "openai"
    assert analysis.ai_model == "openai-test"
    assert analysis.prompt_id is not None
    assert _flags(db, analysis.id) == set()


@pytest.mark.asyncio
async def test_falls_back_to_claude_when_openai_fails(db, transcript, fake_provider):
    openai = fake_provider("openai", error=httpx.ConnectError("connection refused"))
    claude = fake_provider("claude", content=json.dumps(HOT_ANALYSIS))

    result = await analysis_service.run_analysis(db, transcript.id, providers=[openai, claude])

    assert result["success"] is True
    assert result["ai_provider"] == "claude"
    assert openai.calls == 1
    assert claude.calls == 1


@pytest.mark.asyncio
async def test_all_providers_failing_marks_transcript_error(db, transcript, fake_provider):
    providers = [
        fake_provider("openai", error=httpx.ReadTimeout("timed out")),
        fake_provider("claude", error=ValueError("bad response")),
    ]

    result = await analysis_service.run_analysis(db, transcript.id, providers=providers)

    assert result["success"] is False
    db.refresh(transcript)
    assert transcript.status == TranscriptStatus.ERROR.value
    assert transcript.error_message.startswith("AI analysis failed")
    assert db.query(ConversationAnalysis).count() == 0


@pytest.mark.asyncio
async def test_no_configured_provider_marks_error(db, transcript):
    result = await analysis_service.run_analysis(db, transcript.id, providers=[])
    assert result["success"] is False
    assert "no AI provider configured" in result["error"]


@pytest.mark.asyncio
async def test_missing_prompt_marks_error(db, test_user, fake_provider):
    transcript = transcript_service.create_transcript(db, test_user.id, TRANSCRIPT_TEXT)
    provider = fake_provider("openai", content=json.dumps(HOT_ANALYSIS))

    result = await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    assert result == {"success": False, "transcript_id": str(transcript.id), "error": NO_ACTIVE_PROMPT_ERROR}
    assert provider.calls == 0
    db.refresh(transcript)
    assert transcript.status == TranscriptStatus.ERROR.value


@pytest.mark.asyncio
async def test_unparseable_response_is_stored_and_flagged(db, transcript, fake_provider):
    provider = fake_provider("openai", content="Sorry, I cannot help with that.")

    result = await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    assert result["success"] is True
    assert result["heat_level"] == "LOW"
    assert _flags(db, uuid.UUID(result["analysis_id"])) == {QualityFlagType.SCHEMA_INVALID.value}


@pytest.mark.asyncio
async def test_fenced_json_is_parsed(db, transcript, fake_provider):
    content = "```json\n" + json.dumps(HOT_ANALYSIS) + "\n```"
    provider = fake_provider("openai", content=content)

    result = await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    assert result["heat_level"] == "HIGH"
    assert _flags(db, uuid.UUID(result["analysis_id"])) == set()


@pytest.mark.asyncio
async def test_fabricated_quote_is_flagged(db, transcript, fake_provider):
    content = {**HOT_ANALYSIS, "keyTakeaways": ['Jane said "our budget is already approved for this"']}
    provider = fake_provider("openai", content=json.dumps(content))

    result = await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    flag = db.query(AnalysisQualityFlag).filter_by(analysis_id=uuid.UUID(result["analysis_id"])).one()
    assert flag.flag_type == QualityFlagType.FABRICATED_QUOTES.value
    assert flag.details["quotes"] == ["our budget is already approved for this"]


@pytest.mark.asyncio
async def test_missing_fields_are_flagged(db, transcript, fake_provider):
    provider = fake_provider("openai", content=json.dumps({"keyTakeaways": []}))

    result = await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    flag = db.query(AnalysisQualityFlag).filter_by(analysis_id=uuid.UUID(result["analysis_id"])).one()
    assert flag.flag_type == QualityFlagType.MISSING_FIELDS.value
    assert flag.details["fields"] == ["call_summary", "challenger_scores", "guidance"]


@pytest.mark.asyncio
async def test_analysis_fires_zapier_triggers(db, transcript, test_user, fake_provider, public_dns):
    key, _ = zapier_key_service.create_api_key(db, test_user.id, "Zap")
    new_hook = zapier_webhook_service.subscribe(
        db,
        test_user.id,
        api_key_id=key.id,
        webhook_url="https://hooks.zapier.com/hooks/catch/1/new",
        trigger_type=ZapierTriggerType.NEW_ANALYSIS,
    )
    heat_hook = zapier_webhook_service.subscribe(
        db,
        test_user.id,
        api_key_id=key.id,
        webhook_url="https://hooks.zapier.com/hooks/catch/1/heat",
        trigger_type=ZapierTriggerType.HEAT_LEVEL_CHANGED,
    )

    def deliveries(webhook_id):
        return [
            job
            for job in db.query(Job).filter(Job.job_type == JobType.ZAPIER_WEBHOOK_DELIVERY.value)
            if job.payload["webhook_id"] == str(webhook_id)
        ]

    hot = fake_provider("openai", content=json.dumps(HOT_ANALYSIS))
    await analysis_service.run_analysis(db, transcript.id, providers=[hot])
    assert len(deliveries(new_hook.id)) == 1
    assert deliveries(heat_hook.id) == []

    cold = fake_provider("openai", content=json.dumps(COLD_ANALYSIS))
    result = await analysis_service.run_analysis(db, transcript.id, providers=[cold])
    assert result["heat_level"] == "LOW"
    assert len(deliveries(new_hook.id)) == 2

    [heat_job] = deliveries(heat_hook.id)
    body = heat_job.payload["body"]
    assert body["trigger_type"] == "heat_level_changed"
    assert body["data"]["previous_heat_level"] == "HIGH"
    assert body["data"]["heat_level"] == "LOW"
    assert body["analysis_id"] == result["analysis_id"]


@pytest.mark.asyncio
async def test_unexpected_provider_error_marks_error_and_propagates(db, transcript, fake_provider):
    provider = fake_provider("openai", error=RuntimeError("SDK blew up"))

    with pytest.raises(RuntimeError):
        await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    db.refresh(transcript)
    assert transcript.status == TranscriptStatus.ERROR.value
    assert transcript.error_message == analysis_service.UNEXPECTED_ERROR
    assert db.query(ConversationAnalysis).count() == 0


@pytest.mark.asyncio
async def test_unexpected_scoring_error_does_not_leave_transcript_processing(
    db, transcript, fake_provider, monkeypatch
):
    provider = fake_provider("openai", content=json.dumps(HOT_ANALYSIS))

    def broken_heat(*args):
        raise TypeError("unexpected summary shape")

    monkeypatch.setattr(analysis_service, "determine_heat_level", broken_heat)

    with pytest.raises(TypeError):
        await analysis_service.run_analysis(db, transcript.id, providers=[provider])

    db.refresh(transcript)
    assert transcript.status == TranscriptStatus.ERROR.value
