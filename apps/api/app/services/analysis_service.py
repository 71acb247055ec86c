"""Transcript analysis pipeline.

prompt -> LLM (OpenAI, Claude fallback) -> parse -> deal heat -> store
-> quality checks -> Zapier triggers.

Failures leave the transcript in `error` with a message; the rep retries
from the UI (POST /transcripts/{id}/reanalyze).
"""

from __future__ import annotations

import logging
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.db.enums import AnalysisStrategy, TranscriptStatus, ZapierTriggerType
from app.db.models import Account, ConversationAnalysis, Transcript, User
from app.services import prompt_service, quality_service
from app.services.ai_provider import AIProvider, ChatMessage, get_configured_providers
from app.services.ai_response_validation import parse_json_object, pick
from app.services.deal_heat import determine_heat_level
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a sales intelligence AI that analyzes sales conversations and "
    "provides actionable insights in JSON format."
)
ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 4000
NO_ACTIVE_PROMPT_ERROR = "No active prompt found. Please ensure an admin has activated a prompt."
UNEXPECTED_ERROR = "Analysis failed unexpectedly. Please retry."

# column -> extra aliases beyond the automatic camelCase match
ANALYSIS_FIELDS: dict[str, tuple[str, ...]] = {
    "challenger_scores": (),
    "guidance": (),
    "email_followup": ("emailFollowUp", "email_follow_up", "emailFollowup"),
    "participants": (),
    "call_summary": (),
    "key_takeaways": (),
    "recommendations": (),
    "reasoning": (),
    "action_plan": (),
}


class AnalysisError(Exception):
    """Analysis could not produce a result; message is shown to the rep."""


def select_strategy(duration_minutes: int) -> AnalysisStrategy:
    if duration_minutes <= 30:
        return AnalysisStrategy.SINGLE_PASS
    if duration_minutes <= 90:
        return AnalysisStrategy.SMART_CHUNKING
    return AnalysisStrategy.HIERARCHICAL


def parse_analysis_response(content: str | None) -> tuple[dict, bool]:
    """Map model output to analysis columns. Returns (fields, parse_failed)."""
    data = parse_json_object(content)
    if data is None:
        return {name: None for name in ANALYSIS_FIELDS}, True
    return {name: pick(data, name, *aliases) for name, aliases in ANALYSIS_FIELDS.items()}, False


def _order_providers(providers: list[AIProvider], preferred: str | None) -> list[AIProvider]:
    if not preferred:
        return providers
    return sorted(providers, key=lambda p: 0 if p.name == preferred else 1)


def _account_context(account: Account | None) -> str:
    if not account:
        return ""
    parts = [f"Account: {account.name}"]
    if account.deal_stage:
        parts.append(f"Deal stage: {account.deal_stage}")
    if account.notes:
        parts.append(f"Notes: {account.notes}")
    return "\n".join(parts)


def _user_context(user: User | None) -> str:
    return f"Sales rep: {user.display_name}" if user else ""


async def call_ai(
    prompt_text: str,
    providers: list[AIProvider],
) -> tuple[str, AIProvider, str]:
    """
    Try each provider in order; return (content, provider, model).

    Raises AnalysisError carrying the last provider error when all fail.
    """
    if not providers:
        raise AnalysisError("AI analysis failed: no AI provider configured")

    messages = [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content=prompt_text),
    ]
    last_error: Exception | None = None
    for provider in providers:
        try:
            response = await provider.chat(
                messages,
                temperature=ANALYSIS_TEMPERATURE,
                max_tokens=ANALYSIS_MAX_TOKENS,
                json_mode=True,
            )
            return response.content, provider, response.model
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            last_error = exc
            logger.warning(
                "AI provider %s failed (%s), trying next", provider.name, type(exc).__name__
            )
    raise AnalysisError(f"AI analysis failed: {last_error}")


def _previous_heat_level(db: Session, transcript: Transcript) -> str | None:
    """Heat before this run: the transcript's last analysis, else the account's."""
    previous = (
        db.query(ConversationAnalysis.heat_level)
        .filter(ConversationAnalysis.transcript_id == transcript.id)
        .order_by(ConversationAnalysis.created_at.desc())
        .first()
    )
    if previous is None and transcript.account_id:
        previous = (
            db.query(ConversationAnalysis.heat_level)
            .join(Transcript, Transcript.id == ConversationAnalysis.transcript_id)
            .filter(Transcript.account_id == transcript.account_id)
            .order_by(ConversationAnalysis.created_at.desc())
            .first()
        )
    return previous[0] if previous else None


def _mark_error(db: Session, transcript: Transcript, message: str) -> None:
    transcript.status = TranscriptStatus.ERROR.value
    transcript.error_message = message[:1000]
    transcript.processed_at = utcnow()
    db.commit()


def analysis_event_data(analysis: ConversationAnalysis, transcript: Transcript) -> dict:
    """Payload `data` for analysis-related Zapier triggers."""
    scores = analysis.challenger_scores if isinstance(analysis.challenger_scores, dict) else {}
    summary = analysis.call_summary if isinstance(analysis.call_summary, dict) else {}
    return {
        "analysis_id": str(analysis.id),
        "transcript_id": str(transcript.id),
        "transcript_title": transcript.title,
        "account_id": str(transcript.account_id) if transcript.account_id else None,
        "account_name": transcript.account.name if transcript.account else None,
        "heat_level": analysis.heat_level,
        "challenger_scores": scores,
        "overview": summary.get("overview"),
        "recommendation": (analysis.guidance or {}).get("recommendation")
        if isinstance(analysis.guidance, dict)
        else None,
        "created_at": analysis.created_at.isoformat() if analysis.created_at else None,
    }


def _first_item(value) -> str | None:
    if isinstance(value, list) and value:
        return str(value[0])
    return None


def analysis_crm_data(analysis: ConversationAnalysis) -> dict:
    """CRM-shaped view of an analysis for Zapier lookups (deal, participants, insights)."""
    transcript = analysis.transcript
    account = transcript.account if transcript else None
    scores = analysis.challenger_scores if isinstance(analysis.challenger_scores, dict) else {}
    guidance = analysis.guidance if isinstance(analysis.guidance, dict) else {}
    plan = analysis.action_plan if isinstance(analysis.action_plan, dict) else {}
    email = analysis.email_followup if isinstance(analysis.email_followup, dict) else {}

    values = []
    for key in ("teaching", "tailoring", "control"):
        try:
            values.append(float(scores.get(key) or 0))
        except (TypeError, ValueError):
            values.append(0.0)
    priority_score = round(sum(values) / 3.0 * 20) if scores else 50

    return {
        "analysis_id": str(analysis.id),
        "deal_intelligence": {
            "heat_level": analysis.heat_level,
            "deal_stage_recommendation": guidance.get("recommendation") or "Continue",
            "priority_score": priority_score,
            "next_action": _first_item(pick(plan, "immediate_actions")) or "Follow up",
            "timeline": guidance.get("timing") or "48 hours",
        },
        "account": {
            "id": str(account.id) if account else None,
            "name": account.name if account else None,
            "deal_stage": account.deal_stage if account else None,
        },
        "participants": transcript.participants if transcript else [],
        "conversation_insights": {
            "key_takeaways": analysis.key_takeaways or [],
            "challenger_scores": scores,
            "next_steps": pick(plan, "next_steps") or [],
            "follow_up_subject": pick(email, "subject"),
        },
        "metadata": {
            "transcript_id": str(transcript.id) if transcript else None,
            "transcript_title": transcript.title if transcript else None,
            "meeting_date": transcript.meeting_date.isoformat() if transcript else None,
            "duration_minutes": transcript.duration_minutes if transcript else None,
            "analysis_timestamp": analysis.created_at.isoformat() if analysis.created_at else None,
        },
    }


async def run_analysis(
    db: Session,
    transcript_id: UUID,
    providers: list[AIProvider] | None = None,
) -> dict:
    """
    Analyze one transcript end to end.

    Returns {success, analysis_id, transcript_id, strategy, ai_provider, heat_level}
    or {success: False, transcript_id, error}.
    """
    transcript = db.query(Transcript).filter(Transcript.id == transcript_id).first()
    if not transcript:
        raise ValueError(f"Transcript {transcript_id} not found")

    transcript.status = TranscriptStatus.PROCESSING.value
    transcript.error_message = None
    transcript.processed_at = utcnow()
    db.commit()

    try:
        prompt = prompt_service.get_active_prompt(db)
        if not prompt:
            logger.error("No active prompt; transcript %s set to error", transcript.id)
            _mark_error(db, transcript, NO_ACTIVE_PROMPT_ERROR)
            return {
                "success": False,
                "transcript_id": str(transcript.id),
                "error": NO_ACTIVE_PROMPT_ERROR,
            }

        strategy = select_strategy(transcript.duration_minutes)
        user = db.query(User).filter(User.id == transcript.user_id).first()
        prompt_text = prompt_service.render_prompt(
            prompt.prompt_text,
            conversation=transcript.raw_text,
            account_context=_account_context(transcript.account),
            user_context=_user_context(user),
        )

        if providers is None:
            providers = get_configured_providers()
        providers = _order_providers(providers, prompt.ai_provider)

        try:
            content, provider, model = await call_ai(prompt_text, providers)
        except AnalysisError as exc:
            logger.error("Analysis failed for transcript %s: %s", transcript.id, exc)
            _mark_error(db, transcript, str(exc))
            return {"success": False, "transcript_id": str(transcript.id), "error": str(exc)}

        fields, parse_failed = parse_analysis_response(content)
        if parse_failed:
            logger.warning("Unparseable AI response for transcript %s", transcript.id)

        previous_heat = _previous_heat_level(db, transcript)
        heat_level = determine_heat_level(
            fields["call_summary"] if isinstance(fields["call_summary"], dict) else None,
            fields["recommendations"] if isinstance(fields["recommendations"], dict) else None,
            fields["guidance"] if isinstance(fields["guidance"], dict) else None,
            fields["challenger_scores"] if isinstance(fields["challenger_scores"], dict) else None,
        )

        analysis = ConversationAnalysis(
            transcript_id=transcript.id,
            user_id=transcript.user_id,
            heat_level=heat_level.value,
            analysis_strategy=strategy.value,
            ai_provider=provider.name,
            ai_model=model,
            prompt_id=prompt.id,
            **fields,
        )
        db.add(analysis)
        transcript.status = TranscriptStatus.COMPLETED.value
        transcript.error_message = None
        transcript.processed_at = utcnow()
        db.commit()
        db.refresh(analysis)
    except Exception:
        logger.exception("Unexpected analysis failure for transcript %s", transcript_id)
        db.rollback()
        _mark_error(db, transcript, UNEXPECTED_ERROR)
        raise

    logger.info(
        "Analysis %s saved: transcript=%s provider=%s strategy=%s heat=%s",
        analysis.id,
        transcript.id,
        provider.name,
        strategy.value,
        heat_level.value,
    )

    quality_service.run_quality_checks(db, analysis, transcript.raw_text, parse_failed=parse_failed)

    from app.services import zapier_webhook_service

    event_data = analysis_event_data(analysis, transcript)
    zapier_webhook_service.trigger_event(
        db,
        user_id=transcript.user_id,
        trigger_type=ZapierTriggerType.NEW_ANALYSIS,
        data=event_data,
        analysis_id=analysis.id,
    )
    if previous_heat and previous_heat != heat_level.value:
        zapier_webhook_service.trigger_event(
            db,
            user_id=transcript.user_id,
            trigger_type=ZapierTriggerType.HEAT_LEVEL_CHANGED,
            data={**event_data, "previous_heat_level": previous_heat},
            analysis_id=analysis.id,
        )

    return {
        "success": True,
        "analysis_id": str(analysis.id),
        "transcript_id": str(transcript.id),
        "strategy": strategy.value,
        "ai_provider": provider.name,
        "heat_level": heat_level.value,
    }


def get_analysis(db: Session, analysis_id: UUID, user_id: UUID) -> ConversationAnalysis | None:
    return (
        db.query(ConversationAnalysis)
        .filter(
            ConversationAnalysis.id == analysis_id,
            ConversationAnalysis.user_id == user_id,
        )
        .first()
    )


def list_analyses(
    db: Session,
    user_id: UUID,
    *,
    heat_level: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[ConversationAnalysis], int]:
    query = db.query(ConversationAnalysis).filter(ConversationAnalysis.user_id == user_id)
    if heat_level:
        query = query.filter(ConversationAnalysis.heat_level == heat_level)
    total = query.count()
    items = (
        query.order_by(ConversationAnalysis.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def format_followup_email(analysis: ConversationAnalysis) -> dict:
    """Subject/body for the rep's follow-up email, tolerant of model key variants."""
    email = analysis.email_followup if isinstance(analysis.email_followup, dict) else {}
    subject = email.get("subject") or email.get("subjectLine") or ""
    body = email.get("body") or email.get("content") or email.get("message") or ""
    if isinstance(body, list):
        body = "\n\n".join(str(part) for part in body)
    return {"analysis_id": analysis.id, "subject": subject, "body": body}
