"""Prompt service - versioned analysis prompts (one active at a time)."""

import logging
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.enums import AIProviderName
from app.db.models import Prompt

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_NAME = "Challenger Sales Analysis"

DEFAULT_PROMPT_TEXT = """Analyze the following sales call transcript using the Challenger Sales methodology.

Account context:
{{account_context}}

Sales rep context:
{{user_context}}

Transcript:
{{conversation}}

Return a single JSON object with these keys:
- "challengerScores": {"teaching": 1-5, "tailoring": 1-5, "control": 1-5}
- "guidance": {"recommendation": one of "Push", "Accelerate", "Close", "Nurture", "Pause", "message": string, "keyActions": [string]}
- "emailFollowUp": {"subject": string, "body": string}
- "participants": {"salesRep": {"name": string}, "clientContacts": [{"name": string, "title": string}]}
- "callSummary": {
    "overview": string,
    "painSeverity": {"level": "low" | "medium" | "high", "indicators": [string]},
    "urgencyDrivers": {"primary": string, "criticalFactors": [string], "businessFactors": [string], "generalFactors": [string]},
    "buyingSignalsAnalysis": {"commitmentSignals": [string], "engagementSignals": [string]},
    "timelineAnalysis": {"statedTimeline": string, "businessDriver": string},
    "resistanceAnalysis": {"level": "none" | "low" | "medium" | "high", "signals": [string]}
  }
- "keyTakeaways": [string]
- "recommendations": {"recommendation": string, "nextSteps": [string]}
- "reasoning": {"whyTheseRecommendations": string, "evidence": [string]}
- "actionPlan": {"actions": [{"action": string, "owner": string, "timeline": string}]}

Only quote the customer with text that appears verbatim in the transcript."""


def get_active_prompt(db: Session) -> Prompt | None:
    """Most recently created active prompt."""
    return (
        db.query(Prompt)
        .filter(Prompt.is_active.is_(True))
        .order_by(Prompt.created_at.desc())
        .first()
    )


def list_prompts(db: Session) -> list[Prompt]:
    return db.query(Prompt).order_by(Prompt.version_number.desc()).all()


def get_prompt(db: Session, prompt_id: UUID) -> Prompt | None:
    return db.query(Prompt).filter(Prompt.id == prompt_id).first()


def render_prompt(
    prompt_text: str,
    conversation: str,
    account_context: str = "",
    user_context: str = "",
) -> str:
    return (
        prompt_text.replace("{{conversation}}", conversation)
        .replace("{{account_context}}", account_context or "None provided")
        .replace("{{user_context}}", user_context or "None provided")
    )


def _deactivate_all(db: Session) -> None:
    db.query(Prompt).filter(Prompt.is_active.is_(True)).update(
        {Prompt.is_active: False}, synchronize_session="fetch"
    )


def create_prompt(
    db: Session,
    *,
    name: str,
    prompt_text: str,
    ai_provider: AIProviderName = AIProviderName.OPENAI,
    created_by_user_id: UUID | None = None,
    activate: bool = False,
) -> Prompt:
    """Create the next prompt version; optionally make it the active one."""
    if "{{conversation}}" not in prompt_text:
        raise ValueError("Prompt must contain the {{conversation}} placeholder")

    current_max = db.query(func.max(Prompt.version_number)).scalar() or 0
    if activate:
        _deactivate_all(db)

    prompt = Prompt(
        name=name,
        prompt_text=prompt_text,
        ai_provider=ai_provider.value,
        is_active=activate,
        version_number=current_max + 1,
        created_by_user_id=created_by_user_id,
    )
    db.add(prompt)
    db.commit()
    db.refresh(prompt)
    logger.info("Prompt v%s created (active=%s)", prompt.version_number, activate)
    return prompt


def activate_prompt(db: Session, prompt: Prompt) -> Prompt:
    _deactivate_all(db)
    prompt.is_active = True
    db.commit()
    db.refresh(prompt)
    return prompt


def ensure_default_prompt(db: Session) -> Prompt:
    """Seed the default prompt when no prompt is active."""
    active = get_active_prompt(db)
    if active:
        return active

    prompt = Prompt(
        name=DEFAULT_PROMPT_NAME,
        prompt_text=DEFAULT_PROMPT_TEXT,
        ai_provider=AIProviderName.OPENAI.value,
        is_active=True,
        is_default=True,
        version_number=(db.query(func.max(Prompt.version_number)).scalar() or 0) + 1,
    )
    db.add(prompt)
    db.commit()
    db.refresh(prompt)
    logger.info("Seeded default analysis prompt")
    return prompt
