"""Pydantic schemas for transcripts, analyses and accounts."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import AIProviderName


class TranscriptCreate(BaseModel):
    """Pasted transcript text."""

    raw_text: str = Field(..., min_length=1, max_length=1_000_000)
    title: str | None = Field(default=None, max_length=200)
    account_id: UUID | None = None
    participants: list[str] | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    meeting_date: datetime | None = None


class TranscriptRead(BaseModel):
    id: UUID
    account_id: UUID | None
    title: str
    participants: list[str]
    meeting_date: datetime
    duration_minutes: int
    source: str
    status: str
    error_message: str | None
    processed_at: datetime | None
    is_archived: bool = False
    archived_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TranscriptDetail(TranscriptRead):
    raw_text: str


class TranscriptArchive(BaseModel):
    """`archived: false` restores an archived transcript."""

    archived: bool = True


class TranscriptUploadResponse(BaseModel):
    transcript: TranscriptRead
    warnings: list[str] = []


class TranscriptListResponse(BaseModel):
    items: list[TranscriptRead]
    total: int
    page: int
    per_page: int


class TranscriptStatusRead(BaseModel):
    """Polled by the client while analysis runs."""

    transcript_id: UUID
    status: str
    error_message: str | None
    processed_at: datetime | None
    analysis_id: UUID | None
    heat_level: str | None


class AnalysisRead(BaseModel):
    id: UUID
    transcript_id: UUID
    challenger_scores: dict | None
    guidance: dict | None
    email_followup: dict | None
    participants: dict | None
    call_summary: dict | None
    key_takeaways: list | None
    recommendations: dict | None
    reasoning: dict | None
    action_plan: dict | None
    heat_level: str | None
    analysis_strategy: str | None
    ai_provider: str | None
    ai_model: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AnalysisListResponse(BaseModel):
    items: list[AnalysisRead]
    total: int
    page: int
    per_page: int


class FollowupEmail(BaseModel):
    analysis_id: UUID
    subject: str
    body: str


class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    deal_stage: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=2000)


class AccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    deal_stage: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=2000)


class AccountRead(BaseModel):
    id: UUID
    name: str
    deal_stage: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AccountListItem(AccountRead):
    transcript_count: int = 0
    latest_heat_level: str | None = None


class PromptCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    prompt_text: str = Field(..., min_length=1, max_length=50_000)
    ai_provider: AIProviderName = AIProviderName.OPENAI
    activate: bool = False


class PromptRead(BaseModel):
    id: UUID
    name: str
    prompt_text: str
    ai_provider: str
    is_active: bool
    is_default: bool
    version_number: int
    created_by_user_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class QualityFlagRead(BaseModel):
    id: UUID
    analysis_id: UUID
    flag_type: str
    details: dict
    flagged_at: datetime
    resolved_at: datetime | None
    resolved_by: UUID | None

    model_config = {"from_attributes": True}
