"""Accounts, transcripts, analyses, prompts and quality flags."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JsonType
from app.db.enums import TranscriptSource, TranscriptStatus
from app.utils.time import utcnow


class Account(Base):
    """A customer account (deal) a rep attaches call transcripts to."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("length(name) between 1 and 100", name="ck_accounts_name_length"),
        Index("ix_accounts_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    deal_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    transcripts: Mapped[list["Transcript"]] = relationship(back_populates="account")


class Transcript(Base):
    """
    Raw call transcript.

    Status moves uploaded -> processing -> completed | error.
    The client polls the status endpoint while analysis runs.
    Archived transcripts stay readable but drop out of the default list.
    """

    __tablename__ = "transcripts"
    __table_args__ = (
        CheckConstraint("length(title) between 1 and 200", name="ck_transcripts_title_length"),
        CheckConstraint("duration_minutes > 0", name="ck_transcripts_duration_positive"),
        CheckConstraint("length(raw_text) <= 1000000", name="ck_transcripts_raw_text_length"),
        Index("ix_transcripts_user", "user_id", "created_at"),
        Index("ix_transcripts_status", "status"),
        Index("ix_transcripts_archived", "user_id", "is_archived"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    participants: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)
    meeting_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(
        String(20), default=TranscriptSource.UPLOAD.value, nullable=False
    )
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TranscriptStatus.UPLOADED.value,
        server_default=text("'uploaded'"),
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_archived: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)
    archived_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    account: Mapped[Account | None] = relationship(back_populates="transcripts")
    analyses: Mapped[list["ConversationAnalysis"]] = relationship(
        back_populates="transcript",
        cascade="all, delete-orphan",
        order_by="ConversationAnalysis.created_at.desc()",
    )


class ConversationAnalysis(Base):
    """AI output for one transcript. Latest row wins on re-analysis."""

    __tablename__ = "conversation_analysis"
    __table_args__ = (
        Index("ix_conversation_analysis_transcript", "transcript_id", "created_at"),
        Index("ix_conversation_analysis_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transcript_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transcripts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    challenger_scores: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    guidance: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    email_followup: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    participants: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    call_summary: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    key_takeaways: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    recommendations: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    reasoning: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    action_plan: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    heat_level: Mapped[str | None] = mapped_column(String(10), nullable=True)
    analysis_strategy: Mapped[str | None] = mapped_column(String(30), nullable=True)
    ai_provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    prompt_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("prompts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    transcript: Mapped[Transcript] = relationship(back_populates="analyses")
    quality_flags: Mapped[list["AnalysisQualityFlag"]] = relationship(
        back_populates="analysis", cascade="all, delete-orphan"
    )


class Prompt(Base):
    """Versioned analysis prompt. Exactly one is active at a time."""

    __tablename__ = "prompts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    ai_provider: Mapped[str] = mapped_column(String(20), default="openai", nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class AnalysisQualityFlag(Base):
    """An analysis that needs human review."""

    __tablename__ = "analysis_quality_flags"
    __table_args__ = (Index("ix_quality_flags_flagged_at", "flagged_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    analysis_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversation_analysis.id", ondelete="CASCADE"), nullable=False
    )
    flag_type: Mapped[str] = mapped_column(String(30), nullable=False)
    details: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    flagged_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    analysis: Mapped[ConversationAnalysis] = relationship(back_populates="quality_flags")
