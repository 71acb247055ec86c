"""Analysis quality checks and the admin review queue."""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import QualityFlagType
from app.db.models import AnalysisQualityFlag, ConversationAnalysis
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("call_summary", "challenger_scores", "guidance")
CHALLENGER_DIMENSIONS = ("teaching", "tailoring", "control")
MIN_QUOTE_LENGTH = 12
QUOTE_RE = re.compile(r"[\"“]([^\"“”]+)[\"”]")
WHITESPACE_RE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip().lower()


def _collect_strings(value) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [s for item in value.values() for s in _collect_strings(item)]
    if isinstance(value, list):
        return [s for item in value for s in _collect_strings(item)]
    return []


def find_missing_fields(analysis: ConversationAnalysis) -> list[str]:
    return [name for name in REQUIRED_FIELDS if not getattr(analysis, name)]


def find_fabricated_quotes(analysis: ConversationAnalysis, transcript_text: str) -> list[str]:
    """Quoted passages in takeaways/reasoning that do not occur in the transcript."""
    haystack = _normalize(transcript_text)
    fabricated: list[str] = []
    for text in _collect_strings(analysis.key_takeaways) + _collect_strings(analysis.reasoning):
        for match in QUOTE_RE.finditer(text):
            quote = match.group(1).strip().rstrip(".,!?")
            if len(quote) < MIN_QUOTE_LENGTH:
                continue
            if _normalize(quote) not in haystack and quote not in fabricated:
                fabricated.append(quote)
    return fabricated


def find_schema_errors(analysis: ConversationAnalysis) -> list[str]:
    errors: list[str] = []
    scores = analysis.challenger_scores
    if scores is not None:
        if not isinstance(scores, dict):
            errors.append("challenger_scores is not an object")
        else:
            for dimension in CHALLENGER_DIMENSIONS:
                value = scores.get(dimension)
                if value is None:
                    continue
                try:
                    number = float(value)
                except (TypeError, ValueError):
                    errors.append(f"challenger_scores.{dimension} is not a number")
                    continue
                if not 0 <= number <= 5:
                    errors.append(f"challenger_scores.{dimension} out of range")
    if analysis.key_takeaways is not None and not isinstance(analysis.key_takeaways, list):
        errors.append("key_takeaways is not a list")
    if analysis.call_summary is not None and not isinstance(analysis.call_summary, dict):
        errors.append("call_summary is not an object")
    return errors


def flag_analysis(
    db: Session,
    analysis: ConversationAnalysis,
    flag_type: QualityFlagType,
    details: dict,
    commit: bool = True,
) -> AnalysisQualityFlag:
    flag = AnalysisQualityFlag(
        analysis_id=analysis.id,
        flag_type=flag_type.value,
        details=details,
    )
    db.add(flag)
    if commit:
        db.commit()
        db.refresh(flag)
    else:
        db.flush()
    logger.info("Analysis %s flagged: %s", analysis.id, flag_type.value)
    return flag


def run_quality_checks(
    db: Session,
    analysis: ConversationAnalysis,
    transcript_text: str,
    parse_failed: bool = False,
) -> list[AnalysisQualityFlag]:
    """Flag the analysis for human review where checks fail. Commits."""
    flags: list[AnalysisQualityFlag] = []

    schema_errors = find_schema_errors(analysis)
    if parse_failed:
        schema_errors.insert(0, "AI response was not a JSON object")
    if schema_errors:
        flags.append(
            flag_analysis(
                db, analysis, QualityFlagType.SCHEMA_INVALID, {"errors": schema_errors}, commit=False
            )
        )

    missing = find_missing_fields(analysis)
    if missing and not parse_failed:
        flags.append(
            flag_analysis(
                db, analysis, QualityFlagType.MISSING_FIELDS, {"fields": missing}, commit=False
            )
        )

    fabricated = find_fabricated_quotes(analysis, transcript_text)
    if fabricated:
        flags.append(
            flag_analysis(
                db,
                analysis,
                QualityFlagType.FABRICATED_QUOTES,
                {"quotes": fabricated[:10], "count": len(fabricated)},
                commit=False,
            )
        )

    db.commit()
    return flags


def list_flags(
    db: Session,
    *,
    unresolved_only: bool = True,
    flag_type: QualityFlagType | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AnalysisQualityFlag], int]:
    query = db.query(AnalysisQualityFlag)
    if unresolved_only:
        query = query.filter(AnalysisQualityFlag.resolved_at.is_(None))
    if flag_type:
        query = query.filter(AnalysisQualityFlag.flag_type == flag_type.value)
    total = query.count()
    items = (
        query.order_by(AnalysisQualityFlag.flagged_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_quality_stats(db: Session, days: int = 7) -> dict:
    """Flag counts per type over the window: {type: {total, unresolved}}."""
    since = utcnow() - timedelta(days=days)
    flags = (
        db.query(AnalysisQualityFlag)
        .filter(AnalysisQualityFlag.flagged_at >= since)
        .all()
    )
    by_type = {t.value: {"total": 0, "unresolved": 0} for t in QualityFlagType}
    for flag in flags:
        bucket = by_type.setdefault(flag.flag_type, {"total": 0, "unresolved": 0})
        bucket["total"] += 1
        if flag.resolved_at is None:
            bucket["unresolved"] += 1

    analyses = (
        db.query(ConversationAnalysis)
        .filter(ConversationAnalysis.created_at >= since)
        .count()
    )
    flagged_ids = {flag.analysis_id for flag in flags}
    return {
        "days": days,
        "total_analyses": analyses,
        "flagged_analyses": len(flagged_ids),
        "by_type": by_type,
    }


def get_flag(db: Session, flag_id: UUID) -> AnalysisQualityFlag | None:
    return db.query(AnalysisQualityFlag).filter(AnalysisQualityFlag.id == flag_id).first()


def resolve_flag(db: Session, flag: AnalysisQualityFlag, resolved_by: UUID) -> AnalysisQualityFlag:
    if flag.resolved_at is None:
        flag.resolved_at = utcnow()
        flag.resolved_by = resolved_by
        db.commit()
        db.refresh(flag)
    return flag
