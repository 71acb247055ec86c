"""Deal heat scoring from the structured call summary of an analysis."""

from __future__ import annotations

from dataclasses import dataclass, field

from app.db.enums import HeatLevel

CRITICAL_WEIGHT = 3
BUSINESS_WEIGHT = 2
GENERAL_WEIGHT = 1
COMMITMENT_WEIGHT = 2
ENGAGEMENT_WEIGHT = 1

NEAR_TERM_TIMELINE_TERMS = ("friday", "this week", "immediate", "asap")
CLOSING_TIMELINE_TERMS = ("contract", "execute", "sign", "docs")

RESISTANCE_LEVEL_PENALTY = {"high": 8, "medium": 4}
RESISTANCE_PHRASE_PENALTIES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("not actively looking", "not looking for", "no immediate need"), 3),
    (("budget constraints", "budget concerns", "cost concerns"), 2),
    (("satisfied with current", "current solution works"), 2),
    (("timing concerns", "not the right time"), 1),
)

POSITIVE_RECOMMENDATIONS = {"Push", "Accelerate", "Close", "Follow up aggressively"}


@dataclass
class HeatBreakdown:
    """Intermediate values behind a heat level (returned for debugging/UI)."""

    level: HeatLevel
    score: int = 0
    urgency_score: int = 0
    resistance_penalty: int = 0
    pain_level: str = "low"
    critical_factors: int = 0
    business_factors: int = 0
    commitment_signals: int = 0
    evidence: list[str] = field(default_factory=list)


def _first(*values):
    for value in values:
        if value not in (None, "", [], {}):
            return value
    return None


def _as_list(value) -> list:
    if isinstance(value, list):
        return value
    return []


def _section(summary: dict, key: str) -> dict:
    value = summary.get(key)
    return value if isinstance(value, dict) else {}


def _signal_count(summary: dict) -> int:
    """Count of signals the scoring can use; zero means the summary is empty."""
    urgency = _section(summary, "urgencyDrivers")
    buying = _section(summary, "buyingSignalsAnalysis")
    resistance = _section(summary, "resistanceAnalysis")
    pain = _section(summary, "painSeverity")
    lists = (
        urgency.get("criticalFactors"),
        urgency.get("businessFactors"),
        urgency.get("generalFactors"),
        summary.get("critical_factors"),
        summary.get("business_factors"),
        summary.get("general_factors"),
        buying.get("commitmentSignals"),
        buying.get("engagementSignals"),
        summary.get("commitment_signals"),
        summary.get("engagement_signals"),
        resistance.get("signals"),
        summary.get("resistance_signals"),
    )
    count = sum(len(_as_list(item)) for item in lists)
    if (
        pain.get("level")
        or summary.get("pain_level")
        or resistance.get("level")
        or summary.get("resistance_level")
    ):
        count += 1
    timeline = _section(summary, "timelineAnalysis")
    if (
        timeline.get("statedTimeline")
        or timeline.get("businessDriver")
        or urgency.get("primary")
        or summary.get("stated_timeline")
        or summary.get("business_driver")
    ):
        count += 1
    return count


def calculate_deal_heat(call_summary: dict | None) -> HeatBreakdown:
    """
    Score a call summary into HIGH / MEDIUM / LOW.

    urgency (3/2/1 per critical/business/general factor) + buying signals
    (2 per commitment, 1 per engagement) + timeline keywords, minus a
    resistance penalty, floored at zero.
    """
    summary = call_summary if isinstance(call_summary, dict) else {}
    pain = _section(summary, "painSeverity")
    urgency = _section(summary, "urgencyDrivers")
    buying = _section(summary, "buyingSignalsAnalysis")
    timeline = _section(summary, "timelineAnalysis")
    resistance = _section(summary, "resistanceAnalysis")

    pain_level = str(_first(pain.get("level"), summary.get("pain_level")) or "low").lower()

    critical = _as_list(_first(urgency.get("criticalFactors"), summary.get("critical_factors")))
    business = _as_list(_first(urgency.get("businessFactors"), summary.get("business_factors")))
    general = _as_list(_first(urgency.get("generalFactors"), summary.get("general_factors")))
    urgency_score = (
        len(critical) * CRITICAL_WEIGHT
        + len(business) * BUSINESS_WEIGHT
        + len(general) * GENERAL_WEIGHT
    )

    commitment = _as_list(
        _first(buying.get("commitmentSignals"), summary.get("commitment_signals"))
    )
    engagement = _as_list(
        _first(buying.get("engagementSignals"), summary.get("engagement_signals"))
    )

    score = urgency_score
    score += len(commitment) * COMMITMENT_WEIGHT
    score += len(engagement) * ENGAGEMENT_WEIGHT

    stated_timeline = _first(timeline.get("statedTimeline"), summary.get("stated_timeline")) or ""
    business_driver = (
        _first(
            timeline.get("businessDriver"),
            urgency.get("primary"),
            summary.get("business_driver"),
        )
        or ""
    )
    timeline_text = f"{stated_timeline} {business_driver}".lower()
    if any(term in timeline_text for term in NEAR_TERM_TIMELINE_TERMS):
        score += 3
    if any(term in timeline_text for term in CLOSING_TIMELINE_TERMS):
        score += 2

    resistance_level = str(
        _first(resistance.get("level"), summary.get("resistance_level")) or "none"
    ).lower()
    resistance_signals = _as_list(
        _first(resistance.get("signals"), summary.get("resistance_signals"))
    )
    penalty = RESISTANCE_LEVEL_PENALTY.get(resistance_level, 0)
    resistance_text = " ".join(str(s) for s in resistance_signals).lower()
    for phrases, points in RESISTANCE_PHRASE_PENALTIES:
        if any(phrase in resistance_text for phrase in phrases):
            penalty += points

    score = max(0, score - penalty)
    commitment_count = len(commitment)

    if (
        pain_level == "high"
        or len(critical) >= 1
        or score >= 8
        or (commitment_count >= 2 and score >= 6)
        or (pain_level == "medium" and commitment_count >= 2 and score >= 5)
    ):
        level = HeatLevel.HIGH
    elif pain_level == "medium" or len(business) >= 1 or score >= 3:
        level = HeatLevel.MEDIUM
    else:
        level = HeatLevel.LOW

    return HeatBreakdown(
        level=level,
        score=score,
        urgency_score=urgency_score,
        resistance_penalty=penalty,
        pain_level=pain_level,
        critical_factors=len(critical),
        business_factors=len(business),
        commitment_signals=commitment_count,
        evidence=[str(i) for i in _as_list(pain.get("indicators"))[:2]],
    )


def _fallback_heat_level(
    recommendations: dict | None,
    guidance: dict | None,
    challenger_scores: dict | None,
) -> HeatLevel:
    """Heat for analyses whose call summary has nothing to score."""
    for source in (recommendations, guidance):
        if isinstance(source, dict) and source.get("recommendation") in POSITIVE_RECOMMENDATIONS:
            return HeatLevel.MEDIUM

    if isinstance(challenger_scores, dict):
        values = []
        for key in ("teaching", "tailoring", "control"):
            try:
                values.append(float(challenger_scores.get(key) or 0))
            except (TypeError, ValueError):
                values.append(0.0)
        if sum(values) / 3.0 >= 4.0:
            return HeatLevel.MEDIUM

    return HeatLevel.LOW


def determine_heat_level(
    call_summary: dict | None,
    recommendations: dict | None = None,
    guidance: dict | None = None,
    challenger_scores: dict | None = None,
) -> HeatLevel:
    """Heat level to store on an analysis."""
    summary = call_summary if isinstance(call_summary, dict) else {}
    if _signal_count(summary) == 0:
        return _fallback_heat_level(recommendations, guidance, challenger_scores)
    return calculate_deal_heat(summary).level
