"""Tests for deal heat scoring."""

from app.db.enums import HeatLevel
from app.services.deal_heat import calculate_deal_heat, determine_heat_level


def test_empty_summary_without_other_signals_is_low():
    assert determine_heat_level({}) == HeatLevel.LOW
    assert determine_heat_level(None) == HeatLevel.LOW


def test_high_pain_is_hot():
    summary = {"painSeverity": {"level": "high", "indicators": ["Losing deals weekly"]}}
    breakdown = calculate_deal_heat(summary)
    assert breakdown.level == HeatLevel.HIGH
    assert breakdown.evidence == ["Losing deals weekly"]


def test_single_critical_factor_is_hot():
    summary = {"urgencyDrivers": {"criticalFactors": ["Contract with incumbent ends in May"]}}
    breakdown = calculate_deal_heat(summary)
    assert breakdown.level == HeatLevel.HIGH
    assert breakdown.urgency_score == 3


def test_business_factor_is_medium():
    summary = {"urgencyDrivers": {"businessFactors": ["Board wants a plan"]}}
    assert calculate_deal_heat(summary).level == HeatLevel.MEDIUM


def test_single_general_factor_is_low():
    summary = {"urgencyDrivers": {"generalFactors": ["Interested in improving"]}}
    breakdown = calculate_deal_heat(summary)
    assert breakdown.level == HeatLevel.LOW
    assert breakdown.score == 1


def test_commitment_signals_make_deal_hot():
    summary = {
        "buyingSignalsAnalysis": {
            "commitmentSignals": ["Asked for pricing", "Booked a demo"],
            "engagementSignals": ["Brought their CTO", "Asked about onboarding"],
        }
    }
    breakdown = calculate_deal_heat(summary)
    assert breakdown.score == 6
    assert breakdown.level == HeatLevel.HIGH


def test_high_resistance_cools_deal():
    summary = {
        "buyingSignalsAnalysis": {
            "commitmentSignals": ["Asked for pricing", "Booked a demo"],
            "engagementSignals": ["Brought their CTO", "Asked about onboarding"],
        },
        "resistanceAnalysis": {"level": "high", "signals": []},
    }
    breakdown = calculate_deal_heat(summary)
    assert breakdown.resistance_penalty == 8
    assert breakdown.score == 0
    assert breakdown.level == HeatLevel.LOW


def test_resistance_phrases_add_penalty():
    summary = {
        "buyingSignalsAnalysis": {"engagementSignals": ["a", "b", "c", "d"]},
        "resistanceAnalysis": {"level": "low", "signals": ["Customer mentioned budget constraints"]},
    }
    breakdown = calculate_deal_heat(summary)
    assert breakdown.resistance_penalty == 2
    assert breakdown.score == 2
    assert breakdown.level == HeatLevel.LOW


def test_timeline_keywords_add_points():
    summary = {"timelineAnalysis": {"statedTimeline": "Sign the contract this week"}}
    breakdown = calculate_deal_heat(summary)
    assert breakdown.score == 5
    assert breakdown.level == HeatLevel.MEDIUM

    summary["buyingSignalsAnalysis"] = {"engagementSignals": ["a", "b", "c"]}
    assert calculate_deal_heat(summary).level == HeatLevel.HIGH


def test_snake_case_summary_keys_are_scored():
    assert calculate_deal_heat({"critical_factors": ["Audit deadline"]}).level == HeatLevel.HIGH
    assert calculate_deal_heat({"pain_level": "medium"}).level == HeatLevel.MEDIUM


def test_snake_case_summary_is_not_treated_as_empty():
    assert determine_heat_level({"pain_level": "high"}) == HeatLevel.HIGH

    timeline = {"stated_timeline": "sign the contract docs by friday"}
    assert determine_heat_level(timeline) == HeatLevel.MEDIUM

    driver = {"urgencyDrivers": {"primary": "Execute contract ASAP"}}
    assert determine_heat_level(driver) == HeatLevel.MEDIUM

    # a scored LOW wins over the recommendation fallback
    level = determine_heat_level({"pain_level": "low"}, recommendations={"recommendation": "Push"})
    assert level == HeatLevel.LOW


def test_fallback_uses_positive_recommendation():
    level = determine_heat_level({}, recommendations={"recommendation": "Push"})
    assert level == HeatLevel.MEDIUM

    level = determine_heat_level({}, guidance={"recommendation": "Close"})
    assert level == HeatLevel.MEDIUM


def test_fallback_uses_strong_challenger_scores():
    strong = {"teaching": 5, "tailoring": 4, "control": 4}
    weak = {"teaching": 3, "tailoring": 3, "control": 3}
    assert determine_heat_level({}, challenger_scores=strong) == HeatLevel.MEDIUM
    assert determine_heat_level({}, challenger_scores=weak) == HeatLevel.LOW


def test_garbage_summary_does_not_raise():
    summary = {"urgencyDrivers": "soon", "buyingSignalsAnalysis": ["x"], "painSeverity": None}
    assert determine_heat_level(summary) == HeatLevel.LOW
