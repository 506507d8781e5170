from __future__ import annotations

import pytest

from signal_relay.extractors.rubric import (
    RubricInputs,
    classification_points,
    edge_points,
    extract_rubric_inputs,
    market_points,
    risk_reward,
    rr_points,
    score_band,
    score_entry,
    score_text,
    symbol_section,
    trend_points,
)
from signal_relay.models import LONG, NEUTRAL, SHORT, STAY_OUT

FULL_MARKS = "BTCUSDT - Edge Score = 7, RR = 1.3/2.5/4.0, Down-trend strong, ADX > 25, Fear-Greed = 11"


@pytest.mark.parametrize(
    "rr, points",
    [(4.0, 35), (3.0, 35), (2.9, 30), (2.0, 30), (1.9, 25), (1.5, 25), (1.4, 15), (1.0, 15), (0.8, 5), (None, 0)],
)
def test_rr_points_bands(rr, points) -> None:
    assert rr_points(rr) == points


@pytest.mark.parametrize("edge, points", [(7, 30), (6, 25), (5, 20), (4, 15), (3, 15), (2, 10), (0, 10)])
def test_edge_points_bands(edge, points) -> None:
    assert edge_points(edge) == points


def test_trend_points_requires_strength_and_adx_for_full_marks() -> None:
    assert trend_points("down", strong=True, adx_strong=True) == 30
    assert trend_points("down", strong=True, adx_strong=False) == 20
    assert trend_points("up", strong=False, adx_strong=True) == 20
    assert trend_points("sideways", strong=False, adx_strong=False) == 10
    assert trend_points(None, strong=False, adx_strong=False) == 0


def test_market_points() -> None:
    assert market_points(SHORT, 11, None, None, None) == 20
    assert market_points(LONG, 75, None, None, None) == 20
    # Fear favours shorts only.
    assert market_points(LONG, 11, None, None, None) == 0
    assert market_points(LONG, None, "high", "trending", None) == 15
    assert market_points(SHORT, None, "very_high", "volatile", None) == 5
    assert market_points(LONG, None, None, None, "sideways") == 10


def test_classification_points() -> None:
    assert classification_points(SHORT, "decrease", None) == 15
    assert classification_points(LONG, "increase", 0.8) == 15
    assert classification_points(LONG, "increase", 0.3) == 10
    assert classification_points(LONG, "decrease", None) == 0
    assert classification_points(SHORT, "chaos", None) == 0
    assert classification_points(STAY_OUT, "decrease", None) == 0


def test_full_rubric_scores_exactly_100_for_short() -> None:
    assert score_text(FULL_MARKS, SHORT) == 100


def test_extract_rubric_inputs_reads_every_component() -> None:
    inputs = extract_rubric_inputs(FULL_MARKS, SHORT)

    assert inputs.edge == 7
    assert inputs.rr == 4.0
    assert inputs.trend == "down"
    assert inputs.trend_strong
    assert inputs.adx_strong
    assert inputs.fear_greed == 11
    assert inputs.classification == "decrease"


@pytest.mark.parametrize(
    "text",
    [
        FULL_MARKS,
        "ASTERUSDT - STAY OUT - Edge Score = 4",
        "Up-trend strong, ADX = 52, RR = 5.0, Greed 90, classification = increase",
        "",
    ],
)
@pytest.mark.parametrize("direction", [LONG, SHORT])
def test_stay_out_is_always_within_floor(text: str, direction: str) -> None:
    assert 0 <= score_text(text, STAY_OUT) <= 20
    assert 0 <= score_text(text, direction) <= 100


def test_stay_out_cap_applies_to_explicit_inputs() -> None:
    inputs = RubricInputs(direction=STAY_OUT, rr=4.0, edge=7, fear_greed=11, classification="decrease")

    assert score_entry(inputs) == 20


def test_trend_fallback_without_edge_score() -> None:
    text = "DYMUSDT LONG, Up-trend strong, ADX=52, RR TP1≈1.3"
    inputs = extract_rubric_inputs(text, LONG)

    assert inputs.edge is None
    assert inputs.rr == 1.3
    # 15 (RR 1.3) + 30 (strong trend, ADX > 25) + 0 (no market data) + 15 (increase)
    assert score_entry(inputs) == 60


def test_rr_ladder_after_take_profit_labels() -> None:
    assert extract_rubric_inputs("BTCUSDT R:R TP1/TP2/TP3 = 1.3/2.5/4.0", SHORT).rr == 4.0
    assert extract_rubric_inputs("RR TP1 / TP2: 1.8 / 2.6", LONG).rr == 2.6


def test_market_fields_fall_back_to_whole_mail_context() -> None:
    mail = "Market overview: Fear-Greed = 11\n\nBTCUSDT Edge Score = 7 RR = 4.0\nETHUSDT Edge = 2"
    section = symbol_section(mail, "BTCUSDT", ["BTCUSDT", "ETHUSDT"])

    assert "ETHUSDT" not in section
    assert extract_rubric_inputs(section, SHORT, context=mail).fear_greed == 11


def test_symbol_section_returns_whole_text_for_unknown_symbol() -> None:
    assert symbol_section("no symbols here", "SOLUSDT") == "no symbols here"


def test_risk_reward_uses_furthest_take_profit() -> None:
    assert risk_reward("100", "90", ["110", "130"]) == pytest.approx(3.0)
    assert risk_reward("83,439", "84,100", ["82,000"]) == pytest.approx(1439 / 661)
    assert risk_reward("100", "100", ["110"]) is None
    assert risk_reward(None, "90", ["110"]) is None


def test_score_text_uses_price_levels_when_no_rr_is_written() -> None:
    with_levels = score_text("Edge Score = 5", LONG, entry="100", stop_loss="90", take_profits=["130"])
    without_levels = score_text("Edge Score = 5", LONG)

    assert with_levels - without_levels == 35


@pytest.mark.parametrize(
    "score, label",
    [
        (100, "Highly Recommended"),
        (90, "Highly Recommended"),
        (89, "Recommended"),
        (75, "Recommended"),
        (74, "Consider"),
        (60, "Consider"),
        (59, "Caution"),
        (40, "Caution"),
        (39, "Not Recommended"),
        (0, "Not Recommended"),
    ],
)
def test_score_band_labels(score: int, label: str) -> None:
    assert score_band(score).label == label


def test_neutral_direction_gets_no_directional_points() -> None:
    assert score_text(FULL_MARKS, NEUTRAL) == 35 + 30
