from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence

from signal_relay.models import LONG, SHORT, STAY_OUT

STAY_OUT_MAX_SCORE = 20

# Sent verbatim to the model, both for extraction and for chat answers, so the
# same text yields the same band run-to-run.
ENTRY_SCORE_RULES = """
IMPORTANT - HOW TO COMPUTE entryScore (0-100):
----------------------------------------------
entryScore rates how GOOD a signal is, using ONLY data present in the email.
Add up the four components below. Do not use your own judgement instead.

STEP 1: RISK:REWARD (R:R) - up to 35 points
   R:R = |TP - Entry| / |SL - Entry| (use the furthest TP, or the largest
   value of an "RR" ladder such as "1.3 / 2.5 / 4.0" -> 4.0)
   - R:R >= 3.0           -> 35 points
   - 2.0 <= R:R < 3.0     -> 30 points
   - 1.5 <= R:R < 2.0     -> 25 points
   - 1.0 <= R:R < 1.5     -> 15 points
   - R:R < 1.0            -> 5 points

STEP 2: EDGE SCORE / TREND STRENGTH - up to 30 points
   If the email states an "Edge Score" (0-7, e.g. "Edge = 7", "Edge Score* = 7"):
   - Edge 7 -> 30, Edge 6 -> 25, Edge 5 -> 20, Edge 3-4 -> 15, Edge <= 2 -> 10
   Otherwise use the trend:
   - "Down-trend strong" / "Up-trend strong" with "ADX > 25" -> 30 points
   - "Down-trend" / "Up-trend" (not strong)                -> 20 points
   - "Sideways"                                            -> 10 points

STEP 3: MARKET CONTEXT - up to 20 points
   - Fear-Greed aligned with the direction (Fear-Greed < 20 for SHORT,
     > 70 for LONG)                                        -> 20 points
   - Volatility "high" + Regime "trending"                 -> 15 points
   - Volatility "very_high" + Regime "volatile"            -> 5 points
   - Sideways market                                       -> 10 points

STEP 4: CLASSIFICATION & DECISION - up to 15 points
   - Classification "increase"/"decrease" matching a LONG/SHORT decision -> 15
   - Classification "increase"/"decrease" but confidence < 0.5           -> 10
   - Classification "chaos" or decision STAY_OUT                          -> 0

FINAL BANDS:
- 90-100: Highly Recommended
- 75-89:  Recommended
- 60-74:  Consider
- 40-59:  Caution
- 0-39:   Not Recommended

RULES:
- A STAY_OUT signal always scores between 0 and 20.
- If an Edge Score is present, it takes priority over the trend.
- entryScore is REQUIRED for every LONG/SHORT signal.

WORKED EXAMPLES:
- "BTCUSDT - Edge Score = 7, RR = 1.3/2.5/4.0, Down-trend strong, ADX > 25,
  Fear-Greed = 11", decision SHORT
  -> 35 (RR 4.0) + 30 (Edge 7) + 20 (Fear 11 favours SHORT) + 15 (decrease) = 100
- "ASTERUSDT - STAY OUT - Edge Score = 4" -> 0
"""


@dataclass(frozen=True)
class ScoreBand:
    minimum: int
    label: str
    icon: str


SCORE_BANDS: Sequence[ScoreBand] = (
    ScoreBand(90, "Highly Recommended", "🔥🔥🔥"),
    ScoreBand(75, "Recommended", "⭐⭐"),
    ScoreBand(60, "Consider", "⭐"),
    ScoreBand(40, "Caution", "⚠️"),
    ScoreBand(0, "Not Recommended", "❌"),
)


def score_band(score: int) -> ScoreBand:
    for band in SCORE_BANDS:
        if score >= band.minimum:
            return band
    return SCORE_BANDS[-1]


@dataclass(frozen=True)
class RubricInputs:
    direction: str
    rr: Optional[float] = None
    edge: Optional[int] = None
    # "up" | "down" | "sideways"
    trend: Optional[str] = None
    trend_strong: bool = False
    adx_strong: bool = False
    fear_greed: Optional[int] = None
    # "low" | "medium" | "high" | "very_high"
    volatility: Optional[str] = None
    # "trending" | "volatile" | "sideways"
    regime: Optional[str] = None
    # "increase" | "decrease" | "chaos"
    classification: Optional[str] = None
    classification_confidence: Optional[float] = None


# --- component tables ---

def rr_points(rr: Optional[float]) -> int:
    if rr is None:
        return 0
    if rr >= 3.0:
        return 35
    if rr >= 2.0:
        return 30
    if rr >= 1.5:
        return 25
    if rr >= 1.0:
        return 15
    return 5


def edge_points(edge: int) -> int:
    if edge >= 7:
        return 30
    if edge == 6:
        return 25
    if edge == 5:
        return 20
    if edge >= 3:
        return 15
    return 10


def trend_points(trend: Optional[str], strong: bool, adx_strong: bool) -> int:
    if trend in ("up", "down"):
        return 30 if strong and adx_strong else 20
    if trend == "sideways":
        return 10
    return 0


def market_points(
    direction: str,
    fear_greed: Optional[int],
    volatility: Optional[str],
    regime: Optional[str],
    trend: Optional[str],
) -> int:
    if fear_greed is not None:
        if direction == SHORT and fear_greed < 20:
            return 20
        if direction == LONG and fear_greed > 70:
            return 20
    if volatility == "high" and regime == "trending":
        return 15
    if volatility == "very_high" and regime == "volatile":
        return 5
    if trend == "sideways" or regime == "sideways":
        return 10
    return 0


def classification_points(
    direction: str, classification: Optional[str], confidence: Optional[float]
) -> int:
    if direction == STAY_OUT or classification not in ("increase", "decrease"):
        return 0
    if confidence is not None and confidence < 0.5:
        return 10
    if (classification, direction) in (("increase", LONG), ("decrease", SHORT)):
        return 15
    return 0


def score_entry(inputs: RubricInputs) -> int:
    """Sum the four rubric components into a 0-100 entry score."""
    if inputs.edge is not None:
        strength = edge_points(inputs.edge)
    else:
        strength = trend_points(inputs.trend, inputs.trend_strong, inputs.adx_strong)

    total = (
        rr_points(inputs.rr)
        + strength
        + market_points(
            inputs.direction, inputs.fear_greed, inputs.volatility, inputs.regime, inputs.trend
        )
        + classification_points(
            inputs.direction, inputs.classification, inputs.classification_confidence
        )
    )
    total = max(0, min(100, total))
    if inputs.direction == STAY_OUT:
        total = min(total, STAY_OUT_MAX_SCORE)
    return total


# --- text extraction ---

_EDGE = re.compile(r"\bedge(?:\s*score)?\s*\*?\s*[=:]\s*(\d+)", re.I)
_RR = re.compile(
    r"\bR\s*[:/]?\s*R\b(?:\s*\(TP\s*-\s*SL\))?(?:\s*TP\d(?:\s*/\s*TP\d)*)?[^\d\n]{0,12}"
    r"(\d+(?:\.\d+)?(?:\s*/\s*\d+(?:\.\d+)?)*)",
    re.I,
)
_TREND = re.compile(r"(strong\s+)?\b(up|down)\s*-?\s*trend\b(\s*[-,(]?\s*strong)?", re.I)
_SIDEWAYS = re.compile(r"\bsideways?\b", re.I)
_ADX = re.compile(r"\bADX\s*(>=|≥|>|=|:)?\s*(\d+(?:\.\d+)?)", re.I)
_FEAR_GREED = re.compile(r"\bfear\s*[-&/]?\s*(?:and\s+)?greed(?:\s*index)?\s*[=:]?\s*(\d{1,3})", re.I)
_VOLATILITY = re.compile(r"\bvolatility\s*[=:]?\s*[\"']?(very[_ ]high|high|medium|low)", re.I)
_REGIME = re.compile(r"\bregime\s*[=:]?\s*[\"']?(trending|volatile|sideways|ranging)", re.I)
_CLASSIFICATION = re.compile(r"\bclassification\s*[=:]?\s*[\"']?(increase|decrease|chaos)", re.I)
_CONFIDENCE = re.compile(r"\bconfidence\s*[=:]\s*(\d*\.?\d+)\s*(%?)", re.I)


def parse_price(value: Optional[str]) -> Optional[float]:
    """Parse a price string like '83,439' or '0.1880' into a float."""
    if not value:
        return None
    match = re.search(r"\d[\d,]*(?:\.\d+)?", value)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def risk_reward(
    entry: Optional[str], stop_loss: Optional[str], take_profits: Iterable[str]
) -> Optional[float]:
    """R:R against the furthest take-profit, or None when levels are missing."""
    entry_price = parse_price(entry)
    stop_price = parse_price(stop_loss)
    if entry_price is None or stop_price is None:
        return None
    risk = abs(entry_price - stop_price)
    if risk == 0:
        return None
    rewards = [abs(p - entry_price) for p in map(parse_price, take_profits) if p is not None]
    if not rewards:
        return None
    return max(rewards) / risk


def symbol_section(text: str, symbol: str, other_symbols: Iterable[str] = ()) -> str:
    """Slice of `text` from the first mention of `symbol` up to the next other symbol."""
    upper = text.upper()
    start = upper.find(symbol.upper())
    if start < 0:
        return text
    end = len(text)
    for other in other_symbols:
        if other.upper() == symbol.upper():
            continue
        pos = upper.find(other.upper(), start + len(symbol))
        if 0 <= pos < end:
            end = pos
    return text[start:end]


def _rr_from_text(text: str) -> Optional[float]:
    match = _RR.search(text)
    if not match:
        return None
    values = [float(v) for v in re.split(r"\s*/\s*", match.group(1)) if v]
    return max(values) if values else None


def _trend_from_text(text: str) -> tuple[Optional[str], bool]:
    match = _TREND.search(text)
    if match:
        strong = bool(match.group(1) or match.group(3))
        return match.group(2).lower(), strong
    if _SIDEWAYS.search(text):
        return "sideways", False
    return None, False


def _adx_strong(text: str) -> bool:
    for match in _ADX.finditer(text):
        op, value = match.group(1), float(match.group(2))
        if value > 25 or (op in (">", ">=", "≥") and value >= 25):
            return True
    return False


def _classification_confidence(text: str) -> Optional[float]:
    match = _CONFIDENCE.search(text)
    if not match:
        return None
    value = float(match.group(1))
    if match.group(2) or value > 1:
        value /= 100
    return value


def extract_rubric_inputs(text: str, direction: str, context: str = "") -> RubricInputs:
    """
    Read rubric inputs from free text.
    `text` is the signal's own section; `context` (usually the whole mail)
    is consulted for market-wide fields the section does not mention.
    """
    edge_match = _EDGE.search(text)
    trend, trend_strong = _trend_from_text(text)

    classification_match = _CLASSIFICATION.search(text)
    if classification_match:
        classification: Optional[str] = classification_match.group(1).lower()
    elif trend == "up":
        classification = "increase"
    elif trend == "down":
        classification = "decrease"
    else:
        classification = None

    def market(pattern: re.Pattern) -> Optional[str]:
        match = pattern.search(text) or (pattern.search(context) if context else None)
        return match.group(1) if match else None

    fear_greed = market(_FEAR_GREED)
    volatility = market(_VOLATILITY)
    regime = market(_REGIME)

    return RubricInputs(
        direction=direction,
        rr=_rr_from_text(text),
        edge=int(edge_match.group(1)) if edge_match else None,
        trend=trend,
        trend_strong=trend_strong,
        adx_strong=_adx_strong(text),
        fear_greed=int(fear_greed) if fear_greed is not None else None,
        volatility=volatility.lower().replace(" ", "_") if volatility else None,
        regime=regime.lower() if regime else None,
        classification=classification,
        classification_confidence=_classification_confidence(text),
    )


def score_text(
    text: str,
    direction: str,
    *,
    context: str = "",
    entry: Optional[str] = None,
    stop_loss: Optional[str] = None,
    take_profits: Sequence[str] = (),
) -> int:
    """Deterministic entry score for one signal described in `text`."""
    inputs = extract_rubric_inputs(text, direction, context)
    if inputs.rr is None:
        inputs = replace(inputs, rr=risk_reward(entry, stop_loss, take_profits))
    return score_entry(inputs)


def describe_components(inputs: RubricInputs) -> List[str]:
    """Human-readable breakdown, e.g. for debugging a disputed score."""
    strength = (
        f"edge {inputs.edge} -> {edge_points(inputs.edge)}"
        if inputs.edge is not None
        else f"trend {inputs.trend or '-'} -> "
        f"{trend_points(inputs.trend, inputs.trend_strong, inputs.adx_strong)}"
    )
    return [
        f"R:R {inputs.rr if inputs.rr is not None else '-'} -> {rr_points(inputs.rr)}",
        strength,
        "market -> "
        f"{market_points(inputs.direction, inputs.fear_greed, inputs.volatility, inputs.regime, inputs.trend)}",
        "classification -> "
        f"{classification_points(inputs.direction, inputs.classification, inputs.classification_confidence)}",
    ]
