from __future__ import annotations

import json
import math
import re
from dataclasses import replace
from typing import Any, Dict, List, Optional

from signal_relay.errors import ProcessingError
from signal_relay.extractors.rubric import (
    ENTRY_SCORE_RULES,
    STAY_OUT_MAX_SCORE,
    describe_components,
    extract_rubric_inputs,
    score_text,
    symbol_section,
)
from signal_relay.llm.client import LLMClient
from signal_relay.models import (
    DIRECTIONS,
    NEUTRAL,
    STAY_OUT,
    ActionItem,
    AnalysisResult,
    NormalizedMail,
    TradingSignal,
)
from signal_relay.parsing.parser import mail_text
from signal_relay.utils.logger import get_logger

log = get_logger(__name__)

DEFAULT_CONFIDENCE = 0.5

SYSTEM_INSTRUCTION = f"""You are a professional crypto trading-signal analyst.
Task: extract EVERY trading signal from the email and rate how good each one is.

Return a single JSON object (NOT wrapped in markdown) with this structure:
{{
  "subject": "string",
  "sender": "string",
  "summary": "Short overall market summary",
  "signals": [
    {{
      "symbol": "BTCUSDT",
      "direction": "LONG" | "SHORT" | "STAY_OUT" | "NEUTRAL",
      "entry": "Entry price (e.g. 83439)",
      "stopLoss": "Stop-loss price (e.g. 84100)",
      "takeProfits": ["TP1", "TP2", "TP3"],
      "reason": "Short reason",
      "timeframe": "1h",
      "entryScore": 85
    }}
  ],
  "actionItems": [],
  "confidence": 0.9
}}
{ENTRY_SCORE_RULES}
Notes:
- If a coin appears on several timeframes, pick the PRIORITY one (usually the
  short 1h or 4h timeframe with the strongest signal).
- For summary tables, take every coin with a LONG/SHORT signal. STAY_OUT coins
  may be skipped or kept when relevant.
- Read the email carefully and extract Edge Score, RR, trend and market
  context exactly as written before scoring."""


def build_prompt(mail: NormalizedMail) -> str:
    lines = [
        f"Subject: {mail.subject}",
        f"From: {mail.from_}",
        f"To: {mail.to}",
        f"Date: {mail.date}",
        f"Snippet: {mail.snippet}",
        "Body:",
        mail.html_text or mail.plain_text or "(no body)",
    ]
    return "Analyze the following email:\n\n" + "\n".join(lines)


_FENCE = re.compile(r"```(?:json)?", re.I)


def parse_analysis(text: str, mail_id: str) -> Dict[str, Any]:
    """Strip markdown fences and parse the model output into a loose dict."""
    cleaned = _FENCE.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        raise ProcessingError(
            "Model returned invalid JSON.", {"mail_id": mail_id, "raw": text}
        ) from None
    if not isinstance(data, dict):
        raise ProcessingError(
            "Model returned JSON that is not an object.", {"mail_id": mail_id, "raw": text}
        )
    return data


# --- sanitizing projection ---

def _is_number(value: Any) -> bool:
    # bool is an int subclass; true/false are never valid numbers here.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def sanitize_confidence(value: Any) -> float:
    # Range check first: NaN fails it, and huge ints never reach float().
    if _is_number(value) and 0 <= value <= 1:
        return float(value)
    return DEFAULT_CONFIDENCE


def _clean_text(value: Any) -> Optional[str]:
    if _is_number(value):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def sanitize_action_items(items: Any) -> List[ActionItem]:
    if not isinstance(items, list):
        return []
    result: List[ActionItem] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = _clean_text(item.get("title")) if isinstance(item.get("title"), str) else None
        if not title:
            continue
        result.append(
            ActionItem(
                title=title,
                owner=_clean_text(item.get("owner")),
                due_date=_clean_text(item.get("dueDate")),
                priority=_clean_text(item.get("priority")),
            )
        )
    return result


def sanitize_direction(value: Any) -> str:
    if isinstance(value, str) and value.strip() in DIRECTIONS:
        return value.strip()
    return NEUTRAL


def sanitize_entry_score(value: Any, direction: str) -> Optional[int]:
    """Out-of-range or non-numeric scores are dropped, never clamped."""
    if not _is_number(value) or not 0 <= value <= 100:
        return None
    # Half-up, not banker's rounding: 84.5 -> 85.
    score = math.floor(value + 0.5)
    if direction == STAY_OUT:
        score = min(score, STAY_OUT_MAX_SCORE)
    return score


def sanitize_take_profits(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [tp for tp in (_clean_text(v) for v in value) if tp]


def sanitize_signals(items: Any) -> List[TradingSignal]:
    if not isinstance(items, list):
        return []
    result: List[TradingSignal] = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("symbol"), str):
            continue
        symbol = item["symbol"].strip().upper()
        if not symbol:
            continue
        direction = sanitize_direction(item.get("direction"))
        result.append(
            TradingSignal(
                symbol=symbol,
                direction=direction,
                entry=_clean_text(item.get("entry")),
                stop_loss=_clean_text(item.get("stopLoss")),
                take_profits=tuple(sanitize_take_profits(item.get("takeProfits"))),
                reason=_clean_text(item.get("reason")),
                timeframe=_clean_text(item.get("timeframe")),
                entry_score=sanitize_entry_score(item.get("entryScore"), direction),
            )
        )
    return result


def sanitize_analysis(raw: Dict[str, Any], mail_id: str) -> AnalysisResult:
    """Project the loosely-typed model output onto the strict AnalysisResult."""
    subject = raw.get("subject")
    if not isinstance(subject, str) or not subject.strip():
        raise ProcessingError("Model output is missing the subject.", {"mail_id": mail_id, "raw": raw})

    return AnalysisResult(
        mail_id=mail_id,
        subject=subject.strip(),
        sender=_clean_text(raw.get("sender")) or "",
        summary=_clean_text(raw.get("summary")) or "",
        action_items=tuple(sanitize_action_items(raw.get("actionItems"))),
        confidence=sanitize_confidence(raw.get("confidence")),
        signals=tuple(sanitize_signals(raw.get("signals"))),
    )


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def analysis_to_payload(result: AnalysisResult) -> Dict[str, Any]:
    """Wire (camelCase) shape of an analysis, as the model is asked to return it."""
    return {
        "mailId": result.mail_id,
        "subject": result.subject,
        "sender": result.sender,
        "summary": result.summary,
        "actionItems": [
            _drop_none(
                {
                    "title": item.title,
                    "owner": item.owner,
                    "dueDate": item.due_date,
                    "priority": item.priority,
                }
            )
            for item in result.action_items
        ],
        "confidence": result.confidence,
        "signals": [
            _drop_none(
                {
                    "symbol": s.symbol,
                    "direction": s.direction,
                    "entry": s.entry,
                    "stopLoss": s.stop_loss,
                    "takeProfits": list(s.take_profits),
                    "reason": s.reason,
                    "timeframe": s.timeframe,
                    "entryScore": s.entry_score,
                }
            )
            for s in result.signals
        ],
    }


def backfill_scores(result: AnalysisResult, mail: NormalizedMail) -> AnalysisResult:
    """
    Fill in entryScore for LONG/SHORT signals the model left unscored, using
    the deterministic rubric over the mail text around each symbol.
    """
    missing = [s for s in result.signals if s.is_actionable and s.entry_score is None]
    if not missing:
        return result

    text = mail_text(mail)
    symbols = [s.symbol for s in result.signals]
    signals: List[TradingSignal] = []
    for signal in result.signals:
        if signal.is_actionable and signal.entry_score is None:
            section = symbol_section(text, signal.symbol, symbols)
            score = score_text(
                section,
                signal.direction,
                context=text,
                entry=signal.entry,
                stop_loss=signal.stop_loss,
                take_profits=signal.take_profits,
            )
            log.debug(
                "entry_score_backfilled",
                mail_id=result.mail_id,
                symbol=signal.symbol,
                score=score,
                components=describe_components(
                    extract_rubric_inputs(section, signal.direction, text)
                ),
            )
            signal = replace(signal, entry_score=score)
        signals.append(signal)
    return replace(result, signals=tuple(signals))


def analyze_mail(llm: LLMClient, mail: NormalizedMail) -> AnalysisResult:
    """One LLM call, then parse -> sanitize -> deterministic score backfill."""
    output = llm.complete(SYSTEM_INSTRUCTION, build_prompt(mail), json_mode=True)
    if not output.strip():
        raise ProcessingError("Model returned an empty response.", {"mail_id": mail.id})

    raw = parse_analysis(output, mail.id)
    result = sanitize_analysis(raw, mail.id)
    return backfill_scores(result, mail)
