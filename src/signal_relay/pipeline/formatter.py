from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import List, Optional

from signal_relay.extractors.rubric import score_band
from signal_relay.models import LONG, SHORT, STAY_OUT, AnalysisResult, TradingSignal

SEPARATOR = "━━━━━━━━━━━━━━━━━━━━━━"
SIGNAL_SEPARATOR = "--------------------------------"
NO_SIGNAL_PLACEHOLDER = "(No concrete signal found in this email)"

DIRECTION_ICONS = {
    LONG: "🟢 LONG",
    SHORT: "🔴 SHORT",
    STAY_OUT: "⚠️ STAY OUT",
}


def _clean(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def direction_icon(direction: str) -> str:
    return DIRECTION_ICONS.get(direction, "⚪ NEUTRAL")


def score_line(score: int) -> str:
    band = score_band(score)
    return f"📊 Entry score: {score}/100 {band.icon} {band.label}"


def format_signal(signal: TradingSignal) -> str:
    title = f"🔹 {_clean(signal.symbol)}"
    if signal.timeframe:
        title += f" ({_clean(signal.timeframe)})"
    parts: List[str] = [SIGNAL_SEPARATOR, title, f"   {direction_icon(signal.direction)}"]

    if signal.direction in (LONG, SHORT):
        if signal.entry:
            parts.append(f"   📥 Entry: {_clean(signal.entry)}")
        if signal.stop_loss:
            parts.append(f"   🛑 SL: {_clean(signal.stop_loss)}")
        if signal.take_profits:
            parts.append(f"   🎯 TP: {' | '.join(_clean(tp) for tp in signal.take_profits)}")

    if signal.entry_score is not None:
        parts.append(f"   {score_line(signal.entry_score)}")

    if signal.reason:
        parts.append(f"   📝 {_clean(signal.reason)}")

    return "\n".join(parts)


def format_report(analysis: AnalysisResult) -> str:
    """Render an analysis as chat text. Length limits are the channel's concern."""
    header = [
        "📬 New Signal Report",
        f"🗣 From: {_clean(analysis.sender)}",
        f"📝 Subject: {_clean(analysis.subject)}",
        "",
        f"📌 Overview: {_clean(analysis.summary)}",
    ]

    if analysis.signals:
        body = "\n".join(format_signal(s) for s in analysis.signals)
    else:
        body = f"\n{NO_SIGNAL_PLACEHOLDER}"

    footer = [
        "",
        f"🔖 ID: {analysis.mail_id}",
        f"🤖 Confidence: {analysis.confidence * 100:.0f}%",
    ]
    return "\n".join([*header, body, *footer])


def _format_ts(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_mail_banner(received_ms: int, processed_at: datetime) -> str:
    """Prefix telling the reader how fresh the relayed mail is."""
    received = datetime.fromtimestamp(received_ms / 1000, tz=timezone.utc)
    return (
        f"{SEPARATOR}\n"
        f"📧 Mail received: {_format_ts(received)}\n"
        f"⏰ Processed: {_format_ts(processed_at)}\n"
        f"{SEPARATOR}\n"
    )


def format_bot_reply(answer: str, mail_date: Optional[str] = None, *, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    lines = ["🤖 CRYPTO ASSISTANT", "", answer.strip(), "", SEPARATOR, f"⏰ Answered: {_format_ts(now)}"]
    if mail_date:
        lines.append(f"📧 Email data from: {mail_date}")
    lines.append(SEPARATOR)
    return "\n".join(lines)
