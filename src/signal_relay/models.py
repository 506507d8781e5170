from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

LONG = "LONG"
SHORT = "SHORT"
NEUTRAL = "NEUTRAL"
STAY_OUT = "STAY_OUT"

DIRECTIONS = (LONG, SHORT, NEUTRAL, STAY_OUT)
ACTIONABLE_DIRECTIONS = (LONG, SHORT)


@dataclass(frozen=True)
class NormalizedMail:
    id: str
    thread_id: str
    subject: str
    snippet: str
    from_: str
    to: str
    # Raw "Date" header, not parsed.
    date: str
    plain_text: str
    html_text: str
    # Lower-cased header names.
    headers: Dict[str, str] = field(default_factory=dict)
    internal_date_ms: int = 0
    label_ids: Tuple[str, ...] = ()

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")

    @property
    def is_unread(self) -> bool:
        return "UNREAD" in self.label_ids

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "subject": self.subject,
            "snippet": self.snippet,
            "from": self.from_,
            "to": self.to,
            "date": self.date,
            "plainText": self.plain_text,
            "htmlText": self.html_text,
            "headers": dict(self.headers),
        }


@dataclass(frozen=True)
class ActionItem:
    title: str
    owner: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[str] = None


@dataclass(frozen=True)
class TradingSignal:
    symbol: str
    direction: str = NEUTRAL
    entry: Optional[str] = None
    stop_loss: Optional[str] = None
    take_profits: Tuple[str, ...] = ()
    reason: Optional[str] = None
    timeframe: Optional[str] = None
    # 0-100; only expected on LONG/SHORT signals.
    entry_score: Optional[int] = None

    @property
    def is_actionable(self) -> bool:
        return self.direction in ACTIONABLE_DIRECTIONS


@dataclass(frozen=True)
class AnalysisResult:
    mail_id: str
    subject: str
    sender: str
    summary: str
    action_items: Tuple[ActionItem, ...] = ()
    confidence: float = 0.5
    signals: Tuple[TradingSignal, ...] = ()


@dataclass(frozen=True)
class ConversationItem:
    question: str
    answer: str
    timestamp: str
    mail_date: Optional[str] = None


@dataclass(frozen=True)
class InboundMessage:
    update_id: int
    chat_id: str
    text: str
    sender: str = ""


def signal_symbols(result: AnalysisResult) -> List[str]:
    return [s.symbol for s in result.signals]
