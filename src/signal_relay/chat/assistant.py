from __future__ import annotations

import re
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Iterator, List, Optional

from signal_relay.extractors.rubric import ENTRY_SCORE_RULES
from signal_relay.llm.client import LLMClient
from signal_relay.models import ConversationItem, NormalizedMail
from signal_relay.parsing.parser import mail_text
from signal_relay.utils.logger import get_logger

HISTORY_CAPACITY = 5
DECLINE_MESSAGE = "❌ Sorry, I cannot answer this question."
UNVERIFIED_NOTE = "⚠️ Not found in the email, double-check: {figures}"

SYSTEM_PROMPT = f"""You are a smart, professional crypto trading-signal assistant.

TASK:
- Answer the user's question BASED ONLY ON THE REAL EMAIL DATA below.
- NEVER invent or guess data that is not in the email.
- If the email does not contain the information, say clearly:
  "The email has no information about this."
- Keep answers short, structured, with fitting emoji.
- For questions about signals, prices, TP/SL or entry, quote the values
  EXACTLY as written in the email, as bullet points.
- When asked how good a signal is, score it with the rubric below and show
  "📊 Entry score: N/100" followed by its band.
{ENTRY_SCORE_RULES}"""

log = get_logger(__name__)


class ConversationHistory:
    """Bounded, most-recent-first question/answer history."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self._items: Deque[ConversationItem] = deque(maxlen=capacity)

    def add(self, item: ConversationItem) -> None:
        # appendleft on a bounded deque evicts from the right, i.e. the oldest.
        self._items.appendleft(item)

    def __iter__(self) -> Iterator[ConversationItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or HISTORY_CAPACITY

    def clear(self) -> None:
        self._items.clear()


def build_query_prompt(
    question: str, mail: Optional[NormalizedMail], history: ConversationHistory
) -> str:
    if mail is None:
        context = "NO EMAIL DATA AVAILABLE."
    else:
        body = mail.html_text or mail.plain_text or mail.snippet
        context = (
            "LATEST EMAIL DATA:\n"
            f"- Subject: {mail.subject}\n"
            f"- From: {mail.from_}\n"
            f"- Date: {mail.date}\n"
            f"- Content:\n{body}"
        )

    lines: List[str] = [context, ""]
    if len(history):
        lines.append("PREVIOUS CONVERSATION (oldest first):")
        for item in reversed(list(history)):
            lines.append(f"Q: {item.question}")
            lines.append(f"A: {item.answer}")
        lines.append("")
    lines.append(f"Question: {question}")
    return "\n".join(lines)


_FIGURE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+\.\d+|\d{3,}")
_SCORE = re.compile(r"\b\d{1,3}\s*/\s*100\b")


def unverified_figures(answer: str, mail: NormalizedMail) -> List[str]:
    """Price-like figures quoted in the answer that never appear in the email."""
    source = re.sub(
        r"[,\s]", "", f"{mail.subject} {mail.date} {mail.snippet} {mail_text(mail)} {mail.html_text}"
    )
    # Rubric scores ("85/100") are computed, not quoted.
    answer = _SCORE.sub("", answer)
    missing: List[str] = []
    for figure in _FIGURE.findall(answer):
        if figure.replace(",", "") not in source and figure not in missing:
            missing.append(figure)
    return missing


def answer_question(
    llm: LLMClient,
    question: str,
    mail: Optional[NormalizedMail],
    history: ConversationHistory,
    *,
    now: Optional[datetime] = None,
) -> str:
    """
    Answer a free-text question about the latest mail and record it in history.
    Without a mail the model is still asked, with a "no email data" context, so
    it can answer general questions and say that no email is loaded.
    """
    answer = llm.complete(SYSTEM_PROMPT, build_query_prompt(question, mail, history)).strip()
    if not answer:
        answer = DECLINE_MESSAGE
    elif mail is not None:
        figures = unverified_figures(answer, mail)
        if figures:
            log.warning("chat_unverified_figures", figures=figures, mail_id=mail.id)
            answer = f"{answer}\n\n{UNVERIFIED_NOTE.format(figures=', '.join(figures))}"

    history.add(
        ConversationItem(
            question=question,
            answer=answer,
            timestamp=(now or datetime.now(timezone.utc)).isoformat(),
            mail_date=mail.date if mail else None,
        )
    )
    return answer
