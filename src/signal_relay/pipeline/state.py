"""
Poll/dedup state for the mail relay.

The state is owned by whoever drives the polling loop and is passed into every
cycle; nothing here is module-global. Two novelty policies exist:

* UNREAD  - a candidate is new while it carries the Gmail UNREAD label. The
            mailbox holds the state, so this survives restarts and is the
            policy for single-shot (cron/serverless) runs.
* LAST_ID - a candidate is new when its id differs from the last acknowledged
            id. Process-local unless the state is persisted with
            storage.state.save_state; after a restart, mails that are already
            read and older than the grace window are treated as duplicates.

There is no retry with backoff: a failed message leaves the state untouched
and the next poll cycle picks it up again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from signal_relay.chat.assistant import ConversationHistory
from signal_relay.gmail.client import UNREAD_LABEL
from signal_relay.models import NormalizedMail

READ_GRACE_MINUTES = 20


class PollPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    NO_NEW = "no_new"
    DUPLICATE = "duplicate"
    NEW = "new"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class NoveltyPolicy(str, Enum):
    UNREAD = "unread"
    LAST_ID = "last_id"


@dataclass
class PollState:
    last_processed_message_id: Optional[str] = None
    latest_mail: Optional[NormalizedMail] = None
    # Next Telegram update id to request.
    update_offset: Optional[int] = None
    history: ConversationHistory = field(default_factory=ConversationHistory)
    phase: PollPhase = PollPhase.IDLE

    def acknowledge(self, mail: NormalizedMail) -> None:
        """Only mutation point of the dedup id: called after a full, successful pass."""
        self.last_processed_message_id = mail.id
        self.latest_mail = mail


def _internal_date(message: Dict[str, Any]) -> int:
    try:
        return int(message.get("internalDate") or 0)
    except (TypeError, ValueError):
        return 0


def select_latest(messages: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Most recent candidate by internalDate; Gmail list order is not trusted."""
    if not messages:
        return None
    return max(messages, key=_internal_date)


def decide_novelty(
    candidate: Optional[Dict[str, Any]],
    state: PollState,
    policy: NoveltyPolicy,
    now_ms: int,
    grace_minutes: int = READ_GRACE_MINUTES,
) -> PollPhase:
    """Classify the top candidate as NO_NEW, DUPLICATE or NEW."""
    if candidate is None or not candidate.get("id"):
        return PollPhase.NO_NEW

    unread = UNREAD_LABEL in (candidate.get("labelIds") or [])

    if policy == NoveltyPolicy.UNREAD:
        return PollPhase.NEW if unread else PollPhase.DUPLICATE

    if candidate["id"] == state.last_processed_message_id:
        return PollPhase.DUPLICATE
    if not unread:
        age_minutes = (now_ms - _internal_date(candidate)) / 60000
        if age_minutes > grace_minutes:
            return PollPhase.DUPLICATE
    return PollPhase.NEW
