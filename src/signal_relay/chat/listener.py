from __future__ import annotations

from typing import List

from signal_relay.chat.assistant import answer_question
from signal_relay.errors import ExternalServiceError
from signal_relay.llm.client import LLMClient
from signal_relay.models import InboundMessage
from signal_relay.pipeline.formatter import format_bot_reply
from signal_relay.pipeline.state import PollState
from signal_relay.telegram.client import LONG_POLL_SECONDS, TelegramClient
from signal_relay.utils.logger import get_logger

HELP_TEXT = (
    "🤖 Ask me anything about the latest signal email, e.g.\n"
    "• Which coins have a SHORT signal?\n"
    "• What are the TP levels for BTCUSDT?\n"
    "• How good is the ETH setup?"
)

log = get_logger(__name__)


def handle_message(
    message: InboundMessage,
    telegram: TelegramClient,
    llm: LLMClient,
    state: PollState,
) -> bool:
    """Answer one inbound message. Returns False when it was ignored."""
    if message.chat_id != str(telegram.chat_id):
        log.info("chat_ignored_unauthorized", chat_id=message.chat_id)
        return False

    text = message.text.strip()
    if not text:
        return False

    # Group chats address commands as "/help@bot_name".
    command = text.split()[0].split("@")[0].lower()
    if command in {"/start", "/help"}:
        telegram.send_message(HELP_TEXT, chat_id=message.chat_id)
        return True

    mail = state.latest_mail
    answer = answer_question(llm, text, mail, state.history)
    telegram.send_message(
        format_bot_reply(answer, mail.date if mail else None), chat_id=message.chat_id
    )
    return True


def handle_updates(
    telegram: TelegramClient,
    llm: LLMClient,
    state: PollState,
    timeout: int = LONG_POLL_SECONDS,
) -> int:
    """Long-poll once and answer authorized messages. Returns the number answered."""
    updates: List[InboundMessage] = telegram.get_updates(state.update_offset, timeout=timeout)
    answered = 0
    for message in updates:
        # Advance first: a message that fails to answer is not redelivered forever.
        state.update_offset = message.update_id + 1
        try:
            if handle_message(message, telegram, llm, state):
                answered += 1
        except ExternalServiceError as exc:
            log.error("chat_answer_failed", update_id=message.update_id, error=exc.message, context=exc.context)
    return answered
