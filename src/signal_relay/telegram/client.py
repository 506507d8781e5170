from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from signal_relay.errors import ExternalServiceError
from signal_relay.models import InboundMessage
from signal_relay.utils.logger import get_logger

API_BASE = "https://api.telegram.org"
# Telegram hard limit is 4096 characters; stay safely below it.
MAX_MESSAGE_LENGTH = 4000
CHUNK_DELAY_SECONDS = 0.5
LONG_POLL_SECONDS = 30

log = get_logger(__name__)


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split text into chunks of at most `max_length` characters, breaking only
    at line boundaries. Each line keeps its trailing newline, so joining the
    chunks gives back the text plus one trailing newline. A single line longer
    than `max_length` is cut into fixed-size pieces.
    """
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    current = ""
    for line in text.split("\n"):
        piece = line + "\n"
        while len(piece) > max_length:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(piece[:max_length])
            piece = piece[max_length:]
        if current and len(current) + len(piece) > max_length:
            chunks.append(current)
            current = ""
        current += piece
    if current:
        chunks.append(current)
    return chunks


@dataclass(frozen=True)
class TelegramClientConfig:
    bot_token: str
    chat_id: str
    max_message_length: int = MAX_MESSAGE_LENGTH


class TelegramClient:
    def __init__(
        self,
        cfg: TelegramClientConfig,
        http: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._cfg = cfg
        # Long-poll needs a read timeout above LONG_POLL_SECONDS.
        self._http = http or httpx.Client(timeout=httpx.Timeout(10.0, read=LONG_POLL_SECONDS + 10))
        self._sleep = sleep

    @property
    def chat_id(self) -> str:
        return self._cfg.chat_id

    def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        url = f"{API_BASE}/bot{self._cfg.bot_token}/{method}"
        try:
            resp = self._http.post(url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                "Telegram API error.",
                {"method": method, "status": exc.response.status_code, "data": exc.response.text},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalServiceError(
                "Telegram request failed.", {"method": method, "cause": str(exc)}
            ) from exc

        if not isinstance(data, dict) or not data.get("ok"):
            raise ExternalServiceError("Telegram API rejected the call.", {"method": method, "data": data})
        return data.get("result")

    def send_message(self, text: str, chat_id: Optional[str] = None) -> int:
        """Send text, split into sequential chunks when too long. Returns the chunk count."""
        target = chat_id or self._cfg.chat_id
        chunks = split_message(text, self._cfg.max_message_length)
        for index, chunk in enumerate(chunks):
            self._call(
                "sendMessage",
                {"chat_id": target, "text": chunk, "disable_web_page_preview": True},
            )
            if index < len(chunks) - 1:
                self._sleep(CHUNK_DELAY_SECONDS)
        log.debug("telegram_sent", chat_id=target, chunks=len(chunks))
        return len(chunks)

    def get_updates(self, offset: Optional[int] = None, timeout: int = LONG_POLL_SECONDS) -> List[InboundMessage]:
        """Long-poll for inbound text messages."""
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset

        messages: List[InboundMessage] = []
        for update in self._call("getUpdates", payload) or []:
            message = update.get("message") or {}
            text = message.get("text")
            chat = message.get("chat") or {}
            if "update_id" not in update:
                continue
            messages.append(
                InboundMessage(
                    update_id=int(update["update_id"]),
                    chat_id=str(chat.get("id", "")),
                    text=text or "",
                    sender=(message.get("from") or {}).get("username") or "",
                )
            )
        return messages

    def close(self) -> None:
        self._http.close()
