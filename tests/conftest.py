from __future__ import annotations

import base64
from typing import Any, Callable, Dict, List, Optional

import pytest

from signal_relay.errors import ExternalServiceError
from signal_relay.models import InboundMessage


def b64(text: str) -> str:
    # Gmail strips base64url padding.
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


class FakeGmail:
    def __init__(self, messages: Optional[List[Dict[str, Any]]] = None):
        self.messages = list(messages or [])
        self.marked_read: List[str] = []
        self.calls: List[str] = []
        self.queries: List[str] = []
        self.fail_fetch = False
        self.fail_mark = False

    def fetch_messages(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        self.calls.append("fetch")
        self.queries.append(query)
        if self.fail_fetch:
            raise ExternalServiceError("Could not list Gmail messages.", {"query": query})
        return self.messages[:max_results]

    def mark_as_read(self, message_id: str) -> None:
        self.calls.append("mark_read")
        if self.fail_mark:
            raise ExternalServiceError("Could not mark Gmail message as read.", {"message_id": message_id})
        self.marked_read.append(message_id)
        for msg in self.messages:
            if msg["id"] == message_id:
                msg["labelIds"] = [lbl for lbl in msg.get("labelIds", []) if lbl != "UNREAD"]


class FakeLLM:
    def __init__(self, responses: Optional[List[str]] = None):
        self.responses = list(responses or [])
        self.prompts: List[Dict[str, Any]] = []

    def complete(self, system: str, prompt: str, *, json_mode: bool = False) -> str:
        self.prompts.append({"system": system, "prompt": prompt, "json_mode": json_mode})
        if not self.responses:
            return ""
        return self.responses.pop(0)


class FakeTelegram:
    def __init__(self, chat_id: str = "42", updates: Optional[List[InboundMessage]] = None):
        self.chat_id = chat_id
        self.sent: List[Dict[str, Any]] = []
        self.updates = list(updates or [])
        self.offsets: List[Optional[int]] = []
        self.fail_send = False
        self.log: Optional[List[str]] = None

    def send_message(self, text: str, chat_id: Optional[str] = None) -> int:
        if self.log is not None:
            self.log.append("send")
        if self.fail_send:
            raise ExternalServiceError("Telegram API error.", {"status": 502})
        self.sent.append({"chat_id": chat_id or self.chat_id, "text": text})
        return 1

    def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[InboundMessage]:
        self.offsets.append(offset)
        updates = [u for u in self.updates if offset is None or u.update_id >= offset]
        self.updates = []
        return updates


@pytest.fixture
def make_message() -> Callable[..., Dict[str, Any]]:
    def _make(
        message_id: str = "msg-1",
        *,
        subject: str = "BTC signal report",
        sender: str = "VAIBB <noti@vaibb.com>",
        plain: Optional[str] = "BTCUSDT SHORT entry 83439",
        html: Optional[str] = None,
        internal_date_ms: int = 1_700_000_000_000,
        unread: bool = True,
    ) -> Dict[str, Any]:
        parts = []
        if plain is not None:
            parts.append({"mimeType": "text/plain", "body": {"data": b64(plain)}})
        if html is not None:
            parts.append({"mimeType": "text/html", "body": {"data": b64(html)}})
        return {
            "id": message_id,
            "threadId": f"thread-{message_id}",
            "snippet": (plain or "")[:40],
            "internalDate": str(internal_date_ms),
            "labelIds": ["INBOX", "UNREAD"] if unread else ["INBOX"],
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": [
                    {"name": "Subject", "value": subject},
                    {"name": "From", "value": sender},
                    {"name": "To", "value": "trader@example.com"},
                    {"name": "Date", "value": "Tue, 14 Nov 2023 22:13:20 +0000"},
                ],
                "parts": parts,
            },
        }

    return _make


@pytest.fixture
def fake_gmail() -> FakeGmail:
    return FakeGmail()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_telegram() -> FakeTelegram:
    return FakeTelegram()
