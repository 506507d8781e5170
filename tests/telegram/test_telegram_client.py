from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from signal_relay.errors import ExternalServiceError
from signal_relay.telegram.client import (
    CHUNK_DELAY_SECONDS,
    TelegramClient,
    TelegramClientConfig,
    split_message,
)


def test_short_message_is_a_single_chunk() -> None:
    assert split_message("hello\nworld", 4000) == ["hello\nworld"]


def test_long_message_splits_on_line_boundaries() -> None:
    line = "x" * 89
    text = "\n".join([line] * 100)  # 8999 characters

    chunks = split_message(text, 4000)

    assert len(chunks) >= 3
    assert all(len(chunk) <= 4000 for chunk in chunks)
    assert all(chunk.endswith("\n") for chunk in chunks)
    assert "".join(chunks) == text + "\n"


def test_overlong_single_line_is_hard_split() -> None:
    text = "a" * 25 + "\nshort"

    chunks = split_message(text, 10)

    assert all(len(chunk) <= 10 for chunk in chunks)
    assert "".join(chunks) == text + "\n"


def _client(handler, sleeps: List[float], max_length: int = 4000) -> TelegramClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return TelegramClient(
        TelegramClientConfig(bot_token="TOKEN", chat_id="42", max_message_length=max_length),
        http=http,
        sleep=sleeps.append,
    )


def test_send_message_posts_chunks_in_order_with_delay() -> None:
    requests: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/botTOKEN/sendMessage"
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {}})

    sleeps: List[float] = []
    client = _client(handler, sleeps, max_length=12)

    count = client.send_message("line one\nline two\nline three")

    assert count == 3
    assert [r["text"] for r in requests] == ["line one\n", "line two\n", "line three\n"]
    assert all(r["chat_id"] == "42" for r in requests)
    assert sleeps == [CHUNK_DELAY_SECONDS, CHUNK_DELAY_SECONDS]


def test_api_rejection_raises_external_service_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"ok": False, "description": "chat not found"})

    client = _client(handler, [])

    with pytest.raises(ExternalServiceError) as excinfo:
        client.send_message("hi")

    assert excinfo.value.context["status"] == 400


def test_ok_false_with_200_is_still_an_error() -> None:
    client = _client(lambda request: httpx.Response(200, json={"ok": False}), [])

    with pytest.raises(ExternalServiceError):
        client.send_message("hi")


def test_get_updates_parses_text_messages() -> None:
    seen: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "ok": True,
                "result": [
                    {
                        "update_id": 5,
                        "message": {"text": "/help", "chat": {"id": 42}, "from": {"username": "trader"}},
                    },
                    {"update_id": 6, "message": {"chat": {"id": 42}, "sticker": {}}},
                ],
            },
        )

    updates = _client(handler, []).get_updates(offset=5, timeout=1)

    assert seen["offset"] == 5
    assert seen["timeout"] == 1
    assert [(u.update_id, u.chat_id, u.text, u.sender) for u in updates] == [
        (5, "42", "/help", "trader"),
        (6, "42", "", ""),
    ]
