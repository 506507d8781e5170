from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from openai import APIConnectionError

from signal_relay.errors import ExternalServiceError
from signal_relay.llm.client import LLMClient, LLMClientConfig


class FakeResponses:
    def __init__(self, output_text: str | None = "ok", error: Exception | None = None):
        self.output_text = output_text
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(output_text=self.output_text)


def _client(responses: FakeResponses) -> LLMClient:
    return LLMClient(LLMClientConfig(api_key="sk-test", model="test-model"), client=SimpleNamespace(responses=responses))


def test_complete_sends_system_and_user_messages() -> None:
    responses = FakeResponses('{"subject": "x"}')

    text = _client(responses).complete("system text", "prompt text", json_mode=True)

    assert text == '{"subject": "x"}'
    call = responses.calls[0]
    assert call["model"] == "test-model"
    assert call["input"][0] == {"role": "system", "content": "system text"}
    assert call["text"] == {"format": {"type": "json_object"}}


def test_plain_mode_has_no_format_and_none_output_is_empty() -> None:
    responses = FakeResponses(None)

    assert _client(responses).complete("s", "p") == ""
    assert "text" not in responses.calls[0]


def test_openai_errors_are_wrapped() -> None:
    error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/responses"))

    with pytest.raises(ExternalServiceError) as excinfo:
        _client(FakeResponses(error=error)).complete("s", "p")

    assert excinfo.value.context["model"] == "test-model"
