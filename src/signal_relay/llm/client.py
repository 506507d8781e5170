from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from openai import OpenAI, OpenAIError

from signal_relay.errors import ExternalServiceError
from signal_relay.utils.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class LLMClientConfig:
    api_key: str
    model: str = "gpt-4.1-mini"
    # Caller-side timeout. Failures are surfaced, never retried here.
    timeout_seconds: float = 60.0


class LLMClient:
    """Single request/response wrapper around the OpenAI Responses API."""

    def __init__(self, cfg: LLMClientConfig, client: Optional[OpenAI] = None):
        self._cfg = cfg
        self._client = client or OpenAI(
            api_key=cfg.api_key,
            timeout=cfg.timeout_seconds,
            max_retries=0,
        )

    @property
    def model(self) -> str:
        return self._cfg.model

    def complete(self, system: str, prompt: str, *, json_mode: bool = False) -> str:
        """Send one system instruction + user prompt and return the output text."""
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["text"] = {"format": {"type": "json_object"}}

        try:
            resp = self._client.responses.create(
                model=self._cfg.model,
                input=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                **kwargs,
            )
        except OpenAIError as exc:
            raise ExternalServiceError(
                "LLM request failed.", {"model": self._cfg.model, "cause": str(exc)}
            ) from exc
        finally:
            log.debug("llm_called", model=self._cfg.model, json_mode=json_mode)

        return resp.output_text or ""
