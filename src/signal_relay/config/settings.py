from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from signal_relay.config import paths  # noqa: F401  (loads .env)
from signal_relay.errors import ConfigError

DEFAULT_SENDER = "noti@vaibb.com"
DEFAULT_MODEL = "gpt-4.1-mini"


@dataclass(frozen=True)
class Settings:
    google_client_id: str
    google_client_secret: str
    # Empty means: fall back to the cached token file flow.
    google_refresh_token: str
    openai_api_key: str
    telegram_bot_token: str
    telegram_chat_id: str
    gmail_sender: str = DEFAULT_SENDER
    gmail_poll_query: str = f"from:{DEFAULT_SENDER} is:unread"
    max_messages: int = 5
    openai_model: str = DEFAULT_MODEL
    llm_timeout_seconds: float = 60.0
    poll_interval_minutes: float = 10.0
    novelty_policy: str = "last_id"
    log_level: str = "INFO"
    log_json: bool = False


def _required(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise ConfigError("Missing required setting.", {"key": key})
    return value


def _positive_number(env: Mapping[str, str], key: str, fallback: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError("Invalid numeric setting.", {"key": key, "value": raw}) from None
    if value <= 0:
        raise ConfigError("Numeric setting must be positive.", {"key": key, "value": raw})
    return value


def _flag(env: Mapping[str, str], key: str) -> bool:
    return (env.get(key) or "").strip().lower() in {"1", "true", "yes", "on"}


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the process environment (or an explicit mapping)."""
    env = os.environ if env is None else env

    sender = (env.get("GMAIL_SENDER") or "").strip() or DEFAULT_SENDER
    query = (env.get("GMAIL_POLL_QUERY") or "").strip() or f"from:{sender} is:unread"

    policy = (env.get("NOVELTY_POLICY") or "last_id").strip().lower()
    if policy not in {"unread", "last_id"}:
        raise ConfigError("NOVELTY_POLICY must be 'unread' or 'last_id'.", {"value": policy})

    return Settings(
        google_client_id=_required(env, "GOOGLE_CLIENT_ID"),
        google_client_secret=_required(env, "GOOGLE_CLIENT_SECRET"),
        google_refresh_token=(env.get("GOOGLE_REFRESH_TOKEN") or "").strip(),
        openai_api_key=_required(env, "OPENAI_API_KEY"),
        telegram_bot_token=_required(env, "TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_required(env, "TELEGRAM_CHAT_ID"),
        gmail_sender=sender,
        gmail_poll_query=query,
        max_messages=int(_positive_number(env, "MAX_MESSAGES", 5)),
        openai_model=(env.get("OPENAI_MODEL") or "").strip() or DEFAULT_MODEL,
        llm_timeout_seconds=_positive_number(env, "LLM_TIMEOUT_SECONDS", 60.0),
        poll_interval_minutes=_positive_number(env, "POLL_INTERVAL_MINUTES", 10.0),
        novelty_policy=policy,
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        log_json=_flag(env, "LOG_JSON"),
    )
