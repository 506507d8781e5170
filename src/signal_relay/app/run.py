# src/signal_relay/app/run.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from signal_relay.config.paths import CREDENTIALS_PATH, MAIL_LOG_PATH, STATE_PATH, TOKEN_PATH
from signal_relay.config.settings import Settings, load_settings
from signal_relay.errors import ConfigError
from signal_relay.gmail.client import GmailClient, GmailClientConfig
from signal_relay.llm.client import LLMClient, LLMClientConfig
from signal_relay.pipeline.poller import RelayContext, run_cycle
from signal_relay.pipeline.state import NoveltyPolicy, PollState
from signal_relay.telegram.client import TelegramClient, TelegramClientConfig
from signal_relay.utils.logger import get_logger

log = get_logger(__name__)


@dataclass
class RunSummary:
    phase: str
    message_id: Optional[str]
    signals: int
    error: Optional[str]


def load_gmail_config(settings: Settings) -> GmailClientConfig:
    if not settings.google_refresh_token and not (CREDENTIALS_PATH.exists() or TOKEN_PATH.exists()):
        raise ConfigError(
            "No GOOGLE_REFRESH_TOKEN and no Gmail credentials file. "
            "Did you configure SIGNAL_RELAY_SECRETS_DIR?",
            {"credentials_path": str(CREDENTIALS_PATH)},
        )
    return GmailClientConfig(
        credentials_path=CREDENTIALS_PATH,
        token_path=TOKEN_PATH,
        user_id="me",
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        refresh_token=settings.google_refresh_token or None,
    )


def latest_mail_query(settings: Settings) -> str:
    """Newest mail from the signal sender, read or unread."""
    return f"from:{settings.gmail_sender}"


def build_context(
    settings: Settings,
    *,
    policy: Optional[NoveltyPolicy] = None,
    persist: bool = False,
    progress_cb: Optional[Callable[[str, Dict[str, Any]], None]] = None,
) -> RelayContext:
    """Wire the real Gmail, OpenAI and Telegram collaborators."""
    gmail = GmailClient(load_gmail_config(settings))
    gmail.connect()
    log.info("gmail_connected", account=gmail.get_profile().get("emailAddress"))

    llm = LLMClient(
        LLMClientConfig(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    )
    telegram = TelegramClient(
        TelegramClientConfig(bot_token=settings.telegram_bot_token, chat_id=settings.telegram_chat_id)
    )
    return RelayContext(
        gmail=gmail,
        llm=llm,
        telegram=telegram,
        query=settings.gmail_poll_query,
        latest_query=latest_mail_query(settings),
        max_messages=settings.max_messages,
        policy=policy or NoveltyPolicy(settings.novelty_policy),
        mail_log_path=MAIL_LOG_PATH,
        state_path=STATE_PATH if persist else None,
        progress_cb=progress_cb,
    )


def run_once(
    *,
    settings: Optional[Settings] = None,
    ctx: Optional[RelayContext] = None,
    progress_cb: Optional[Callable[[str, Dict[str, Any]], None]] = None,
) -> Dict[str, Any]:
    """
    Execute a single stateless cycle and return a machine-readable summary.

    Single-shot runs keep no memory between invocations, so novelty always
    comes from the Gmail UNREAD label.
    """
    if ctx is None:
        settings = settings or load_settings()
        ctx = build_context(settings, policy=NoveltyPolicy.UNREAD, progress_cb=progress_cb)

    outcome = run_cycle(ctx, PollState())
    summary = RunSummary(
        phase=outcome.phase.value,
        message_id=outcome.message_id,
        signals=outcome.signals,
        error=outcome.error,
    )
    ctx.report("finished", detail="Run completed", summary=asdict(summary))
    return asdict(summary)
