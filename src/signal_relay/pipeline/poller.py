from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from signal_relay.chat.listener import handle_updates
from signal_relay.errors import AppError, ExternalServiceError
from signal_relay.extractors.signals import analyze_mail
from signal_relay.gmail.client import GmailClient
from signal_relay.llm.client import LLMClient
from signal_relay.models import AnalysisResult, NormalizedMail, signal_symbols
from signal_relay.parsing.parser import normalize_message
from signal_relay.pipeline.formatter import format_mail_banner, format_report
from signal_relay.pipeline.state import (
    NoveltyPolicy,
    PollPhase,
    PollState,
    decide_novelty,
    select_latest,
)
from signal_relay.storage.mail_log import append_mail_log
from signal_relay.storage.state import load_state, save_state
from signal_relay.telegram.client import LONG_POLL_SECONDS, TelegramClient
from signal_relay.utils.logger import get_logger

log = get_logger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


@dataclass
class RelayContext:
    gmail: GmailClient
    llm: LLMClient
    telegram: TelegramClient
    query: str
    max_messages: int = 5
    policy: NoveltyPolicy = NoveltyPolicy.LAST_ID
    mail_log_path: Optional[Path] = None
    # Set to persist the dedup id across restarts (LAST_ID policy).
    state_path: Optional[Path] = None
    # Query for the newest sender mail regardless of read state (chat context).
    latest_query: Optional[str] = None
    progress_cb: Optional[ProgressCallback] = None

    def report(self, step: str, detail: Optional[str] = None, **extra: Any) -> None:
        if not self.progress_cb:
            return
        payload: Dict[str, Any] = {"detail": detail}
        payload.update(extra)
        self.progress_cb(step, payload)


@dataclass
class CycleOutcome:
    phase: PollPhase
    message_id: Optional[str] = None
    signals: int = 0
    error: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


def _now_ms() -> int:
    return int(time.time() * 1000)


def restore_state(path: Path) -> PollState:
    stored = load_state(path)
    return PollState(
        last_processed_message_id=stored.last_processed_message_id,
        update_offset=stored.update_offset,
    )


def persist_state(path: Path, state: PollState) -> None:
    stored = load_state(path)
    stored.last_processed_message_id = state.last_processed_message_id
    stored.update_offset = state.update_offset
    stored.runs += 1
    save_state(path, stored)


def seed_latest_mail(ctx: RelayContext, state: PollState) -> Optional[NormalizedMail]:
    """
    Load the newest sender mail, read or not, as chat context. The dedup id is
    left alone, so a mail that is still new gets relayed by the next cycle.
    """
    query = ctx.latest_query or ctx.query
    try:
        latest = select_latest(ctx.gmail.fetch_messages(query, 1))
        mail = normalize_message(latest) if latest else None
    except ExternalServiceError as exc:
        log.warning("latest_mail_seed_failed", error=exc.message, context=exc.context)
        return None
    if mail is not None:
        state.latest_mail = mail
        log.info("latest_mail_seeded", message_id=mail.id)
    return mail


def process_message(
    ctx: RelayContext, message: Dict[str, Any], now: Optional[datetime] = None
) -> Tuple[NormalizedMail, AnalysisResult]:
    """
    Normalize -> analyze -> format -> send -> mark read, strictly in that order.
    The mail is only marked read once the report has been delivered.
    """
    mail = normalize_message(message)
    analysis = analyze_mail(ctx.llm, mail)

    now = now or datetime.now(timezone.utc)
    text = format_mail_banner(mail.internal_date_ms, now) + format_report(analysis)
    ctx.telegram.send_message(text)
    ctx.gmail.mark_as_read(mail.id)
    return mail, analysis


def run_cycle(ctx: RelayContext, state: PollState, now_ms: Optional[int] = None) -> CycleOutcome:
    """One poll cycle. Never raises AppError: failures come back as FAILED."""
    now_ms = _now_ms() if now_ms is None else now_ms
    state.phase = PollPhase.CHECKING
    ctx.report("checking", detail="Checking mailbox")

    try:
        outcome = _run_cycle(ctx, state, now_ms)
    finally:
        state.phase = PollPhase.IDLE

    if ctx.state_path is not None:
        persist_state(ctx.state_path, state)
    return outcome


def _run_cycle(ctx: RelayContext, state: PollState, now_ms: int) -> CycleOutcome:
    try:
        messages = ctx.gmail.fetch_messages(ctx.query, ctx.max_messages)
    except ExternalServiceError as exc:
        log.error("mailbox_check_failed", error=exc.message, context=exc.context)
        ctx.report("error", detail=exc.message)
        return CycleOutcome(PollPhase.FAILED, error=exc.message, context=exc.context)

    candidate = select_latest(messages)
    phase = decide_novelty(candidate, state, ctx.policy, now_ms)
    message_id = candidate.get("id") if candidate else None

    if phase == PollPhase.NO_NEW:
        log.info("no_new_mail", query=ctx.query)
        ctx.report("no_new", detail="No new mail")
        return CycleOutcome(phase)
    if phase == PollPhase.DUPLICATE:
        log.info("mail_already_processed", message_id=message_id, policy=ctx.policy.value)
        ctx.report("duplicate", detail="Latest mail already processed", message_id=message_id)
        return CycleOutcome(phase, message_id=message_id)

    log.info("new_mail_detected", message_id=message_id, previous_id=state.last_processed_message_id)
    state.phase = PollPhase.PROCESSING
    ctx.report("processing", detail="Processing new mail", message_id=message_id)

    try:
        mail, analysis = process_message(ctx, candidate)
    except AppError as exc:
        log.error(
            "mail_processing_failed",
            message_id=message_id,
            error_type=type(exc).__name__,
            error=exc.message,
            context=exc.context,
        )
        ctx.report("error", detail=exc.message, error={"message_id": message_id, "error": exc.message})
        return CycleOutcome(PollPhase.FAILED, message_id=message_id, error=exc.message, context=exc.context)

    state.acknowledge(mail)
    log.info("mail_relayed", message_id=mail.id, signals=signal_symbols(analysis))

    if ctx.mail_log_path is not None:
        try:
            append_mail_log(ctx.mail_log_path, [mail])
        except OSError as exc:
            log.warning("mail_log_write_failed", path=str(ctx.mail_log_path), error=str(exc))

    ctx.report("done", detail="Mail relayed", message_id=mail.id, signals=len(analysis.signals))
    return CycleOutcome(PollPhase.DONE, message_id=mail.id, signals=len(analysis.signals))


def run_forever(
    ctx: RelayContext,
    state: PollState,
    interval_seconds: float,
    *,
    listen: bool = True,
    max_cycles: Optional[int] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Daemon loop: one mail cycle, then answer chat messages (or sleep) until the
    next cycle is due. Cycles never overlap; everything runs on this thread.
    """
    log.info("poller_started", interval_seconds=interval_seconds, policy=ctx.policy.value)
    if listen and state.latest_mail is None:
        seed_latest_mail(ctx, state)
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        outcome = run_cycle(ctx, state)
        cycles += 1
        log.debug("cycle_finished", phase=outcome.phase.value, message_id=outcome.message_id)

        deadline = clock() + interval_seconds
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                break
            if not listen:
                sleep(remaining)
                continue
            try:
                handle_updates(
                    ctx.telegram,
                    ctx.llm,
                    state,
                    timeout=int(max(1, min(LONG_POLL_SECONDS, remaining))),
                )
            except ExternalServiceError as exc:
                log.warning("chat_poll_failed", error=exc.message, context=exc.context)
                sleep(min(remaining, 5.0))
