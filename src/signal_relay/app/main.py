from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from signal_relay.app.run import build_context, run_once
from signal_relay.chat.assistant import answer_question
from signal_relay.config.paths import STATE_PATH
from signal_relay.config.settings import load_settings
from signal_relay.errors import AppError, ConfigError
from signal_relay.pipeline.poller import restore_state, run_forever, seed_latest_mail
from signal_relay.pipeline.state import NoveltyPolicy, PollState
from signal_relay.utils.logger import configure_logging, get_logger

log = get_logger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signal-relay",
        description="Relay trading-signal emails from Gmail to Telegram.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    poll = sub.add_parser("poll", help="Run the polling daemon.")
    poll.add_argument("--no-chat", action="store_true", help="Do not answer Telegram messages.")
    poll.add_argument(
        "--policy",
        choices=[p.value for p in NoveltyPolicy],
        help="Novelty detection policy (default: NOVELTY_POLICY).",
    )
    poll.add_argument(
        "--persist-state",
        action="store_true",
        help=f"Keep the last processed id in {STATE_PATH} across restarts.",
    )

    sub.add_parser("once", help="Process the latest unread mail once and exit.")

    ask = sub.add_parser("ask", help="Ask one question about the latest mail.")
    ask.add_argument("question")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_logging()
        log.critical("config_invalid", error=exc.message, context=exc.context)
        return 1
    configure_logging(settings.log_level, settings.log_json)

    try:
        if args.command == "once":
            summary = run_once(settings=settings)
            print(json.dumps(summary, indent=2))
            return 0 if summary["phase"] != "failed" else 1

        if args.command == "ask":
            ctx = build_context(settings)
            state = PollState()
            mail = seed_latest_mail(ctx, state)
            print(answer_question(ctx.llm, args.question, mail, state.history))
            return 0

        policy = NoveltyPolicy(args.policy) if args.policy else None
        ctx = build_context(settings, policy=policy, persist=args.persist_state)
        state = restore_state(STATE_PATH) if args.persist_state else PollState()
        run_forever(ctx, state, settings.poll_interval_minutes * 60, listen=not args.no_chat)
        return 0
    except KeyboardInterrupt:
        log.info("poller_stopped")
        return 0
    except AppError as exc:
        log.critical("fatal_error", error_type=type(exc).__name__, error=exc.message, context=exc.context)
        return 1
    except Exception as exc:
        log.critical("fatal_unclassified_error", error=str(exc), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
