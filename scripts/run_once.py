import json
import sys

from dotenv import load_dotenv

load_dotenv()

# Single-shot cycle: novelty comes from the Gmail UNREAD label, so this is
# safe to call from cron or any external scheduler.
from signal_relay.app.run import run_once
from signal_relay.config.settings import load_settings
from signal_relay.utils.logger import configure_logging


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)

    summary = run_once(settings=settings)
    print(json.dumps(summary, indent=2))
    return 1 if summary["phase"] == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
