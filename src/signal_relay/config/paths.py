"""Filesystem locations for OAuth secrets, dedup state and the processed-mail log."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env once, globally
load_dotenv()

# Project root (independent of current working directory).
PROJECT_ROOT = Path(__file__).resolve().parents[3]
ENV_PREFIX = "SIGNAL_RELAY_"


def resolve_dir(name: str, default: str) -> Path:
    """
    Directory from SIGNAL_RELAY_<NAME>_DIR, falling back to `default`.
    Relative paths hang off PROJECT_ROOT; the directory is created on resolve.
    """
    raw = os.getenv(f"{ENV_PREFIX}{name.upper()}_DIR") or default
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    path.mkdir(parents=True, exist_ok=True)
    return path


SECRETS_DIR = resolve_dir("secrets", "secrets")
STATE_DIR = resolve_dir("state", ".state")
LOGS_DIR = resolve_dir("logs", "logs")

# Gmail OAuth: client secrets from Google Cloud Console, cached user token.
CREDENTIALS_PATH = SECRETS_DIR / "credentials.json"
TOKEN_PATH = SECRETS_DIR / "gmail_token.json"

# Daemon dedup state (only with --persist-state) and the observational mail log.
STATE_PATH = STATE_DIR / "state.json"
MAIL_LOG_PATH = LOGS_DIR / "latest-mails.jsonl"
