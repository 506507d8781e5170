from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for every error the relay raises on purpose."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} ({self.context})"


class ConfigError(AppError):
    """Missing or invalid settings. Fatal at startup."""


class ExternalServiceError(AppError):
    """Gmail, LLM or Telegram call failed or returned malformed transport data."""


class ProcessingError(AppError):
    """The model output could not be turned into a complete analysis."""
