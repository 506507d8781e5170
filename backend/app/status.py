from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from time import time
from typing import Any, Dict, Optional, List

MAX_RECENT_ERRORS = 50


@dataclass
class RunStatus:
    state: str = "idle"
    step: str = "idle"
    detail: Optional[str] = None
    # Summary of the last finished cron run.
    summary: Optional[Dict[str, Any]] = None
    runs: int = 0
    last_message_id: Optional[str] = None
    recent_errors: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: float = field(default_factory=time)


class RunStatusStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._status = RunStatus()

    def update(self, **fields: Any) -> None:
        # Cron runs execute in a worker thread; status reads come from the event loop.
        with self._lock:
            for key, value in fields.items():
                if hasattr(self._status, key):
                    setattr(self._status, key, value)
            self._status.updated_at = time()

    def add_error(self, error: Dict[str, Any]) -> None:
        with self._lock:
            self._status.recent_errors = ([error] + self._status.recent_errors)[:MAX_RECENT_ERRORS]
            self._status.updated_at = time()

    def finish(self, summary: Dict[str, Any]) -> None:
        failed = summary.get("phase") == "failed"
        with self._lock:
            status = self._status
            status.state = "error" if failed else "done"
            status.step = summary.get("phase") or "done"
            status.detail = summary.get("error") or "Run completed"
            status.summary = summary
            status.runs += 1
            if summary.get("phase") == "done":
                status.last_message_id = summary.get("message_id")
            status.updated_at = time()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._status.state,
                "step": self._status.step,
                "detail": self._status.detail,
                "summary": self._status.summary,
                "runs": self._status.runs,
                "last_message_id": self._status.last_message_id,
                "recent_errors": list(self._status.recent_errors),
                "updated_at": self._status.updated_at,
            }


run_status_store = RunStatusStore()
