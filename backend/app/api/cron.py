# backend/app/api/cron.py
import hmac
import os
import threading
from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from signal_relay.app.run import run_once
from signal_relay.errors import AppError
from signal_relay.utils.logger import get_logger
from backend.app.status import run_status_store

router = APIRouter()
log = get_logger(__name__)

# One run at a time per process.
_run_lock = threading.Lock()


def _authorize(authorization: Optional[str]) -> None:
    # Open when no CRON_SECRET is configured (local development).
    secret = (os.getenv("CRON_SECRET") or "").strip()
    if not secret:
        return
    if not authorization or not hmac.compare_digest(authorization, f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _progress_cb(step: str, event: dict[str, Any]) -> None:
    status_update: dict[str, Any] = {
        "state": "running",
        "step": step,
        "detail": event.get("detail"),
    }
    run_status_store.update(**status_update)
    error = event.get("error")
    if error:
        run_status_store.add_error(error)


@router.api_route("/cron", methods=["GET", "POST"])
async def cron_endpoint(authorization: Optional[str] = Header(default=None)):
    _authorize(authorization)
    if not _run_lock.acquire(blocking=False):
        log.warning("cron_skipped_busy")
        return JSONResponse(
            status_code=409,
            content={"ok": False, "busy": True, "error": "A run is already in progress."},
        )

    try:
        log.info("cron_triggered")
        run_status_store.update(state="running", step="starting", detail="Starting run")
        try:
            # Gmail/OpenAI/Telegram calls block; keep the event loop free.
            summary = await run_in_threadpool(run_once, progress_cb=_progress_cb)
        except AppError as exc:
            log.error("cron_failed", error_type=type(exc).__name__, error=exc.message, context=exc.context)
            run_status_store.update(state="error", step="error", detail=exc.message)
            return JSONResponse(status_code=500, content={"ok": False, "error": exc.message})
        run_status_store.finish(summary)
    finally:
        _run_lock.release()

    return {"ok": summary.get("phase") != "failed", "summary": summary}


@router.get("/run/status")
async def run_status() -> dict:
    return {"ok": True, "status": run_status_store.snapshot()}
