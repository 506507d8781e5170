# backend/app/main.py
from datetime import datetime, timezone

from fastapi import FastAPI

from backend.app.api.cron import router as cron_router

app = FastAPI(title="signal-relay API")
app.include_router(cron_router, prefix="/api")


@app.get("/api/health")
def health() -> dict:
    return {
        "ok": True,
        "message": "Server is running.",
        "endpoints": {"cron": "/api/cron (triggers one mail check)"},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
