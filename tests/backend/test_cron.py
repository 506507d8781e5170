from __future__ import annotations

import threading
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from backend.app.api import cron
from backend.app.main import app
from signal_relay.errors import ConfigError


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> List[Dict[str, Any]]:
    seen: List[Dict[str, Any]] = []

    def fake_run_once(**kwargs: Any) -> Dict[str, Any]:
        seen.append(kwargs)
        kwargs["progress_cb"]("checking", {"detail": "Checking mailbox"})
        return {"phase": "done", "message_id": "msg-1", "signals": 2, "error": None}

    monkeypatch.setattr(cron, "run_once", fake_run_once)
    return seen


def test_health(client: TestClient) -> None:
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_cron_rejects_wrong_secret(client: TestClient, calls, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRON_SECRET", "s3cret")

    missing = client.get("/api/cron")
    wrong = client.get("/api/cron", headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert calls == []


def test_cron_runs_one_cycle_with_valid_secret(client: TestClient, calls, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRON_SECRET", "s3cret")

    resp = client.post("/api/cron", headers={"Authorization": "Bearer s3cret"})

    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "summary": {"phase": "done", "message_id": "msg-1", "signals": 2, "error": None},
    }
    assert len(calls) == 1

    status = client.get("/api/run/status").json()["status"]
    assert status["state"] == "done"
    assert status["summary"]["signals"] == 2
    assert status["last_message_id"] == "msg-1"
    assert status["runs"] >= 1


def test_cron_reports_config_errors_as_500(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)

    def broken_run_once(**kwargs: Any) -> Dict[str, Any]:
        raise ConfigError("Missing required setting.", {"key": "OPENAI_API_KEY"})

    monkeypatch.setattr(cron, "run_once", broken_run_once)

    resp = client.get("/api/cron")

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "error": "Missing required setting."}


def test_cron_refuses_to_start_while_a_run_holds_the_lock(client: TestClient, calls, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)

    assert cron._run_lock.acquire(blocking=False)
    try:
        busy = client.get("/api/cron")
    finally:
        cron._run_lock.release()
    after = client.get("/api/cron")

    assert busy.status_code == 409
    assert busy.json() == {"ok": False, "busy": True, "error": "A run is already in progress."}
    assert after.status_code == 200
    assert len(calls) == 1


def test_overlapping_triggers_run_once(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)
    started = threading.Event()
    release = threading.Event()
    runs: List[int] = []

    def slow_run_once(**kwargs: Any) -> Dict[str, Any]:
        runs.append(1)
        started.set()
        release.wait(timeout=5)
        return {"phase": "done", "message_id": "msg-1", "signals": 0, "error": None}

    monkeypatch.setattr(cron, "run_once", slow_run_once)
    results: Dict[str, Any] = {}
    first = threading.Thread(target=lambda: results.setdefault("first", client.get("/api/cron")))
    first.start()
    try:
        assert started.wait(timeout=5)
        second = client.get("/api/cron")
    finally:
        release.set()
        first.join(timeout=5)

    assert second.status_code == 409
    assert results["first"].status_code == 200
    assert runs == [1]
    assert not cron._run_lock.locked()


def test_lock_is_released_after_a_failed_run(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)

    def broken_run_once(**kwargs: Any) -> Dict[str, Any]:
        raise ConfigError("Missing required setting.", {"key": "OPENAI_API_KEY"})

    monkeypatch.setattr(cron, "run_once", broken_run_once)

    assert client.get("/api/cron").status_code == 500
    assert not cron._run_lock.locked()
