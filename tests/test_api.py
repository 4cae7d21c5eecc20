"""
API Tests
=========
POST /run-loop, GET /status and GET /results.
The loop itself is mocked; no browser is started.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from fixloop.api import run_loop as run_loop_api
from fixloop.api.run_tracker import tracker
from fixloop.models.error_record import ErrorKind, ErrorRecord, SourceLocation
from fixloop.models.loop_report import FinalStatus, LoopReport


def _close_coroutine(coro):
    coro.close()
    task = MagicMock()
    task.done.return_value = False
    return task


@pytest.fixture
def client():
    from main import app
    tracker.task = None
    tracker.reset()
    yield TestClient(app)
    tracker.task = None
    tracker.reset()


def _report(status=FinalStatus.EXHAUSTED):
    record = ErrorRecord(
        id="abc123", kind=ErrorKind.RUNTIME, message="TypeError: boom",
        location=SourceLocation(file="js/app.js", line=4),
    )
    return LoopReport(final_status=status, exhaustion_reason="No candidate passed validation",
                      remaining_errors=[record], summary="Exhausted after 1 iteration(s)")


# ===================================================================
# POST /run-loop
# ===================================================================
def test_run_loop_starts_background_task(client, tmp_path):
    with patch("fixloop.api.run_loop.asyncio.create_task", side_effect=_close_coroutine) as create_task:
        resp = client.post("/run-loop", json={"source_dir": str(tmp_path), "max_iterations": 2})

    assert resp.status_code == 202
    assert resp.json() == {"message": "Loop run started", "source_dir": str(tmp_path)}
    create_task.assert_called_once()
    assert tracker.running


def test_run_loop_rejects_missing_directory(client, tmp_path):
    resp = client.post("/run-loop", json={"source_dir": str(tmp_path / "missing")})
    assert resp.status_code == 422


def test_run_loop_rejects_zero_iterations(client, tmp_path):
    resp = client.post("/run-loop", json={"source_dir": str(tmp_path), "max_iterations": 0})
    assert resp.status_code == 422


def test_second_run_while_active_conflicts(client, tmp_path):
    tracker.task = MagicMock()
    tracker.task.done.return_value = False

    resp = client.post("/run-loop", json={"source_dir": str(tmp_path)})

    assert resp.status_code == 409


def test_background_run_records_report(tmp_path):
    report = _report()
    output = tmp_path / "results.json"
    request = run_loop_api.RunLoopRequest(source_dir=str(tmp_path), results_path=str(output),
                                          worker_limit=4)

    with patch("fixloop.api.run_loop.run_loop", new=AsyncMock(return_value=report)) as mocked:
        asyncio.run(run_loop_api._run_in_background(request))

    overrides = mocked.call_args.args[1]
    assert overrides["worker_limit"] == 4
    assert overrides["max_iterations"] is None
    assert tracker.report is report
    assert json.loads(output.read_text())["final_status"] == "exhausted"
    tracker.reset()


def test_background_run_failure_sets_error(tmp_path):
    request = run_loop_api.RunLoopRequest(source_dir=str(tmp_path))
    with patch("fixloop.api.run_loop.run_loop", new=AsyncMock(side_effect=RuntimeError("boom"))):
        asyncio.run(run_loop_api._run_in_background(request))

    assert tracker.error == "boom"
    assert tracker.report is None
    tracker.reset()


# ===================================================================
# GET /status and /results
# ===================================================================
def test_status_idle(client):
    resp = client.get("/status")
    assert resp.status_code == 200
    assert resp.json()["status"] == "idle"
    assert resp.json()["running"] is False


def test_status_reports_progress(client):
    tracker.update_state({"phase": "Validating", "iteration": 2, "status": "pending"})

    body = client.get("/status").json()

    assert body["phase"] == "Validating"
    assert body["iteration"] == 2


def test_results_404_before_any_run(client):
    assert client.get("/results").status_code == 404


def test_results_returns_report(client):
    tracker.report = _report()

    body = client.get("/results").json()

    assert body["final_status"] == "exhausted"
    assert body["exit_code"] == 1
    assert body["remaining_errors"][0]["id"] == "abc123"
    assert body["formatted"]["remaining_errors"][0].startswith("RUNTIME error in js/app.js:4")


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
