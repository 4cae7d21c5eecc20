"""
Error Detector Tests
====================
Observation window, filtering, normalization, cross-window merging and
containment of driver failures during diagnosis.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from fixloop.browser.diagnostics import DiagnosticEvent, DiagnosticHub, DiagnosticType
from fixloop.browser.scenario import DEFAULT_SCENARIO_NAME
from fixloop.core.exceptions import NavigationTimeout
from fixloop.detection.diagnoser import Diagnoser
from fixloop.detection.error_detector import ErrorDetector, functional_records
from fixloop.detection.error_ledger import ErrorLedger
from fixloop.detection.noise_rules import NoiseFilter
from fixloop.detection.normalizer import (
    location_from_stack,
    normalize_message,
    parse_source_ref,
    to_tree_path,
)
from fixloop.health.builtin_checks import default_registry
from fixloop.models.error_record import ErrorKind
from fixloop.models.health_report import CheckResult, HealthReport, HealthStatus

from fake_browser import FakeSession, fast_settings, write_tree


class StubSession(DiagnosticHub):
    base_url = "http://127.0.0.1:4000/"


def page_error(message, name="TypeError", url="http://127.0.0.1:4000/js/app.js", line=12):
    return DiagnosticEvent(type=DiagnosticType.PAGE_ERROR, payload={
        "name": name,
        "message": message,
        "stack": f"{name}: {message}\n    at start ({url}:{line}:9)",
    })


def console(text, level="error", url="http://127.0.0.1:4000/js/ui.js", line=4):
    return DiagnosticEvent(type=DiagnosticType.CONSOLE, payload={
        "level": level, "text": text, "url": url, "line": line,
    })


@pytest.fixture
def detector():
    return ErrorDetector(window=0.02, quiet_grace=0.01, max_extension=0.1)


def _detect(detector, events, iteration=1):
    session = StubSession()

    async def trigger():
        for event in events:
            session.publish(event)

    return asyncio.run(detector.detect(session, iteration, trigger, "page-load"))


# ===================================================================
# Normalization
# ===================================================================
def test_normalize_strips_volatile_substrings():
    a = normalize_message("Save failed at 2024-05-01T10:22:31.123Z for 0x7ffd12ab id 1699999999123")
    b = normalize_message("Save failed at 2025-01-09T01:02:03Z for 0x1 id 1700000000456")
    assert a == b
    assert "<ts>" in a and "<addr>" in a and "<n>" in a


def test_normalize_uuid_and_cache_buster():
    text = "Failed to load /data.json?v=123&t=99 for 123e4567-e89b-12d3-a456-426614174000"
    assert normalize_message(text) == "Failed to load /data.json for <uuid>"


def test_to_tree_path_drops_origin_and_query():
    assert to_tree_path("http://127.0.0.1:5173/js/app.js?v=3") == "js/app.js"
    assert to_tree_path("js/app.js") == "js/app.js"
    assert to_tree_path("") == ""


def test_location_from_stack_takes_first_frame():
    stack = ("TypeError: x\n    at a (http://127.0.0.1:1/js/game.js:40:2)\n"
             "    at b (http://127.0.0.1:1/js/main.js:3:1)")
    assert location_from_stack(stack) == ("js/game.js", 40)
    assert location_from_stack("no frames here") == (None, None)


def test_parse_source_ref():
    assert parse_source_ref("js/app.js:17") == ("js/app.js", 17)
    assert parse_source_ref("js/app.js") == ("js/app.js", None)
    assert parse_source_ref("") == (None, None)


# ===================================================================
# Detection window
# ===================================================================
def test_clean_window_returns_empty(detector):
    assert _detect(detector, []) == []


def test_page_error_becomes_runtime_record(detector):
    records = _detect(detector, [page_error("Cannot read properties of undefined (reading 'hp')")])
    assert len(records) == 1
    record = records[0]
    assert record.kind == ErrorKind.RUNTIME
    assert record.message == "TypeError: Cannot read properties of undefined (reading 'hp')"
    assert record.location.file == "js/app.js"
    assert record.location.line == 12
    assert record.component == "app"
    assert record.occurrence_count == 1
    assert len(record.id) == 16


def test_duplicates_in_one_window_count_once(detector):
    event = page_error("boom")
    records = _detect(detector, [event, event, event])
    assert len(records) == 1
    assert records[0].occurrence_count == 1


def test_console_filtering(detector):
    records = _detect(detector, [
        console("GET http://127.0.0.1:4000/favicon.ico 404 (Not Found)"),
        console("Download the React DevTools for a better development experience"),
        console("just a warning", level="warning"),
        console("Save slot corrupted"),
    ])
    assert [r.message for r in records] == ["Save slot corrupted"]
    assert records[0].kind == ErrorKind.CONSOLE
    # console line numbers are 0-based in the payload
    assert records[0].location.line == 5


def test_configured_noise_pattern(detector):
    detector.noise = NoiseFilter(["analytics"])
    assert _detect(detector, [console("analytics beacon blocked")]) == []


def test_events_after_fixed_window_extend_it():
    detector = ErrorDetector(window=0.01, quiet_grace=0.05, max_extension=0.5)
    session = StubSession()

    async def late_publisher():
        await asyncio.sleep(0.03)
        session.publish(page_error("late failure"))

    async def run_test():
        task = None

        async def trigger():
            nonlocal task
            task = asyncio.create_task(late_publisher())

        records = await detector.detect(session, 1, trigger)
        await task
        return records

    records = asyncio.run(run_test())
    assert [r.message for r in records] == ["TypeError: late failure"]


def test_trigger_timeout_yields_empty_set(detector):
    session = StubSession()

    async def trigger():
        session.publish(page_error("never seen"))
        raise NavigationTimeout("Navigation exceeded 15s")

    assert asyncio.run(detector.detect(session, 1, trigger)) == []


def test_stream_closed_after_detect(detector):
    session = StubSession()

    async def trigger():
        return None

    asyncio.run(detector.detect(session, 1, trigger))
    assert session._streams == []


# ===================================================================
# Functional records
# ===================================================================
def test_functional_records_from_unhealthy_checks():
    report = HealthReport.from_results([
        CheckResult(name="page-ready", status=HealthStatus.HEALTHY),
        CheckResult(name="begin-enabled", status=HealthStatus.CRITICAL,
                    message="#begin stays disabled", details={"source": "js/creation.js:8"}),
        CheckResult(name="load-performance", status=HealthStatus.UNKNOWN),
    ])
    records = functional_records(report, 2, "character-creation")
    assert [r.component for r in records] == ["begin-enabled", "load-performance"]
    first = records[0]
    assert first.kind == ErrorKind.FUNCTIONAL
    assert first.message == "Check 'begin-enabled' reported Critical: #begin stays disabled"
    assert str(first.location) == "js/creation.js:8"
    assert first.scenario == "character-creation"
    assert records[1].location is None


def test_functional_id_ignores_check_message():
    def report(message):
        return HealthReport.from_results([
            CheckResult(name="load-performance", status=HealthStatus.WARNING, message=message),
        ])

    a = functional_records(report("Load: 6100ms"), 1, "page-load")[0]
    b = functional_records(report("Load: 7300ms"), 1, "page-load")[0]
    assert a.id == b.id


# ===================================================================
# Ledger
# ===================================================================
def test_ledger_merges_across_windows(detector):
    ledger = ErrorLedger()
    first = _detect(detector, [page_error("boom")], iteration=1)
    second = _detect(detector, [page_error("boom")], iteration=2)

    ledger.merge(first)
    merged = ledger.merge(second)

    assert len(ledger) == 1
    assert merged[0].occurrence_count == 2
    assert merged[0].first_seen_iteration == 1
    assert merged[0].last_seen_iteration == 2


def test_ledger_counts_never_decrease(detector):
    ledger = ErrorLedger()
    window = _detect(detector, [page_error("boom")])
    counts = []
    for _ in range(3):
        counts.append(ledger.merge(window)[0].occurrence_count)
    error_id = window[0].id
    ledger.resolve(error_id)
    counts.append(ledger.merge(window)[0].occurrence_count)

    assert counts == sorted(counts)
    assert counts[-1] == 4
    assert error_id in ledger


def test_ledger_resolve_moves_record():
    ledger = ErrorLedger()
    assert ledger.resolve("missing") is None


# ===================================================================
# Diagnoser
# ===================================================================
def _diagnoser():
    return Diagnoser(
        ErrorDetector(window=0.01, quiet_grace=0.01, max_extension=0.05),
        default_registry(),
        settings=fast_settings(),
    )


def test_diagnoser_turns_driver_failure_into_record(tmp_path):
    root = write_tree(tmp_path, {
        "index.html": "<script src='js/app.js'></script>",
        "js/app.js": 'boot(); // @fake crash when="boot()"\n',
    })

    result = asyncio.run(_diagnoser().diagnose(FakeSession(root), 1))

    assert len(result.records) == 1
    record = result.records[0]
    assert record.kind == ErrorKind.RUNTIME
    assert record.message == f"Scenario '{DEFAULT_SCENARIO_NAME}' could not be driven"
    assert "ERR_CONNECTION_RESET" in record.last_diagnostics
    assert result.diagnosis.report.checks == []
    assert not result.diagnosis.converged


def test_diagnoser_contains_unexpected_driver_exception(tmp_path):
    root = write_tree(tmp_path, {"index.html": "<p>hi</p>"})
    session = FakeSession(root)
    session.navigate = AsyncMock(side_effect=RuntimeError("Target page, context or browser has been closed"))

    result = asyncio.run(_diagnoser().diagnose(session, 1))

    assert [r.message for r in result.records] == [f"Scenario '{DEFAULT_SCENARIO_NAME}' could not be driven"]
    assert result.records[0].last_diagnostics.startswith("RuntimeError: Target page")
