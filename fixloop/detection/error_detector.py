"""
Error Detector
==============
Consumes a session's diagnostics stream for one observation window and
turns what it sees into deduplicated ErrorRecords.

Window:
    1. Subscribe first, then run the trigger (navigation + scenario replay),
       so nothing emitted during page load is lost.
    2. Observe for the fixed window.
    3. Keep observing until the stream has been quiet for the grace
       period, capped at ``max_window_extension`` past the fixed window.

Filtering:
    - console messages: kept only at ``error`` level and when not noise
    - page errors: always kept

A clean window returns an empty list. A trigger timeout returns an empty
list as well; the caller decides whether that is itself a failure.

Health checks feed the same pipeline through ``functional_records()``:
every non-Healthy CheckResult becomes a Functional record.
"""
import asyncio
import logging
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from fixloop.browser.diagnostics import DiagnosticEvent, DiagnosticType
from fixloop.core.config import (
    MAX_WINDOW_EXTENSION,
    OBSERVATION_WINDOW,
    QUIET_GRACE,
)
from fixloop.core.exceptions import SessionTimeout
from fixloop.detection.noise_rules import NoiseFilter
from fixloop.detection.normalizer import (
    location_from_stack,
    normalize_message,
    parse_source_ref,
    to_tree_path,
)
from fixloop.models.error_record import ErrorKind, ErrorRecord, SourceLocation
from fixloop.models.health_report import HealthReport, HealthStatus
from fixloop.utils.fingerprint import compute_error_id

logger = logging.getLogger(__name__)

Trigger = Callable[[], Awaitable[object]]


def build_record(
    kind: ErrorKind,
    raw_message: str,
    iteration: int,
    scenario: str,
    file: Optional[str] = None,
    line: Optional[int] = None,
    component: Optional[str] = None,
    diagnostics: str = "",
    identity: Optional[str] = None,
) -> ErrorRecord:
    """
    Normalize and hash one observation.

    ``identity`` overrides the text hashed for the id (used for Functional
    records, which are keyed by check name + status, not by message).
    """
    message = normalize_message(raw_message)
    location = SourceLocation(file=file, line=line) if file else None
    if component is None:
        component = PurePosixPath(file).stem if file else "page"
    return ErrorRecord(
        id=compute_error_id(identity or message, location),
        kind=kind,
        component=component,
        message=message,
        location=location,
        first_seen_iteration=iteration,
        last_seen_iteration=iteration,
        occurrence_count=1,
        scenario=scenario,
        last_diagnostics=diagnostics or raw_message,
    )


def functional_records(report: HealthReport, iteration: int, scenario: str) -> List[ErrorRecord]:
    """One Functional record per non-Healthy check in ``report``."""
    records = []
    for check in report.checks:
        if check.status == HealthStatus.HEALTHY:
            continue
        file, line = parse_source_ref(str(check.details.get("source", "")))
        key = f"Check '{check.name}' reported {check.status.value}"
        records.append(build_record(
            ErrorKind.FUNCTIONAL,
            f"{key}: {check.message}" if check.message else key,
            iteration,
            scenario,
            file=file,
            line=line,
            component=check.name,
            identity=key,
        ))
    return records


def timeout_record(scenario: str, iteration: int, detail: str) -> ErrorRecord:
    return build_record(
        ErrorKind.TIMEOUT,
        f"Scenario '{scenario}' timed out",
        iteration,
        scenario,
        component="navigation",
        diagnostics=detail,
    )


def driver_failure_record(scenario: str, iteration: int, detail: str) -> ErrorRecord:
    return build_record(
        ErrorKind.RUNTIME,
        f"Scenario '{scenario}' could not be driven",
        iteration,
        scenario,
        component="navigation",
        diagnostics=detail,
    )


def dedupe(records: Iterable[ErrorRecord]) -> List[ErrorRecord]:
    """Keep the first record per id, preserving order."""
    seen: Dict[str, ErrorRecord] = {}
    for record in records:
        seen.setdefault(record.id, record)
    return list(seen.values())


class ErrorDetector:
    """Observation-window driven detector bound to one NoiseFilter."""

    def __init__(
        self,
        noise: Optional[NoiseFilter] = None,
        window: float = OBSERVATION_WINDOW,
        quiet_grace: float = QUIET_GRACE,
        max_extension: float = MAX_WINDOW_EXTENSION,
    ) -> None:
        self.noise = noise or NoiseFilter()
        self.window = window
        self.quiet_grace = quiet_grace
        self.max_extension = max_extension

    async def detect(
        self,
        session,
        iteration: int,
        trigger: Trigger,
        scenario: str = "page-load",
    ) -> List[ErrorRecord]:
        records: Dict[str, ErrorRecord] = {}
        stream = session.subscribe_diagnostics()
        try:
            try:
                await trigger()
            except SessionTimeout as exc:
                logger.warning("[%s] trigger timed out: %s", scenario, exc)
                return []

            loop = asyncio.get_running_loop()
            started = loop.time()
            fixed_end = started + self.window
            hard_end = fixed_end + self.max_extension
            last_event = started

            while True:
                now = loop.time()
                if now >= hard_end:
                    logger.debug("[%s] window capped after %.2fs", scenario, now - started)
                    break
                if now >= fixed_end and now - last_event >= self.quiet_grace:
                    break
                deadline = fixed_end if now < fixed_end else last_event + self.quiet_grace
                event = await stream.next_event(min(deadline, hard_end) - now)
                if event is None:
                    if stream.closed:
                        break
                    continue
                last_event = loop.time()
                record = self._to_record(event, iteration, scenario)
                if record is not None:
                    records.setdefault(record.id, record)
        finally:
            stream.close()

        if records:
            logger.info("[%s] %d error signature(s) observed", scenario, len(records))
        return list(records.values())

    def _to_record(self, event: DiagnosticEvent, iteration: int, scenario: str) -> Optional[ErrorRecord]:
        payload = event.payload
        if event.type == DiagnosticType.CONSOLE:
            if payload.get("level") != "error":
                return None
            text = payload.get("text", "")
            if self.noise.is_noise(text):
                return None
            file = to_tree_path(payload.get("url", "")) or None
            line = payload.get("line")
            return build_record(
                ErrorKind.CONSOLE, text, iteration, scenario,
                file=file, line=(line + 1 if isinstance(line, int) and file else None),
            )

        name = payload.get("name") or "Error"
        message = payload.get("message", "")
        text = message if message.startswith(name) else f"{name}: {message}"
        stack = payload.get("stack", "")
        file, line = location_from_stack(stack)
        return build_record(
            ErrorKind.RUNTIME, text, iteration, scenario,
            file=file, line=line, diagnostics=stack or text,
        )
