"""
Diagnoser
=========
One full diagnosis pass over a session: for every scenario, navigate to
the entry point, replay the scenario, observe the diagnostics window,
then run that scenario's health checks.

Combining:
    - window records are tagged with the scenario that produced them
    - non-Healthy checks become Functional records
    - a scenario whose navigation / steps time out yields one Timeout record
    - a scenario the driver could not run (network error, crashed target,
      failed action) yields one Runtime record and skips its checks
    - per-scenario reports are concatenated into a single HealthReport
    - records are deduplicated across scenarios (first scenario wins), so
      one diagnosis pass counts as one observation of each signature

Shared by the LoopController (live tree) and the FixValidator (scratch copy).
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from fixloop.browser.scenario import Scenario, default_scenarios, replay
from fixloop.core.config import LoopSettings
from fixloop.core.exceptions import DriverError, SessionTimeout
from fixloop.detection.error_detector import (
    ErrorDetector,
    dedupe,
    driver_failure_record,
    functional_records,
    timeout_record,
)
from fixloop.health.registry import HealthCheckRegistry
from fixloop.models.error_record import ErrorRecord
from fixloop.models.health_report import CheckResult, HealthReport
from fixloop.models.loop_iteration import Diagnosis

logger = logging.getLogger(__name__)


@dataclass
class ScenarioOutcome:
    scenario: str
    records: List[ErrorRecord] = field(default_factory=list)
    checks: List[CheckResult] = field(default_factory=list)
    page_ready_ms: Optional[float] = None
    timed_out: bool = False
    driver_failed: bool = False


@dataclass
class DiagnosisResult:
    diagnosis: Diagnosis
    records: List[ErrorRecord]


class Diagnoser:
    def __init__(
        self,
        detector: ErrorDetector,
        registry: HealthCheckRegistry,
        scenarios: Optional[List[Scenario]] = None,
        settings: Optional[LoopSettings] = None,
    ) -> None:
        self.detector = detector
        self.registry = registry
        self.scenarios = scenarios or default_scenarios()
        self.settings = settings or LoopSettings()

    def scenario(self, name: str) -> Scenario:
        for scenario in self.scenarios:
            if scenario.name == name:
                return scenario
        return self.scenarios[0]

    async def run_scenario(self, session, scenario: Scenario, iteration: int) -> ScenarioOutcome:
        outcome = ScenarioOutcome(scenario=scenario.name)
        timeout_detail: List[str] = []
        failure_detail: List[str] = []

        async def trigger() -> None:
            try:
                outcome.page_ready_ms = await replay(
                    session, self.settings.entry_point, scenario,
                    navigation_timeout=self.settings.navigation_timeout,
                )
            except SessionTimeout as exc:
                timeout_detail.append(str(exc))
                raise
            except DriverError as exc:
                logger.error("[%s] driver failure: %s", scenario.name, exc)
                failure_detail.append(str(exc))
            except Exception as exc:
                logger.error("[%s] unexpected driver failure: %s", scenario.name, exc, exc_info=True)
                failure_detail.append(f"{type(exc).__name__}: {exc}")

        outcome.records = await self.detector.detect(session, iteration, trigger, scenario.name)
        if timeout_detail:
            outcome.timed_out = True
            outcome.records.append(timeout_record(scenario.name, iteration, timeout_detail[0]))
            return outcome
        if failure_detail:
            outcome.driver_failed = True
            outcome.records.append(driver_failure_record(scenario.name, iteration, failure_detail[0]))
            return outcome

        report = await self.registry.run(session, scenario.checks)
        outcome.checks = list(report.checks)
        outcome.records.extend(functional_records(report, iteration, scenario.name))
        return outcome

    async def diagnose(self, session, iteration: int,
                       scenarios: Optional[List[Scenario]] = None) -> DiagnosisResult:
        outcomes = [
            await self.run_scenario(session, scenario, iteration)
            for scenario in (scenarios or self.scenarios)
        ]
        return combine(outcomes, iteration)


def combine(outcomes: List[ScenarioOutcome], iteration: int) -> DiagnosisResult:
    records = dedupe(r for o in outcomes for r in o.records)
    report = HealthReport.from_results([c for o in outcomes for c in o.checks])
    ready = next((o.page_ready_ms for o in outcomes if o.page_ready_ms is not None), None)
    diagnosis = Diagnosis(
        iteration=iteration,
        report=report,
        error_ids=[r.id for r in records],
        page_ready_ms=ready,
    )
    logger.info(
        "Diagnosis %d: %d error(s), overall %s",
        iteration, len(records), report.overall_status.value,
    )
    return DiagnosisResult(diagnosis=diagnosis, records=records)
