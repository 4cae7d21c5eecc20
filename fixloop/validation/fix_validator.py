"""
Fix Validator
=============
Decides whether one FixCandidate is safe to commit, without ever touching
the live tree.

Each validation gets a private scratch copy of the tree and its own
disposable browser session over that copy. Stages run in fixed order and
the first failure short-circuits the rest:

    1. SyntaxCheck        — patch applies; patched JavaScript still parses
    2. FunctionalReplay   — replaying the record's scenario no longer shows
                            the record (Functional: its check is Healthy)
    3. RegressionSubset   — every check Healthy at baseline is still Healthy
    4. PerformanceDelta   — page-ready latency within the tolerance band
    5. SideEffectScan     — no error signature outside the known set

Inconclusive:
    Timeouts, launch or driver failures and unexpected exceptions inside validation
    give Inconclusive, never Pass. Inconclusive verdicts are logged at
    WARNING for operator review.

A candidate id is validated at most once per validator.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from fixloop.core.config import LoopSettings
from fixloop.core.exceptions import (
    DriverError,
    EvaluationError,
    LaunchError,
    PatchApplyError,
    SessionTimeout,
)
from fixloop.detection.diagnoser import Diagnoser
from fixloop.models.error_record import ErrorKind, ErrorRecord
from fixloop.models.fix_candidate import FixCandidate
from fixloop.models.health_report import HealthReport, HealthStatus
from fixloop.models.validation_verdict import (
    StageResult,
    ValidationStage,
    ValidationVerdict,
    VerdictOutcome,
)
from fixloop.services.source_tree import SourceTree

logger = logging.getLogger(__name__)

PARSE_SCRIPT = "(src) => { new Function(src); return true; }"

# ES modules cannot be parsed as a function body
_MODULE_SYNTAX = re.compile(r"^\s*(?:import\s[\w{*'\"]|import\(|export\s)", re.MULTILINE)


@dataclass
class ValidationContext:
    record: ErrorRecord
    known_error_ids: FrozenSet[str] = frozenset()
    baseline: Optional[HealthReport] = None
    baseline_ready_ms: Optional[float] = None
    iteration: int = 0


@dataclass
class _StageLog:
    results: List[StageResult] = field(default_factory=list)

    def passed(self, stage: ValidationStage, detail: str = "") -> None:
        self.results.append(StageResult(stage=stage, outcome=VerdictOutcome.PASS, detail=detail))

    def failed(self, stage: ValidationStage, detail: str) -> ValidationStage:
        self.results.append(StageResult(stage=stage, outcome=VerdictOutcome.FAIL, detail=detail))
        return stage


class FixValidator:
    def __init__(self, tree: SourceTree, provider, diagnoser: Diagnoser,
                 settings: Optional[LoopSettings] = None) -> None:
        self.tree = tree
        self.provider = provider
        self.diagnoser = diagnoser
        self.settings = settings or LoopSettings()
        self._validated: set[str] = set()

    async def validate(self, candidate: FixCandidate, context: ValidationContext) -> ValidationVerdict:
        if candidate.id in self._validated:
            raise ValueError(f"Candidate {candidate.id} was already validated")
        self._validated.add(candidate.id)

        started = time.monotonic()
        log = _StageLog()
        try:
            failed_stage = await asyncio.wait_for(
                self._run_stages(candidate, context, log),
                timeout=self.settings.validation_timeout,
            )
        except (asyncio.TimeoutError, SessionTimeout) as exc:
            return self._inconclusive(candidate, log, started, f"Validation timed out: {str(exc) or 'budget exceeded'}")
        except (LaunchError, DriverError) as exc:
            return self._inconclusive(candidate, log, started, f"Validation session failed: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error validating %s", candidate.id)
            return self._inconclusive(candidate, log, started, f"{type(exc).__name__}: {exc}")

        outcome = VerdictOutcome.FAIL if failed_stage else VerdictOutcome.PASS
        verdict = ValidationVerdict(
            candidate_id=candidate.id,
            target_error_id=candidate.target_error_id,
            confidence=candidate.confidence,
            outcome=outcome,
            stages=log.results,
            failed_stage=failed_stage,
            notes=log.results[-1].detail if failed_stage else "All stages passed",
            duration_seconds=round(time.monotonic() - started, 2),
        )
        logger.info(
            "Verdict %s for %s (%s)%s",
            outcome.value, candidate.id, candidate.signature_id,
            f" failed at {failed_stage.value}: {verdict.notes}" if failed_stage else "",
        )
        return verdict

    # -------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------
    async def _run_stages(self, candidate: FixCandidate, context: ValidationContext,
                          log: _StageLog) -> Optional[ValidationStage]:
        record = context.record
        async with self.tree.scratch_copy() as scratch:
            try:
                applied = await asyncio.to_thread(scratch.apply_sync, candidate)
            except PatchApplyError as exc:
                return log.failed(ValidationStage.SYNTAX_CHECK, str(exc))

            async with self.provider.open(scratch.root) as session:
                syntax_error = await self._parse_check(session, scratch, candidate.patch.file)
                if syntax_error:
                    return log.failed(ValidationStage.SYNTAX_CHECK, syntax_error)
                log.passed(ValidationStage.SYNTAX_CHECK,
                           f"Applied at {applied.patch.file}:{applied.applied_line}")

                scenario = self.diagnoser.scenario(record.scenario)
                replay = await self.diagnoser.run_scenario(session, scenario, context.iteration)
                if replay.timed_out:
                    raise SessionTimeout(f"Scenario {scenario.name!r} timed out during replay")
                if replay.driver_failed:
                    raise DriverError(f"Scenario {scenario.name!r} could not be driven during replay")
                replay_ids = {r.id for r in replay.records}
                if record.kind == ErrorKind.FUNCTIONAL:
                    check = next((c for c in replay.checks if c.name == record.component), None)
                    if check is None or check.status != HealthStatus.HEALTHY:
                        status = check.status.value if check else "missing"
                        return log.failed(ValidationStage.FUNCTIONAL_REPLAY,
                                          f"Check {record.component!r} still {status}")
                elif record.id in replay_ids:
                    return log.failed(ValidationStage.FUNCTIONAL_REPLAY,
                                      f"Error {record.id} still present after replay")
                log.passed(ValidationStage.FUNCTIONAL_REPLAY, f"Scenario {scenario.name!r} clean for target")

                full = await self.diagnoser.diagnose(session, context.iteration)
                report = full.diagnosis.report
                if context.baseline is not None:
                    regressed = []
                    for name in context.baseline.passing_check_names():
                        result = report.result_for(name)
                        if result is None or result.status != HealthStatus.HEALTHY:
                            regressed.append(name)
                    if regressed:
                        return log.failed(ValidationStage.REGRESSION_SUBSET,
                                          f"Previously healthy check(s) regressed: {', '.join(regressed)}")
                log.passed(ValidationStage.REGRESSION_SUBSET)

                within_band, perf_detail = self._performance(
                    context.baseline_ready_ms, full.diagnosis.page_ready_ms,
                )
                if not within_band:
                    return log.failed(ValidationStage.PERFORMANCE_DELTA, perf_detail)
                log.passed(ValidationStage.PERFORMANCE_DELTA, perf_detail)

                observed = replay_ids | set(full.diagnosis.error_ids)
                unexpected = sorted(observed - set(context.known_error_ids) - {record.id})
                if unexpected:
                    return log.failed(ValidationStage.SIDE_EFFECT_SCAN,
                                      f"New error signature(s): {', '.join(unexpected)}")
                log.passed(ValidationStage.SIDE_EFFECT_SCAN)
        return None

    async def _parse_check(self, session, scratch: SourceTree, relative: str) -> str:
        """Empty string when the patched file parses (or cannot be parsed standalone)."""
        if not relative.endswith(".js"):
            return ""
        source = scratch.read(relative)
        if source is None:
            return f"Cannot read patched {relative}"
        if _MODULE_SYNTAX.search(source):
            logger.debug("%s is an ES module; parse check skipped", relative)
            return ""
        try:
            await session.evaluate(PARSE_SCRIPT, source)
        except EvaluationError as exc:
            return f"Patched {relative} does not parse: {exc.message}"
        return ""

    def _performance(self, baseline_ms: Optional[float], observed_ms: Optional[float]) -> Tuple[bool, str]:
        if baseline_ms is None or observed_ms is None:
            return True, "No baseline latency"
        limit = baseline_ms * (1 + self.settings.perf_tolerance) + self.settings.perf_slack_ms
        if observed_ms > limit:
            return False, f"Slower page-ready: {observed_ms:.0f}ms > {limit:.0f}ms"
        return True, f"Page-ready {observed_ms:.0f}ms within {limit:.0f}ms"

    def _inconclusive(self, candidate: FixCandidate, log: _StageLog,
                      started: float, notes: str) -> ValidationVerdict:
        logger.warning("Inconclusive verdict for %s: %s", candidate.id, notes)
        return ValidationVerdict(
            candidate_id=candidate.id,
            target_error_id=candidate.target_error_id,
            confidence=candidate.confidence,
            outcome=VerdictOutcome.INCONCLUSIVE,
            stages=log.results,
            notes=notes,
            duration_seconds=round(time.monotonic() - started, 2),
        )
