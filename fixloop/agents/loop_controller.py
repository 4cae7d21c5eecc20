"""
Loop Controller
===============
The state machine driving Diagnose → Generate → Validate → Apply →
Re-diagnose until the application is healthy or a budget runs out.

States:
    Idle → Diagnosing → Generating → Validating → Applying → ReDiagnosing
         → (Converged | Exhausted | Diagnosing)

Core Rules:
    - Records are worked in priority order: most frequent first, then
      earliest seen.
    - Candidates below ``min_confidence`` or already validated in an
      earlier iteration are never validated again.
    - Records are validated concurrently (bounded by ``worker_limit``);
      the candidates of one record are tried one after another until
      one passes.
    - Commits to the live tree are serialized, highest confidence first.
    - After re-diagnosis, an applied patch whose target is still present
      is rolled back.
    - Exhausted (iteration budget, wall-clock budget, nothing fixable,
      nothing passed) is a normal terminal state, not an error.
    - The wall clock is enforced inside an iteration too: validations and
      re-diagnoses are cancelled when it runs out, and patches that were
      applied but not yet confirmed are rolled back.
    - A LaunchError at any point ends the run as ``launch_failed``.

Fault tolerance:
    Generator or validator failures for one record never stop the loop;
    the record is simply unfixable for that iteration. Any other failure
    ends the run as Exhausted with the ledger reported as it stands.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from fixloop.browser.launcher import BrowserLauncher, PlaywrightSessionProvider
from fixloop.core.config import LoopSettings
from fixloop.core.exceptions import BudgetExhausted, LaunchError, PatchApplyError
from fixloop.core.project_config import ProjectConfig, load_project_config
from fixloop.detection.diagnoser import Diagnoser, DiagnosisResult
from fixloop.detection.error_detector import ErrorDetector
from fixloop.detection.error_ledger import ErrorLedger
from fixloop.detection.noise_rules import NoiseFilter
from fixloop.generation.fix_generator import FixGenerator, GenerationContext
from fixloop.health.builtin_checks import default_registry
from fixloop.models.error_record import ErrorRecord
from fixloop.models.fix_candidate import AppliedPatch, FixCandidate
from fixloop.models.loop_iteration import LoopIteration
from fixloop.models.loop_report import FinalStatus, LoopReport
from fixloop.models.validation_verdict import ValidationVerdict, VerdictOutcome
from fixloop.services.source_tree import SourceTree
from fixloop.state.loop_state import LoopPhase, LoopRunState
from fixloop.validation.fix_validator import FixValidator, ValidationContext

logger = logging.getLogger(__name__)

StateListener = Callable[[LoopRunState], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def prioritize(records: List[ErrorRecord]) -> List[ErrorRecord]:
    """Descending occurrence count, then earliest first-seen iteration."""
    return sorted(records, key=lambda r: (-r.occurrence_count, r.first_seen_iteration, r.id))


def new_run_state(source_root: str, entry_point: str, budget: float) -> LoopRunState:
    return {
        "source_root": source_root,
        "entry_point": entry_point,
        "phase": LoopPhase.IDLE.value,
        "iteration": 0,
        "phase_history": [LoopPhase.IDLE.value],
        "start_time": time.time(),
        "budget_remaining_seconds": budget,
        "total_errors_seen": 0,
        "candidates_validated": 0,
        "patches_applied": 0,
        "patches_rolled_back": 0,
        "inconclusive_verdicts": 0,
        "status": "pending",
        "execution_summary": "",
    }


class LoopController:
    """
    Drives one repair run over one source tree.

    ``provider`` opens sessions over a tree root (see SessionProvider);
    every other collaborator is built from ``settings`` and ``project``
    unless passed explicitly.
    """

    def __init__(
        self,
        tree: SourceTree,
        provider,
        settings: Optional[LoopSettings] = None,
        project: Optional[ProjectConfig] = None,
        on_state: Optional[StateListener] = None,
        generator: Optional[FixGenerator] = None,
        diagnoser: Optional[Diagnoser] = None,
    ) -> None:
        project = project or ProjectConfig()
        self.tree = tree
        self.provider = provider
        self.settings = settings or LoopSettings()
        self.diagnoser = diagnoser or Diagnoser(
            ErrorDetector(
                NoiseFilter(project.noise_patterns),
                window=self.settings.observation_window,
                quiet_grace=self.settings.quiet_grace,
                max_extension=self.settings.max_window_extension,
            ),
            default_registry(
                project.required_selectors,
                project.expectations,
                check_timeout=self.settings.action_timeout,
            ),
            project.scenario_list(),
            self.settings,
        )
        self.generator = generator or FixGenerator(project.fix_signatures())
        self.validator = FixValidator(tree, provider, self.diagnoser, self.settings)
        self.ledger = ErrorLedger()
        self.state = new_run_state(str(tree.root), self.settings.entry_point,
                                   self.settings.wall_clock_budget)
        self._on_state = on_state
        self._tried: Set[str] = set()
        self._inconclusive: List[str] = []
        self._run_start = 0.0
        self._out_of_time = False

    # ===================================================================
    # Public API
    # ===================================================================
    async def run(self) -> LoopReport:
        started_at = datetime.now(timezone.utc)
        self._run_start = time.monotonic()
        iterations: List[LoopIteration] = []
        logger.info("Starting fix loop over %s (entry %s)", self.tree.root, self.settings.entry_point)

        try:
            self._set_phase(LoopPhase.DIAGNOSING)
            current = await self._diagnose_live(1)
            self.ledger.merge(current.records)

            index = 0
            while True:
                index += 1
                iter_start = time.monotonic()
                self.state["iteration"] = index
                logger.info("--- Starting Iteration %d ---", index)

                if current.diagnosis.converged:
                    iterations.append(LoopIteration(index=index, diagnosis=current.diagnosis))
                    return self._finish(FinalStatus.CONVERGED, "", iterations, started_at)

                self._check_budget(iterations_done=index - 1)
                iteration = LoopIteration(index=index, diagnosis=current.diagnosis)
                iterations.append(iteration)
                try:
                    outcome = await self._run_iteration(iteration, current)
                finally:
                    iteration.iteration_time_seconds = round(time.monotonic() - iter_start, 2)

                if outcome is None:
                    reason = ("No candidate passed validation" if iteration.candidates_tried
                              else "No fix candidates for the remaining errors")
                    return self._finish(FinalStatus.EXHAUSTED, reason, iterations, started_at)

                current = outcome
                if current.diagnosis.converged:
                    return self._finish(FinalStatus.CONVERGED, "", iterations, started_at)
                self._check_budget(iterations_done=index)
                self._set_phase(LoopPhase.DIAGNOSING)

        except BudgetExhausted as exc:
            return self._finish(FinalStatus.EXHAUSTED, exc.reason, iterations, started_at)
        except LaunchError as exc:
            logger.error("Launch failed: %s", exc)
            return self._finish(FinalStatus.LAUNCH_FAILED, str(exc), iterations, started_at)
        except Exception as exc:
            logger.error("Fix loop failed: %s", exc, exc_info=True)
            return self._finish(FinalStatus.EXHAUSTED, f"Unexpected failure: {exc}", iterations, started_at)

    # ===================================================================
    # One iteration
    # ===================================================================
    async def _run_iteration(
        self, iteration: LoopIteration, current: DiagnosisResult,
    ) -> Optional[DiagnosisResult]:
        """
        Generate → Validate → Apply → Re-diagnose, filling ``iteration``.

        Returns the re-diagnosis, or None when the iteration applied
        nothing. Raises BudgetExhausted when the wall clock runs out
        partway through; patches not yet confirmed are rolled back first.
        """
        index = iteration.index
        known = (self.ledger.get(error_id) for error_id in current.diagnosis.error_ids)
        records = prioritize([record for record in known if record is not None])
        rank = {record.id: position for position, record in enumerate(records)}

        # --- (a) Generate ---
        self._set_phase(LoopPhase.GENERATING)
        plans: Dict[str, List[FixCandidate]] = {}
        for record in records:
            candidates = self._candidates_for(record, current)
            if candidates:
                plans[record.id] = candidates
            else:
                iteration.unfixable_error_ids.append(record.id)

        if not plans:
            logger.warning("Iteration %d: all %d error(s) unfixable", index, len(records))
            return None

        # --- (b) Validate ---
        self._set_phase(LoopPhase.VALIDATING)
        semaphore = asyncio.Semaphore(max(1, self.settings.worker_limit))
        by_id = {record.id: record for record in records}
        outcomes = await asyncio.gather(*[
            self._validate_record(by_id[error_id], candidates, current, index, semaphore)
            for error_id, candidates in plans.items()
        ])

        passing: List[FixCandidate] = []
        for (error_id, candidates), (verdicts, winner) in zip(plans.items(), outcomes):
            iteration.candidates_tried.extend(v.candidate_id for v in verdicts)
            iteration.verdicts.extend(verdicts)
            if winner is None:
                iteration.unfixable_error_ids.append(error_id)
            else:
                passing.append(winner)
        if self._out_of_time or self._remaining() <= 0:
            raise BudgetExhausted(self._wall_clock_reason())

        # --- (c) Apply ---
        self._set_phase(LoopPhase.APPLYING)
        applied: List[AppliedPatch] = []
        for candidate in sorted(passing, key=lambda c: (-c.confidence, rank[c.target_error_id])):
            try:
                applied.append(await self.tree.apply(candidate))
                iteration.applied_candidate_ids.append(candidate.id)
                self.state["patches_applied"] += 1
            except PatchApplyError as exc:
                logger.warning("Rejected %s at commit: %s", candidate.id, exc)
                iteration.unfixable_error_ids.append(candidate.target_error_id)

        if not applied:
            logger.warning("Iteration %d: no candidate could be applied", index)
            return None

        # --- (d) Re-diagnose ---
        self._set_phase(LoopPhase.REDIAGNOSING)
        try:
            after = await self._within_budget(self._diagnose_live(index + 1))
        except asyncio.TimeoutError:
            logger.warning("Budget spent before re-diagnosis confirmed %d patch(es)", len(applied))
            for patch in applied:
                await self._roll_back(patch, iteration)
            raise BudgetExhausted(self._wall_clock_reason()) from None
        still_present = set(after.diagnosis.error_ids)
        for patch in applied:
            if patch.error_id in still_present:
                logger.warning("Target %s still present; rolling back %s", patch.error_id, patch.candidate_id)
                await self._roll_back(patch, iteration)
        if iteration.rolled_back_candidate_ids:
            try:
                after = await self._within_budget(self._diagnose_live(index + 1))
            except asyncio.TimeoutError:
                raise BudgetExhausted(self._wall_clock_reason()) from None

        self.ledger.merge(after.records)
        before_ids = set(current.diagnosis.error_ids)
        after_ids = set(after.diagnosis.error_ids)
        iteration.resolved_error_ids = [i for i in current.diagnosis.error_ids if i not in after_ids]
        iteration.new_error_ids = [i for i in after.diagnosis.error_ids if i not in before_ids]
        for error_id in iteration.resolved_error_ids:
            self.ledger.resolve(error_id)

        logger.info(
            "Iteration %d: applied=%d rolled_back=%d resolved=%d new=%d",
            index, len(iteration.applied_candidate_ids), len(iteration.rolled_back_candidate_ids),
            len(iteration.resolved_error_ids), len(iteration.new_error_ids),
        )
        return after

    def _candidates_for(self, record: ErrorRecord, current: DiagnosisResult) -> List[FixCandidate]:
        context = GenerationContext(report=current.diagnosis.report, read_source=self.tree.read)
        try:
            candidates = self.generator.generate(record, context)
        except Exception as exc:
            logger.error("Generator failed for %s: %s", record.id, exc, exc_info=True)
            return []
        kept = []
        for candidate in candidates:
            if candidate.confidence < self.settings.min_confidence:
                logger.info("Skipping %s: confidence %d below %d",
                            candidate.id, candidate.confidence, self.settings.min_confidence)
            elif candidate.id in self._tried:
                logger.info("Skipping %s: already validated", candidate.id)
            else:
                kept.append(candidate)
        return kept

    async def _validate_record(
        self,
        record: ErrorRecord,
        candidates: List[FixCandidate],
        current: DiagnosisResult,
        index: int,
        semaphore: asyncio.Semaphore,
    ) -> Tuple[List[ValidationVerdict], Optional[FixCandidate]]:
        context = ValidationContext(
            record=record,
            known_error_ids=frozenset(current.diagnosis.error_ids),
            baseline=current.diagnosis.report,
            baseline_ready_ms=current.diagnosis.page_ready_ms,
            iteration=index,
        )
        verdicts: List[ValidationVerdict] = []
        async with semaphore:
            for candidate in candidates:
                if self._out_of_time or self._remaining() <= 0:
                    logger.warning("Budget spent; %s not validated", candidate.id)
                    self._out_of_time = True
                    break
                self._tried.add(candidate.id)
                try:
                    verdict = await self._within_budget(self.validator.validate(candidate, context))
                except asyncio.TimeoutError:
                    logger.warning("Budget spent while validating %s", candidate.id)
                    self._out_of_time = True
                    break
                except Exception as exc:
                    logger.error("Validator failed for %s: %s", candidate.id, exc, exc_info=True)
                    continue
                verdicts.append(verdict)
                self.state["candidates_validated"] += 1
                if verdict.outcome == VerdictOutcome.INCONCLUSIVE:
                    self._inconclusive.append(candidate.id)
                    self.state["inconclusive_verdicts"] += 1
                if verdict.passed:
                    return verdicts, candidate
        return verdicts, None

    # ===================================================================
    # Internal Helpers
    # ===================================================================
    async def _diagnose_live(self, iteration: int) -> DiagnosisResult:
        async with self.provider.open(self.tree.root) as session:
            result = await self.diagnoser.diagnose(session, iteration)
        self.state["total_errors_seen"] = len(self.ledger) + len(self.ledger.resolved_records)
        return result

    async def _roll_back(self, patch: AppliedPatch, iteration: LoopIteration) -> None:
        try:
            await self.tree.rollback(patch.error_id)
        except PatchApplyError as exc:
            logger.error("Rollback of %s failed: %s", patch.candidate_id, exc)
            return
        iteration.rolled_back_candidate_ids.append(patch.candidate_id)
        self.state["patches_rolled_back"] += 1

    def _elapsed(self) -> float:
        return time.monotonic() - self._run_start

    def _remaining(self) -> float:
        return self.settings.wall_clock_budget - self._elapsed()

    async def _within_budget(self, awaitable):
        """Await ``awaitable``, cancelling it when the wall clock runs out."""
        return await asyncio.wait_for(awaitable, timeout=max(0.0, self._remaining()))

    def _wall_clock_reason(self) -> str:
        return f"Wall-clock budget of {self.settings.wall_clock_budget:g}s spent"

    def _check_budget(self, iterations_done: int) -> None:
        elapsed = self._elapsed()
        self.state["budget_remaining_seconds"] = round(max(0.0, self.settings.wall_clock_budget - elapsed), 2)
        if elapsed >= self.settings.wall_clock_budget:
            raise BudgetExhausted(self._wall_clock_reason())
        if iterations_done >= self.settings.max_iterations:
            raise BudgetExhausted(f"Iteration budget of {self.settings.max_iterations} spent")

    def _set_phase(self, phase: LoopPhase) -> None:
        previous = self.state["phase"]
        self.state["phase"] = phase.value
        self.state["phase_history"].append(phase.value)
        logger.info("Phase: %s → %s", previous, phase.value)
        self._publish()

    def _publish(self) -> None:
        if self._on_state is not None:
            self._on_state(dict(self.state))

    def _finish(self, status: FinalStatus, reason: str,
                iterations: List[LoopIteration], started_at: datetime) -> LoopReport:
        if status == FinalStatus.CONVERGED:
            self._set_phase(LoopPhase.CONVERGED)
        else:
            self._set_phase(LoopPhase.EXHAUSTED)

        remaining = prioritize(self.ledger.open_records)
        applied = list(self.tree.active.values())
        summary = _summarize(status, reason, len(iterations), len(self.ledger.resolved_records),
                             len(remaining), len(applied))
        self.state["status"] = status.value
        self.state["execution_summary"] = summary
        self._publish()

        if self._inconclusive:
            logger.warning("Inconclusive candidates for review: %s", ", ".join(self._inconclusive))
        logger.info(summary)

        return LoopReport(
            final_status=status,
            exhaustion_reason=reason,
            iterations=iterations,
            resolved_errors=self.ledger.resolved_records,
            remaining_errors=remaining,
            applied_patches=applied,
            inconclusive_candidate_ids=list(self._inconclusive),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            summary=summary,
        )


def _summarize(status: FinalStatus, reason: str, iterations: int, resolved: int,
               remaining: int, applied: int) -> str:
    if status == FinalStatus.CONVERGED:
        return (f"Converged after {iterations} iteration(s): "
                f"{resolved} error(s) resolved, {applied} patch(es) applied.")
    if status == FinalStatus.LAUNCH_FAILED:
        return f"Launch failed: {reason}"
    return (f"Exhausted after {iterations} iteration(s) ({reason}): "
            f"{resolved} resolved, {remaining} remaining, {applied} patch(es) applied.")


# ---------------------------------------------------------------------------
# Entry point used by the CLI and the API
# ---------------------------------------------------------------------------
async def run_loop(
    source_root,
    overrides: Optional[Dict[str, Any]] = None,
    on_state: Optional[StateListener] = None,
) -> LoopReport:
    """
    Run the loop over ``source_root`` with a real Chromium.

    Settings precedence: ``overrides`` > fixloop.yml > environment.
    """
    root = Path(source_root).resolve()
    project = load_project_config(root)
    settings = project.loop_settings()
    if overrides:
        settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    started_at = datetime.now(timezone.utc)
    try:
        async with BrowserLauncher(settings) as launcher:
            controller = LoopController(
                SourceTree(root), PlaywrightSessionProvider(launcher),
                settings, project, on_state=on_state,
            )
            return await controller.run()
    except LaunchError as exc:
        logger.error("Launch failed: %s", exc)
        return LoopReport(
            final_status=FinalStatus.LAUNCH_FAILED,
            exhaustion_reason=str(exc),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            summary=f"Launch failed: {exc}",
        )
