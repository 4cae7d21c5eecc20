"""
Loop Iteration Model
====================
Append-only log entry for one Diagnose → Generate → Validate → Apply →
Re-diagnose cycle. Owned exclusively by the LoopController; used for
termination decisions and the final report.

Fields:
    index                 — 1-based iteration number
    diagnosis             — HealthReport + ErrorRecord ids at iteration start
    candidates_tried      — candidate ids handed to the validator
    verdicts              — one ValidationVerdict per candidate tried
    applied_candidate_ids — candidates committed to the live tree
    rolled_back_candidate_ids — applied, then reverted after re-diagnosis
    resolved_error_ids    — records absent after re-diagnosis
    new_error_ids         — records first surfaced by re-diagnosis
    unfixable_error_ids   — records with no (passing) candidate this iteration
    iteration_time_seconds — wall clock time for this iteration
"""
from typing import List, Optional

from pydantic import BaseModel

from .health_report import HealthReport, HealthStatus
from .validation_verdict import ValidationVerdict


class Diagnosis(BaseModel):
    """Combined ErrorDetector + HealthCheckRegistry result for one pass."""
    iteration: int
    report: HealthReport
    error_ids: List[str] = []
    page_ready_ms: Optional[float] = None

    @property
    def converged(self) -> bool:
        return not self.error_ids and self.report.overall_status == HealthStatus.HEALTHY


class LoopIteration(BaseModel):
    index: int
    diagnosis: Diagnosis
    candidates_tried: List[str] = []
    verdicts: List[ValidationVerdict] = []
    applied_candidate_ids: List[str] = []
    rolled_back_candidate_ids: List[str] = []
    resolved_error_ids: List[str] = []
    new_error_ids: List[str] = []
    unfixable_error_ids: List[str] = []
    iteration_time_seconds: float = 0.0
