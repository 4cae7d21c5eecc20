"""
Loop State
TypedDict holding the progress of one loop run, plus the controller's
state-machine phases. Exposed read-only through GET /status.
"""
from enum import Enum
from typing import TypedDict, List


class LoopPhase(str, Enum):
    IDLE = "Idle"
    DIAGNOSING = "Diagnosing"
    GENERATING = "Generating"
    VALIDATING = "Validating"
    APPLYING = "Applying"
    REDIAGNOSING = "ReDiagnosing"
    CONVERGED = "Converged"
    EXHAUSTED = "Exhausted"


class LoopRunState(TypedDict):
    # Target
    source_root: str
    entry_point: str

    # Progress tracking
    phase: str
    iteration: int
    phase_history: List[str]

    # Timing / guardrail
    start_time: float           # time.time() at start
    budget_remaining_seconds: float

    # Telemetry
    total_errors_seen: int
    candidates_validated: int
    patches_applied: int
    patches_rolled_back: int
    inconclusive_verdicts: int

    # Final summary
    status: str                 # pending, converged, exhausted, launch_failed
    execution_summary: str
