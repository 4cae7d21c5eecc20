"""
Loop Report Model
=================
Structured report emitted when the loop reaches a terminal state.
Consumed by any presentation layer (console printer, results file, API).
The core never formats it.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .error_record import ErrorRecord
from .fix_candidate import AppliedPatch
from .loop_iteration import LoopIteration


class FinalStatus(str, Enum):
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    LAUNCH_FAILED = "launch_failed"


# CLI wrapper exit codes
EXIT_CODES: dict[FinalStatus, int] = {
    FinalStatus.CONVERGED: 0,
    FinalStatus.EXHAUSTED: 1,
    FinalStatus.LAUNCH_FAILED: 2,
}


class LoopReport(BaseModel):
    final_status: FinalStatus
    exhaustion_reason: str = ""
    iterations: List[LoopIteration] = []
    resolved_errors: List[ErrorRecord] = []
    remaining_errors: List[ErrorRecord] = []
    applied_patches: List[AppliedPatch] = []
    inconclusive_candidate_ids: List[str] = []
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    summary: str = ""

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.final_status]
