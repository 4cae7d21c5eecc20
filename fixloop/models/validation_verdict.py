"""
Validation Verdict Model
========================
Outcome of validating one FixCandidate.

Stages always run in STAGE_ORDER. The verdict is Pass only if every stage
passes; the first failing stage short-circuits the rest and is recorded
in ``failed_stage``. Inconclusive means the validation itself broke
(timeout, launch failure) and is never promoted to Pass.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class VerdictOutcome(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"
    INCONCLUSIVE = "Inconclusive"


class ValidationStage(str, Enum):
    SYNTAX_CHECK = "SyntaxCheck"
    FUNCTIONAL_REPLAY = "FunctionalReplay"
    REGRESSION_SUBSET = "RegressionSubset"
    PERFORMANCE_DELTA = "PerformanceDelta"
    SIDE_EFFECT_SCAN = "SideEffectScan"


STAGE_ORDER: List[ValidationStage] = [
    ValidationStage.SYNTAX_CHECK,
    ValidationStage.FUNCTIONAL_REPLAY,
    ValidationStage.REGRESSION_SUBSET,
    ValidationStage.PERFORMANCE_DELTA,
    ValidationStage.SIDE_EFFECT_SCAN,
]


class StageResult(BaseModel):
    stage: ValidationStage
    outcome: VerdictOutcome
    detail: str = ""


class ValidationVerdict(BaseModel):
    candidate_id: str
    target_error_id: str = ""
    confidence: int = 0
    outcome: VerdictOutcome
    stages: List[StageResult] = []
    failed_stage: Optional[ValidationStage] = None
    notes: str = ""
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.outcome == VerdictOutcome.PASS
