"""
Health Report Model
===================
Immutable snapshot produced by one HealthCheckRegistry pass.

overall_status is the worst CheckResult status using the severity order
Critical > Error > Warning > Unknown > Healthy. A report with no checks
is Healthy.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    HEALTHY = "Healthy"
    WARNING = "Warning"
    CRITICAL = "Critical"
    ERROR = "Error"
    UNKNOWN = "Unknown"


STATUS_SEVERITY: dict[HealthStatus, int] = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.UNKNOWN: 1,
    HealthStatus.WARNING: 2,
    HealthStatus.ERROR: 3,
    HealthStatus.CRITICAL: 4,
}


def worst_status(statuses) -> HealthStatus:
    """Return the most severe status, Healthy for an empty input."""
    return max(statuses, key=lambda s: STATUS_SEVERITY[s], default=HealthStatus.HEALTHY)


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    status: HealthStatus
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    overall_status: HealthStatus
    checks: Tuple[CheckResult, ...] = ()
    summary: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_results(cls, results: List[CheckResult]) -> "HealthReport":
        summary = {status.value: 0 for status in HealthStatus}
        for result in results:
            summary[result.status.value] += 1
        return cls(
            timestamp=datetime.now(timezone.utc),
            overall_status=worst_status(r.status for r in results),
            checks=tuple(results),
            summary=summary,
        )

    def result_for(self, name: str):
        """First CheckResult with the given name, or None."""
        return next((c for c in self.checks if c.name == name), None)

    def passing_check_names(self) -> List[str]:
        return [c.name for c in self.checks if c.status == HealthStatus.HEALTHY]
