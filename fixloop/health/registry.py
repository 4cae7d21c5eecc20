"""
Health Check Registry
=====================
Ordered, named, extensible set of read-only page checks.

Contract:
    - A check is ``async (session) -> CheckResult`` and must only *read*
      page state (running the registry twice gives the same statuses).
    - Checks run in registration order; each one is bounded by a timeout.
    - A check that throws or times out yields a CheckResult with status
      Error. No check exception escapes ``run()``.
    - An empty registry yields a Healthy report.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from fixloop.core.config import ACTION_TIMEOUT
from fixloop.core.exceptions import EvaluationError, SessionTimeout
from fixloop.models.health_report import CheckResult, HealthReport, HealthStatus

logger = logging.getLogger(__name__)

HealthCheck = Callable[[object], Awaitable[CheckResult]]


class HealthCheckRegistry:
    def __init__(self, check_timeout: float = ACTION_TIMEOUT) -> None:
        self.check_timeout = check_timeout
        self._checks: Dict[str, HealthCheck] = {}
        self._on_demand: set = set()

    def register(self, name: str, check: HealthCheck, on_demand: bool = False) -> None:
        """
        Add a check. ``on_demand`` checks only run when named explicitly
        (e.g. by a scenario that first puts the page in the right state).
        """
        if name in self._checks:
            raise ValueError(f"Health check already registered: {name}")
        self._checks[name] = check
        if on_demand:
            self._on_demand.add(name)

    def check(self, name: str):
        """Decorator form of ``register``."""
        def decorator(fn: HealthCheck) -> HealthCheck:
            self.register(name, fn)
            return fn
        return decorator

    @property
    def names(self) -> List[str]:
        return list(self._checks)

    def __contains__(self, name: str) -> bool:
        return name in self._checks

    def __len__(self) -> int:
        return len(self._checks)

    async def run(self, session, names: Optional[Iterable[str]] = None) -> HealthReport:
        """
        Run the selected checks (every non on-demand check when ``names``
        is None) in registration order and aggregate them into a HealthReport.
        """
        wanted = None if names is None else set(names)
        if wanted is not None:
            for missing in sorted(wanted - set(self._checks)):
                logger.warning("Unknown health check %r skipped", missing)

        results: List[CheckResult] = []
        for name, check in self._checks.items():
            if wanted is None and name in self._on_demand:
                continue
            if wanted is not None and name not in wanted:
                continue
            results.append(await self._run_one(name, check, session))

        report = HealthReport.from_results(results)
        logger.debug("Health report: %s %s", report.overall_status.value, report.summary)
        return report

    async def _run_one(self, name: str, check: HealthCheck, session) -> CheckResult:
        try:
            result = await asyncio.wait_for(check(session), timeout=self.check_timeout)
        except (asyncio.TimeoutError, SessionTimeout):
            logger.warning("Health check %r timed out", name)
            return CheckResult(
                name=name,
                status=HealthStatus.ERROR,
                message=f"Check timed out after {self.check_timeout:.1f}s",
            )
        except EvaluationError as exc:
            return CheckResult(
                name=name,
                status=HealthStatus.ERROR,
                message=f"Check failed: {exc.message}",
                details={"error": exc.message},
            )
        except Exception as exc:
            logger.exception("Health check %r raised", name)
            return CheckResult(
                name=name,
                status=HealthStatus.ERROR,
                message=f"Check failed: {exc}",
                details={"error": str(exc)},
            )

        if result.name != name:
            result = result.model_copy(update={"name": name})
        return result
