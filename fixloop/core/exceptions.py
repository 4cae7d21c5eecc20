"""
Exceptions
==========
Typed failures raised at component seams.

Recovery map (who catches what):
    LaunchError        — fatal; LoopController aborts the run (launch_failed)
    EvaluationError    — HealthCheckRegistry / FixValidator turn it into an
                         Error check result or a failed stage
    NavigationTimeout  — ErrorDetector returns an empty window; FixValidator
    ActionTimeout        reports Inconclusive
    NavigationError    — Diagnoser records the scenario as undrivable; FixValidator
    ActionError          reports Inconclusive
    PatchApplyError    — candidate rejected, next-ranked candidate tried
    BudgetExhausted    — not a failure; signals the Exhausted terminal state
"""


class FixLoopError(Exception):
    """Base class for every fixloop failure."""


class LaunchError(FixLoopError):
    """Browser, session or tree server could not be started."""


class EvaluationError(FixLoopError):
    """A script evaluated in page context threw."""

    def __init__(self, message: str, stack: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.stack = stack


class SessionTimeout(FixLoopError):
    """A session operation exceeded its timeout."""


class NavigationTimeout(SessionTimeout):
    """Navigation did not reach its wait condition in time."""


class ActionTimeout(SessionTimeout):
    """An evaluate / click / fill / wait did not finish in time."""


class DriverError(FixLoopError):
    """The browser driver failed for a reason other than a timeout."""


class NavigationError(DriverError):
    """Navigation failed (network error, crashed target, aborted load)."""


class ActionError(DriverError):
    """A click / fill / press / wait failed outright."""


class PatchApplyError(FixLoopError):
    """A source patch could not be applied or rolled back."""


class BudgetExhausted(FixLoopError):
    """Iteration or wall-clock budget spent before convergence."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
