"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    FIXLOOP_MAX_ITERATIONS       — Max Diagnose → Fix → Re-diagnose cycles (default: 5)
    FIXLOOP_WALL_CLOCK_BUDGET    — Seconds the whole loop may run (default: 600)
    FIXLOOP_WORKER_LIMIT         — Concurrent validations per iteration (default: 3)
    FIXLOOP_OBSERVATION_WINDOW   — Fixed seconds of diagnostics capture after a trigger
    FIXLOOP_QUIET_GRACE          — Seconds of silence that close an observation window
    FIXLOOP_MAX_WINDOW_EXTENSION — Cap on how long a noisy window may be extended
    FIXLOOP_NAVIGATION_TIMEOUT   — Seconds allowed for a single navigation
    FIXLOOP_ACTION_TIMEOUT       — Seconds allowed for evaluate / click / fill
    FIXLOOP_VALIDATION_TIMEOUT   — Seconds allowed for one full candidate validation
    FIXLOOP_PERF_TOLERANCE       — Allowed relative page-ready slowdown (0.5 = +50%)
    FIXLOOP_PERF_SLACK_MS        — Absolute slack added to the tolerance band
    FIXLOOP_HEADLESS             — Run Chromium headless (default: true)
    FIXLOOP_ENTRY_POINT          — Tree-relative page the loop drives (default: index.html)
    FIXLOOP_RETRY_ATTEMPTS       — Attempts for readiness probing / browser launch
    FIXLOOP_RETRY_BACKOFF        — Initial backoff seconds for the retry policy
    FIXLOOP_MIN_CONFIDENCE       — Candidates below this confidence are never validated
    FIXLOOP_RESULTS_PATH         — Where the final report JSON is written

Budget Philosophy:
    Two budgets bound every run: an iteration count and a wall-clock
    budget. Whichever runs out first moves the loop to Exhausted, which
    is a normal terminal state that hands the remaining errors to an
    operator.

Per-project overrides:
    A ``fixloop.yml`` at the root of the source tree may override any
    LoopSettings field and declare noise patterns, required selectors,
    scenarios and extra fix signatures (see project_config.py).
"""
import os
from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


MAX_ITERATIONS = int(os.getenv("FIXLOOP_MAX_ITERATIONS", 5))
WALL_CLOCK_BUDGET = float(os.getenv("FIXLOOP_WALL_CLOCK_BUDGET", 600))
WORKER_LIMIT = int(os.getenv("FIXLOOP_WORKER_LIMIT", 3))

# Observation window (seconds)
OBSERVATION_WINDOW = float(os.getenv("FIXLOOP_OBSERVATION_WINDOW", 2.0))
QUIET_GRACE = float(os.getenv("FIXLOOP_QUIET_GRACE", 0.5))
MAX_WINDOW_EXTENSION = float(os.getenv("FIXLOOP_MAX_WINDOW_EXTENSION", 5.0))

# Session operation timeouts (seconds)
NAVIGATION_TIMEOUT = float(os.getenv("FIXLOOP_NAVIGATION_TIMEOUT", 15))
ACTION_TIMEOUT = float(os.getenv("FIXLOOP_ACTION_TIMEOUT", 5))
VALIDATION_TIMEOUT = float(os.getenv("FIXLOOP_VALIDATION_TIMEOUT", 90))

# Performance tolerance band
PERF_TOLERANCE = float(os.getenv("FIXLOOP_PERF_TOLERANCE", 0.5))
PERF_SLACK_MS = float(os.getenv("FIXLOOP_PERF_SLACK_MS", 250))

HEADLESS = _env_bool("FIXLOOP_HEADLESS", "true")
ENTRY_POINT = os.getenv("FIXLOOP_ENTRY_POINT", "index.html")

# Bounded retry policy
RETRY_ATTEMPTS = int(os.getenv("FIXLOOP_RETRY_ATTEMPTS", 5))
RETRY_BACKOFF = float(os.getenv("FIXLOOP_RETRY_BACKOFF", 0.25))

MIN_CONFIDENCE = int(os.getenv("FIXLOOP_MIN_CONFIDENCE", 60))
RESULTS_PATH = os.getenv("FIXLOOP_RESULTS_PATH", "results.json")


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff."""
    attempts: int = RETRY_ATTEMPTS
    initial_backoff: float = RETRY_BACKOFF
    multiplier: float = 2.0
    max_backoff: float = 5.0

    def delays(self) -> list[float]:
        """Sleep durations between consecutive attempts (attempts - 1 entries)."""
        out: list[float] = []
        delay = self.initial_backoff
        for _ in range(max(0, self.attempts - 1)):
            out.append(delay)
            delay = min(delay * self.multiplier, self.max_backoff)
        return out


class LoopSettings(BaseModel):
    """All knobs for a single loop run. Defaults come from the environment."""
    max_iterations: int = MAX_ITERATIONS
    wall_clock_budget: float = WALL_CLOCK_BUDGET
    worker_limit: int = WORKER_LIMIT
    observation_window: float = OBSERVATION_WINDOW
    quiet_grace: float = QUIET_GRACE
    max_window_extension: float = MAX_WINDOW_EXTENSION
    navigation_timeout: float = NAVIGATION_TIMEOUT
    action_timeout: float = ACTION_TIMEOUT
    validation_timeout: float = VALIDATION_TIMEOUT
    perf_tolerance: float = PERF_TOLERANCE
    perf_slack_ms: float = PERF_SLACK_MS
    headless: bool = HEADLESS
    entry_point: str = ENTRY_POINT
    min_confidence: int = MIN_CONFIDENCE
    retry: RetryPolicy = RetryPolicy()
