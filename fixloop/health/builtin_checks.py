"""
Built-in Health Checks
======================
Default checks every project gets, plus the configurable element
expectations declared in fixloop.yml.

    page-ready           — document.readyState is "complete"
    document-content     — the body exists and renders some text
    interactive-elements — the page offers at least one control
    required-elements    — every configured selector is present
    load-performance     — navigation load time under the threshold

Each check reads page state through a single ``session.evaluate`` call.
"""
from typing import Iterable, List, Optional

from pydantic import BaseModel

from fixloop.health.registry import HealthCheckRegistry
from fixloop.models.health_report import CheckResult, HealthStatus

# ---------------------------------------------------------------------------
# Page scripts
# ---------------------------------------------------------------------------
READY_STATE_SCRIPT = "() => document.readyState"

CONTENT_SCRIPT = """() => {
    if (!document.body) return null;
    return (document.body.innerText || '').trim().length;
}"""

INTERACTIVE_SCRIPT = """() => {
    const controls = document.querySelectorAll('button, input, select, textarea, a[href]');
    let disabled = 0;
    controls.forEach(el => { if (el.disabled) disabled += 1; });
    return { total: controls.length, disabled };
}"""

REQUIRED_SCRIPT = """(selectors) => selectors.filter(s => !document.querySelector(s))"""

LOAD_TIMING_SCRIPT = """() => {
    const nav = performance.getEntriesByType('navigation')[0];
    return nav ? Math.round(nav.duration) : null;
}"""

ELEMENT_STATE_SCRIPT = """([selector, state]) => {
    const el = document.querySelector(selector);
    if (!el) return 'missing';
    if (state === 'enabled') return el.disabled ? 'disabled' : 'ok';
    if (state === 'visible') {
        const box = el.getBoundingClientRect();
        return box.width > 0 && box.height > 0 ? 'ok' : 'hidden';
    }
    return 'ok';
}"""

SLOW_LOAD_MS = 5000


async def check_page_ready(session) -> CheckResult:
    state = await session.evaluate(READY_STATE_SCRIPT)
    if state == "complete":
        return CheckResult(name="page-ready", status=HealthStatus.HEALTHY, message="Document loaded")
    status = HealthStatus.WARNING if state == "interactive" else HealthStatus.ERROR
    return CheckResult(
        name="page-ready", status=status,
        message=f"Document readyState is {state!r}", details={"ready_state": state},
    )


async def check_document_content(session) -> CheckResult:
    length = await session.evaluate(CONTENT_SCRIPT)
    if length is None:
        return CheckResult(name="document-content", status=HealthStatus.CRITICAL,
                           message="Document has no body")
    if length == 0:
        return CheckResult(name="document-content", status=HealthStatus.WARNING,
                           message="Page body renders no text", details={"text_length": 0})
    return CheckResult(name="document-content", status=HealthStatus.HEALTHY,
                       message="Page renders content", details={"text_length": length})


async def check_interactive_elements(session) -> CheckResult:
    counts = await session.evaluate(INTERACTIVE_SCRIPT) or {}
    total = counts.get("total", 0)
    if total == 0:
        return CheckResult(name="interactive-elements", status=HealthStatus.WARNING,
                           message="No interactive elements found", details=counts)
    return CheckResult(name="interactive-elements", status=HealthStatus.HEALTHY,
                       message=f"{total} interactive element(s)", details=counts)


async def check_load_performance(session) -> CheckResult:
    load_ms = await session.evaluate(LOAD_TIMING_SCRIPT)
    if load_ms is None:
        return CheckResult(name="load-performance", status=HealthStatus.HEALTHY,
                           message="No navigation timing available")
    status = HealthStatus.WARNING if load_ms > SLOW_LOAD_MS else HealthStatus.HEALTHY
    return CheckResult(name="load-performance", status=status,
                       message=f"Load: {load_ms}ms", details={"load_ms": load_ms})


def required_elements_check(selectors: Iterable[str]):
    wanted = list(selectors)

    async def check_required_elements(session) -> CheckResult:
        if not wanted:
            return CheckResult(name="required-elements", status=HealthStatus.HEALTHY,
                               message="No required elements configured")
        missing = await session.evaluate(REQUIRED_SCRIPT, wanted) or []
        if missing:
            return CheckResult(
                name="required-elements", status=HealthStatus.ERROR,
                message=f"Missing element(s): {', '.join(missing)}", details={"missing": missing},
            )
        return CheckResult(name="required-elements", status=HealthStatus.HEALTHY,
                           message=f"All {len(wanted)} required element(s) present")

    return check_required_elements


class ElementExpectation(BaseModel):
    """A named ``selector is <state>`` assertion, optionally tied to the source that controls it."""
    name: str
    selector: str
    state: str = "enabled"
    source: Optional[str] = None


def expectation_check(expectation: ElementExpectation):
    async def check_expectation(session) -> CheckResult:
        observed = await session.evaluate(
            ELEMENT_STATE_SCRIPT, [expectation.selector, expectation.state],
        )
        details = {"selector": expectation.selector, "observed": observed}
        if expectation.source:
            details["source"] = expectation.source
        if observed == "ok":
            return CheckResult(name=expectation.name, status=HealthStatus.HEALTHY,
                               message=f"{expectation.selector} is {expectation.state}", details=details)
        if observed == "missing":
            return CheckResult(name=expectation.name, status=HealthStatus.ERROR,
                               message=f"{expectation.selector} not found", details=details)
        message = (f"{expectation.selector} stays disabled" if observed == "disabled"
                   else f"{expectation.selector} is not {expectation.state}")
        return CheckResult(name=expectation.name, status=HealthStatus.CRITICAL,
                           message=message, details=details)

    return check_expectation


def default_registry(
    required_selectors: Iterable[str] = (),
    expectations: Optional[List[ElementExpectation]] = None,
    check_timeout: Optional[float] = None,
) -> HealthCheckRegistry:
    registry = HealthCheckRegistry() if check_timeout is None else HealthCheckRegistry(check_timeout)
    registry.register("page-ready", check_page_ready)
    registry.register("document-content", check_document_content)
    registry.register("interactive-elements", check_interactive_elements)
    registry.register("required-elements", required_elements_check(required_selectors))
    registry.register("load-performance", check_load_performance)
    for expectation in expectations or []:
        registry.register(expectation.name, expectation_check(expectation), on_demand=True)
    return registry
