"""
Scenarios
=========
A scenario is a named, recorded interaction sequence replayed against the
entry page: navigate to the entry point, then run each step in order.
Functional checks that need interaction (e.g. "the start button becomes
enabled after typing a name") declare a scenario plus the checks to run
once it has been replayed.

Step actions:
    navigate — go to ``url`` (tree-relative)
    click    — click ``selector``
    fill     — type ``value`` into ``selector``
    press    — press key ``value`` on ``selector``
    wait     — wait for ``selector`` to be visible, or sleep ``value`` seconds
"""
import asyncio
import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_SCENARIO_NAME = "page-load"


class StepAction(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    PRESS = "press"
    WAIT = "wait"


class ScenarioStep(BaseModel):
    action: StepAction
    selector: str = ""
    value: str = ""
    url: str = ""


class Scenario(BaseModel):
    name: str
    steps: List[ScenarioStep] = []
    # None = every registered check
    checks: Optional[List[str]] = None


def default_scenarios() -> List[Scenario]:
    return [Scenario(name=DEFAULT_SCENARIO_NAME)]


async def replay(session, entry_url: str, scenario: Scenario,
                 navigation_timeout: Optional[float] = None) -> float:
    """
    Navigate to ``entry_url`` and run the scenario's steps.

    Returns the entry page-ready latency in milliseconds. Session timeouts
    propagate to the caller.
    """
    ready_ms = await session.navigate(entry_url, timeout=navigation_timeout)

    for step in scenario.steps:
        logger.debug("[%s] %s %s", scenario.name, step.action.value, step.selector or step.url)
        if step.action == StepAction.NAVIGATE:
            await session.navigate(step.url or entry_url, timeout=navigation_timeout)
        elif step.action == StepAction.CLICK:
            await session.click(step.selector)
        elif step.action == StepAction.FILL:
            await session.fill(step.selector, step.value)
        elif step.action == StepAction.PRESS:
            await session.press(step.selector, step.value)
        elif step.action == StepAction.WAIT:
            if step.selector:
                await session.wait_for(step.selector)
            else:
                await asyncio.sleep(float(step.value or 0))

    return ready_ms
