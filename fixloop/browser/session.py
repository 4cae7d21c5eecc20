"""
Browser Session
===============
One isolated browser context driven through Playwright's async API.

Contract:
    - navigate(url)         → page-ready latency in ms | NavigationTimeout | NavigationError
    - evaluate(script, arg) → JSON-serialisable result | EvaluationError | ActionTimeout
    - subscribe_diagnostics() → DiagnosticStream (console + page errors)
    - click / fill / press / wait_for → element interaction | ActionTimeout | ActionError
    - close()               → releases context, page and open streams

BOUNDARY RULES:
    - A session never fixes code and never classifies errors.
    - Sessions are never shared: every validation opens its own.
    - Every operation carries a timeout.

Any object satisfying the DiagnosticSession protocol can stand in for
BrowserSession (the loop only needs open/close, navigate, evaluate and
the diagnostics stream).
"""
import asyncio
import logging
import time
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import urljoin

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from fixloop.browser.diagnostics import (
    DiagnosticEvent,
    DiagnosticHub,
    DiagnosticStream,
    DiagnosticType,
)
from fixloop.core.config import ACTION_TIMEOUT, NAVIGATION_TIMEOUT
from fixloop.core.exceptions import (
    ActionError,
    ActionTimeout,
    EvaluationError,
    LaunchError,
    NavigationError,
    NavigationTimeout,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class DiagnosticSession(Protocol):
    """Capability set the loop requires from a browser driver."""

    base_url: str

    async def navigate(self, url: str, wait_until: str = "load",
                       timeout: Optional[float] = None) -> float: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    def subscribe_diagnostics(self) -> DiagnosticStream: ...

    async def click(self, selector: str) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def press(self, selector: str, key: str) -> None: ...

    async def wait_for(self, selector: str, state: str = "visible") -> None: ...

    async def close(self) -> None: ...


class BrowserSession(DiagnosticHub):
    """Playwright-backed DiagnosticSession over one fresh BrowserContext."""

    def __init__(
        self,
        context: BrowserContext,
        page: Page,
        base_url: str,
        navigation_timeout: float = NAVIGATION_TIMEOUT,
        action_timeout: float = ACTION_TIMEOUT,
    ) -> None:
        super().__init__()
        self.context = context
        self.page = page
        self.base_url = base_url
        self.navigation_timeout = navigation_timeout
        self.action_timeout = action_timeout
        self._closed = False

        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)

    # -------------------------------------------------------------------
    # Opening
    # -------------------------------------------------------------------
    @classmethod
    async def open(
        cls,
        browser: Browser,
        base_url: str,
        navigation_timeout: float = NAVIGATION_TIMEOUT,
        action_timeout: float = ACTION_TIMEOUT,
    ) -> "BrowserSession":
        """Open an isolated context + page. Raises LaunchError on failure."""
        context = None
        try:
            context = await browser.new_context(base_url=base_url)
            page = await context.new_page()
        except PlaywrightError as exc:
            if context is not None:
                await context.close()
            raise LaunchError(f"Could not open browser context: {exc}") from exc
        logger.debug("Session opened at %s", base_url)
        return cls(context, page, base_url, navigation_timeout, action_timeout)

    # -------------------------------------------------------------------
    # Diagnostics listeners
    # -------------------------------------------------------------------
    def _on_console(self, msg) -> None:
        location = msg.location or {}
        self.publish(DiagnosticEvent(
            type=DiagnosticType.CONSOLE,
            payload={
                "level": msg.type,
                "text": msg.text,
                "url": location.get("url", ""),
                "line": location.get("lineNumber"),
            },
        ))

    def _on_page_error(self, err) -> None:
        self.publish(DiagnosticEvent(
            type=DiagnosticType.PAGE_ERROR,
            payload={
                "name": getattr(err, "name", "") or "Error",
                "message": getattr(err, "message", "") or str(err),
                "stack": getattr(err, "stack", "") or "",
            },
        ))

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def resolve(self, url: str) -> str:
        return urljoin(self.base_url, url)

    async def navigate(self, url: str, wait_until: str = "load",
                       timeout: Optional[float] = None) -> float:
        target = self.resolve(url)
        seconds = timeout or self.navigation_timeout
        started = time.monotonic()
        try:
            await self.page.goto(target, wait_until=wait_until, timeout=seconds * 1000)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"Navigation to {target} exceeded {seconds:.1f}s") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation to {target} failed: {exc.message}") from exc
        return round((time.monotonic() - started) * 1000, 1)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await self._with_action_timeout(self.page.evaluate(script, arg))
        except PlaywrightError as exc:
            raise EvaluationError(exc.message, getattr(exc, "stack", "") or "") from exc

    async def click(self, selector: str) -> None:
        await self._action(self.page.click(selector, timeout=self.action_timeout * 1000), selector)

    async def fill(self, selector: str, value: str) -> None:
        await self._action(self.page.fill(selector, value, timeout=self.action_timeout * 1000), selector)

    async def press(self, selector: str, key: str) -> None:
        await self._action(self.page.press(selector, key, timeout=self.action_timeout * 1000), selector)

    async def wait_for(self, selector: str, state: str = "visible") -> None:
        await self._action(
            self.page.wait_for_selector(selector, state=state, timeout=self.action_timeout * 1000),
            selector,
        )

    async def close(self) -> None:
        """Release all resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.close_streams()
        try:
            await self.context.close()
        except PlaywrightError:
            logger.warning("Context close failed for %s", self.base_url, exc_info=True)

    # -------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------
    async def _with_action_timeout(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.action_timeout)
        except asyncio.TimeoutError as exc:
            raise ActionTimeout(f"Page evaluation exceeded {self.action_timeout:.1f}s") from exc

    async def _action(self, awaitable, selector: str) -> None:
        try:
            await awaitable
        except PlaywrightTimeoutError as exc:
            raise ActionTimeout(f"Action on {selector!r} exceeded {self.action_timeout:.1f}s") from exc
        except PlaywrightError as exc:
            raise ActionError(f"Action on {selector!r} failed: {exc.message}") from exc
