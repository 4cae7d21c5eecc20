"""
Browser Launcher & Session Provider
===================================
BrowserLauncher owns one Playwright Chromium process and hands out
isolated BrowserSessions. PlaywrightSessionProvider combines it with the
static tree server so callers can ask for "a session over this tree".

Launch is retried under the RetryPolicy; when every attempt fails a
LaunchError is raised and the run aborts.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncContextManager, Optional, Protocol

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from fixloop.browser.readiness import wait_until_ready
from fixloop.browser.session import BrowserSession, DiagnosticSession
from fixloop.browser.static_server import serve_tree
from fixloop.core.config import LoopSettings
from fixloop.core.exceptions import LaunchError

logger = logging.getLogger(__name__)


class BrowserLauncher:
    """Async context manager around a Playwright Chromium browser."""

    def __init__(self, settings: Optional[LoopSettings] = None) -> None:
        self.settings = settings or LoopSettings()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "BrowserLauncher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        policy = self.settings.retry
        delays = policy.delays()
        last_error: Optional[Exception] = None

        for attempt in range(1, policy.attempts + 1):
            try:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.settings.headless,
                )
                logger.info("Chromium launched (headless=%s, attempt %d)",
                            self.settings.headless, attempt)
                return
            except PlaywrightError as exc:
                last_error = exc
                logger.warning("Browser launch attempt %d/%d failed: %s",
                               attempt, policy.attempts, exc)
                await self.stop()
                if attempt <= len(delays):
                    await asyncio.sleep(delays[attempt - 1])

        raise LaunchError(f"Chromium failed to launch: {last_error}")

    async def stop(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError:
                logger.warning("Browser close failed", exc_info=True)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def new_session(self, base_url: str) -> BrowserSession:
        if self._browser is None:
            raise LaunchError("Browser is not running")
        return await BrowserSession.open(
            self._browser,
            base_url,
            navigation_timeout=self.settings.navigation_timeout,
            action_timeout=self.settings.action_timeout,
        )


class SessionProvider(Protocol):
    """Opens a DiagnosticSession whose base URL serves a given source tree."""

    def open(self, tree_root: Path) -> AsyncContextManager[DiagnosticSession]: ...


class PlaywrightSessionProvider:
    """SessionProvider backed by a running BrowserLauncher."""

    def __init__(self, launcher: BrowserLauncher) -> None:
        self.launcher = launcher

    @asynccontextmanager
    async def open(self, tree_root: Path):
        async with serve_tree(tree_root) as base_url:
            await wait_until_ready(base_url, self.launcher.settings.retry)
            session = await self.launcher.new_session(base_url)
            try:
                yield session
            finally:
                await session.close()
