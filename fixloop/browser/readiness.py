"""
Readiness Check
===============
Polls a URL with httpx until it answers 2xx, sleeping between attempts
according to the RetryPolicy. Raises LaunchError when every attempt fails.
"""
import asyncio
import logging

import httpx

from fixloop.core.config import RetryPolicy
from fixloop.core.exceptions import LaunchError

logger = logging.getLogger(__name__)


async def wait_until_ready(url: str, policy: RetryPolicy | None = None) -> int:
    """Return the number of attempts it took for ``url`` to respond."""
    policy = policy or RetryPolicy()
    delays = policy.delays()
    last_error = ""

    async with httpx.AsyncClient(timeout=5.0) as client:
        for attempt in range(1, policy.attempts + 1):
            try:
                response = await client.get(url)
                response.raise_for_status()
                if attempt > 1:
                    logger.info("%s ready after %d attempts", url, attempt)
                return attempt
            except httpx.HTTPStatusError as http_err:
                last_error = f"HTTP {http_err.response.status_code}"
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"

            logger.debug("Readiness attempt %d/%d for %s failed: %s",
                         attempt, policy.attempts, url, last_error)
            if attempt <= len(delays):
                await asyncio.sleep(delays[attempt - 1])

    raise LaunchError(f"{url} not ready after {policy.attempts} attempts ({last_error})")
