"""
Static Tree Server
==================
Serves a source tree over HTTP on a free localhost port so the browser
can load it. Uses uvicorn + Starlette StaticFiles, run as a task on the
current event loop.
"""
import asyncio
import logging
import socket
from contextlib import asynccontextmanager, nullcontext
from pathlib import Path
from typing import AsyncIterator

import uvicorn
from starlette.applications import Starlette
from starlette.routing import Mount
from starlette.staticfiles import StaticFiles

from fixloop.core.exceptions import LaunchError

logger = logging.getLogger(__name__)

_HOST = "127.0.0.1"
_STARTUP_TIMEOUT = 10.0


def find_free_port(host: str = _HOST) -> int:
    """Ask the OS for an unused TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    def capture_signals(self):
        return nullcontext()


def build_static_app(root: Path) -> Starlette:
    return Starlette(routes=[
        Mount("/", app=StaticFiles(directory=str(root), html=True), name="tree"),
    ])


@asynccontextmanager
async def serve_tree(root: Path) -> AsyncIterator[str]:
    """
    Serve ``root`` for the duration of the block.

    Yields the base URL (with trailing slash). Raises LaunchError when the
    server does not come up.
    """
    root = Path(root)
    if not root.is_dir():
        raise LaunchError(f"Source tree not found: {root}")

    port = find_free_port()
    config = uvicorn.Config(
        build_static_app(root),
        host=_HOST,
        port=port,
        log_level="warning",
        access_log=False,
        lifespan="off",
    )
    server = _EmbeddedServer(config)
    task = asyncio.create_task(server.serve())

    waited = 0.0
    while not server.started:
        if task.done():
            raise LaunchError(f"Tree server for {root} exited during startup")
        if waited >= _STARTUP_TIMEOUT:
            server.should_exit = True
            await task
            raise LaunchError(f"Tree server for {root} did not start in {_STARTUP_TIMEOUT:.0f}s")
        await asyncio.sleep(0.05)
        waited += 0.05

    base_url = f"http://{_HOST}:{port}/"
    logger.debug("Serving %s at %s", root, base_url)
    try:
        yield base_url
    finally:
        server.should_exit = True
        await task
        logger.debug("Stopped serving %s", root)
