"""
Diagnostics Stream
==================
Consumable, cancellable asynchronous stream of console / page-error events
tied to the lifetime of the session that owns it.

Each ``subscribe_diagnostics()`` call returns a fresh DiagnosticStream that
starts receiving events immediately (so a caller can subscribe, trigger a
navigation and only then start reading without losing events). Closing the
owning session ends every open stream.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DiagnosticType(str, Enum):
    CONSOLE = "console"
    PAGE_ERROR = "pageerror"


@dataclass(frozen=True)
class DiagnosticEvent:
    """
    One raw diagnostic signal.

    payload keys:
        console   — level, text, url, line
        pageerror — name, message, stack
    """
    type: DiagnosticType
    payload: Dict[str, Any] = field(default_factory=dict)


_END = object()


class DiagnosticStream:
    """Async iterator over DiagnosticEvents for one subscriber."""

    def __init__(self, hub: "DiagnosticHub") -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._hub = hub
        self._closed = False

    def _push(self, event: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def __aiter__(self) -> "DiagnosticStream":
        return self

    async def __anext__(self) -> DiagnosticEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._closed = True
            raise StopAsyncIteration
        return item

    async def next_event(self, timeout: float) -> Optional[DiagnosticEvent]:
        """Next event, or None if nothing arrives within ``timeout`` / stream ended."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout=max(0.0, timeout))
        except (asyncio.TimeoutError, StopAsyncIteration):
            return None

    def close(self) -> None:
        if not self._closed:
            self._queue.put_nowait(_END)
            self._closed = True
        self._hub._detach(self)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "DiagnosticStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class DiagnosticHub:
    """Fan-out of published events to every open subscription."""

    def __init__(self) -> None:
        self._streams: List[DiagnosticStream] = []

    def subscribe_diagnostics(self) -> DiagnosticStream:
        stream = DiagnosticStream(self)
        self._streams.append(stream)
        return stream

    def publish(self, event: DiagnosticEvent) -> None:
        for stream in list(self._streams):
            stream._push(event)

    def close_streams(self) -> None:
        for stream in list(self._streams):
            stream.close()

    def _detach(self, stream: DiagnosticStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)
