"""
Shared fakes for the DonorHub real-time tests.

``FakeSocket`` stands in for a ``websockets`` client connection and
``FakeConnector`` for :func:`websockets.connect`, so no server is needed.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable


class FakeSocket:
    """In-memory socket: ``push`` queues inbound frames, ``sent`` records outbound."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbound: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def push(self, name: str, data: Any = None) -> None:
        self._inbound.put_nowait(json.dumps({"type": name, "data": data}))

    def push_raw(self, raw: str) -> None:
        self._inbound.put_nowait(raw)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._inbound.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._inbound.put_nowait(None)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._inbound.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector that fails ``failures`` times, then hands out ``sockets`` in order."""

    def __init__(self, sockets: list[FakeSocket] | None = None, failures: int = 0) -> None:
        self.sockets = list(sockets or [])
        self.failures = failures
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeSocket:
        self.calls.append((url, kwargs))
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        if not self.sockets:
            raise OSError("no socket available")
        return self.sockets.pop(0)


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)
