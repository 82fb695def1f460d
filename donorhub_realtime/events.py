"""
Listener registry for the DonorHub real-time connection.

Parses inbound socket frames into :class:`RealtimeEvent` objects and
dispatches them to callbacks registered per event name.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine

from pydantic import ValidationError

from donorhub_realtime.types import RealtimeEvent

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[[RealtimeEvent], Coroutine[Any, Any, None] | None]


class EventManager:
    """Manages real-time event subscriptions for one connection."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for a specific event name."""
        if self._closed:
            logger.debug("Ignoring subscription to %s after teardown", event_name)
            return
        self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler | None = None) -> None:
        """Remove a handler (or all handlers) for an event name."""
        if handler is None:
            self._handlers.pop(event_name, None)
            return
        handlers = [h for h in self._handlers.get(event_name, []) if h != handler]
        if handlers:
            self._handlers[event_name] = handlers
        else:
            self._handlers.pop(event_name, None)

    def handler_count(self, event_name: str | None = None) -> int:
        if event_name is not None:
            return len(self._handlers.get(event_name, []))
        return sum(len(h) for h in self._handlers.values())

    async def dispatch(self, event: RealtimeEvent) -> None:
        """Dispatch an event to all matching handlers.

        A failing handler is logged and does not stop delivery to the rest.
        """
        for handler in list(self._handlers.get(event.name, [])):
            if self._closed:
                return
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in event handler for %s", event.name)

    @staticmethod
    def parse(raw: str | bytes) -> RealtimeEvent | None:
        """Decode one wire frame, or ``None`` if it is not an event."""
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                return None
            return RealtimeEvent.model_validate(data)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
            return None

    async def listen(self, ws: Any) -> None:
        """Read frames from ``ws`` and dispatch them until it closes."""
        async for raw in ws:
            if self._closed:
                return
            event = self.parse(raw)
            if event is None:
                logger.debug("Ignoring non-event WS message")
                continue
            await self.dispatch(event)

    def clear(self) -> None:
        """Remove every handler and refuse further dispatch."""
        self._closed = True
        self._handlers.clear()
