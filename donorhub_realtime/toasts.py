"""Transient toast queue: independently timed, auto-expiring notices."""

from __future__ import annotations

import asyncio
import logging

from donorhub_realtime.types import ToastMessage

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 4000


class ToastQueue:
    """Ephemeral messages, each removed after its own ``ttl``.

    Nothing is persisted or deduplicated; the inbox keeps the durable record.
    """

    def __init__(self, default_ttl_ms: int = DEFAULT_TTL_MS) -> None:
        self._default_ttl = default_ttl_ms / 1000.0
        self._active: dict[str, ToastMessage] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def active(self) -> list[ToastMessage]:
        """Currently visible toasts, newest first."""
        return list(reversed(self._active.values()))

    def __len__(self) -> int:
        return len(self._active)

    def enqueue(self, text: str, ttl: float | None = None, icon: str = "🔔") -> ToastMessage:
        """Show ``text`` for ``ttl`` seconds (default from construction)."""
        ttl = self._default_ttl if ttl is None else max(ttl, 0.0)
        toast = ToastMessage(icon=icon, text=text, ttl=ttl)
        loop = asyncio.get_running_loop()
        self._active[toast.id] = toast
        self._timers[toast.id] = loop.call_later(ttl, self._expire, toast.id)
        logger.debug("Toast %s queued for %.1fs: %s", toast.id, ttl, text)
        return toast

    def dismiss(self, toast_id: str) -> bool:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        return self._active.pop(toast_id, None) is not None

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._active.clear()

    def _expire(self, toast_id: str) -> None:
        self._timers.pop(toast_id, None)
        self._active.pop(toast_id, None)
