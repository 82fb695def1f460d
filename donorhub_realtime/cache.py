"""
Query cache coordinator.

Each :class:`CacheKey` carries a level-triggered ``is_stale`` flag. Reads
of a stale or absent entry refetch before returning, and every refetch
for a key is shared: invalidations that arrive while one is pending do
not start another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from donorhub_realtime.types import CacheEntry, CacheKey

logger = logging.getLogger(__name__)

Fetcher = Callable[[CacheKey], Awaitable[Any]]


class QueryCacheCoordinator:
    """Tracks staleness per key and collapses redundant refetches."""

    def __init__(self) -> None:
        self._fetchers: dict[str, Fetcher] = {}
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._inflight: dict[CacheKey, asyncio.Task[Any]] = {}

    def register(self, resource: str, fetcher: Fetcher) -> None:
        """Set the coroutine used to (re)load keys of ``resource``."""
        self._fetchers[resource] = fetcher

    def entry(self, key: CacheKey) -> CacheEntry | None:
        return self._entries.get(key)

    def is_stale(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.is_stale

    def is_fetching(self, key: CacheKey) -> bool:
        return key in self._inflight

    def peek(self, key: CacheKey, default: Any = None) -> Any:
        """Last-known value without triggering a fetch."""
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return default
        return entry.value

    async def get(self, key: CacheKey) -> Any:
        """Return the value for ``key``, refetching first if it is stale."""
        entry = self._entries.get(key)
        if entry is not None and not entry.is_stale:
            return entry.value
        return await self._fetch(key)

    def invalidate(self, key: CacheKey) -> None:
        """Mark ``key`` stale and refetch it in the background if it is in use.

        Keys never read are only flagged; their next ``get`` loads them.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Invalidated unused cache key %s", key)
            return
        entry.is_stale = True
        if key in self._inflight:
            logger.debug("Refetch for %s already pending", key)
            return
        self._schedule(key)

    def invalidate_all(self) -> None:
        """Mark every entry stale, e.g. after a reconnect gap.

        Only flags entries; each one refetches on its next ``get``.
        """
        for entry in self._entries.values():
            entry.is_stale = True
        logger.debug("Marked %d cache entries stale", len(self._entries))

    async def refresh(self, key: CacheKey) -> Any:
        """Manual refresh: invalidate and wait for the fresh value."""
        self.invalidate(key)
        return await self.get(key)

    async def close(self) -> None:
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    # ---- Internal ----

    def _schedule(self, key: CacheKey) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._refetch(key))
        self._inflight[key] = task
        task.add_done_callback(lambda t, k=key: self._finished(k, t))
        return task

    def _finished(self, key: CacheKey, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Refetch of %s failed: %s", key, task.exception())

    async def _fetch(self, key: CacheKey) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = self._schedule(key)
        return await asyncio.shield(task)

    async def _refetch(self, key: CacheKey) -> Any:
        fetcher = self._fetchers.get(key.resource)
        if fetcher is None:
            raise LookupError(f"No fetcher registered for {key.resource!r}")
        entry = self._entries.setdefault(key, CacheEntry(key=key))
        logger.debug("Refetching %s", key)
        value = await fetcher(key)
        entry.value = value
        entry.last_fetched_at = time.time()
        entry.is_stale = False
        return value
