from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger("agency_crm.client")

CacheKey = tuple[Hashable, ...]


@dataclass
class _CacheEntry:
    value: Any
    fetched_at: float


class QueryCache:
    """Keyed result cache with in-flight de-duplication.

    Concurrent ``fetch`` calls for one key share a single ``asyncio.Task``.
    Waiters await it through ``asyncio.shield`` so one cancelled waiter does
    not cancel the load for the others; ``cancel(key)`` does.
    """

    def __init__(self, stale_time: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.stale_time = stale_time
        self._clock = clock
        self._entries: dict[CacheKey, _CacheEntry] = {}
        self._inflight: dict[CacheKey, asyncio.Task[Any]] = {}

    def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        if entry is None or self.is_stale(key):
            return None
        return entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = _CacheEntry(value=value, fetched_at=self._clock())

    def is_stale(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        return self._clock() - entry.fetched_at >= self.stale_time

    def in_flight(self, key: CacheKey) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def fetch(self, key: CacheKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        if not self.is_stale(key):
            return self._entries[key].value

        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._load(key, loader))
            self._inflight[key] = task
        else:
            logger.debug("crm.client.cache.join", extra={"endpoint": str(key[0]) if key else None})
        return await asyncio.shield(task)

    async def _load(self, key: CacheKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await loader()
            self.set(key, value)
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                self._inflight.pop(key, None)

    def cancel(self, key: CacheKey) -> bool:
        task = self._inflight.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def invalidate(self, prefix: CacheKey = ()) -> int:
        """Drop every cached entry whose key starts with ``prefix``."""
        size = len(prefix)
        doomed = [key for key in self._entries if key[:size] == prefix]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        for task in self._inflight.values():
            if not task.done():
                task.cancel()
        self._inflight.clear()
