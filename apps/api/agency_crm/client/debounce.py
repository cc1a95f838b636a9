from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class Debouncer(Generic[T]):
    """Delivers only the last value pushed within ``delay`` seconds."""

    def __init__(self, callback: Callable[[T], Awaitable[Any] | Any], delay: float = 0.5) -> None:
        self.callback = callback
        self.delay = delay
        self._task: asyncio.Task[None] | None = None
        self._pending: tuple[T] | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def push(self, value: T) -> None:
        self.cancel()
        self._pending = (value,)
        self._task = asyncio.create_task(self._fire_later())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._pending = None

    async def flush(self) -> None:
        """Deliver a pending value now instead of waiting out the delay."""
        if self._pending is None:
            return
        (value,) = self._pending
        self.cancel()
        await self._deliver(value)

    async def _fire_later(self) -> None:
        await asyncio.sleep(self.delay)
        if self._pending is None:
            return
        (value,) = self._pending
        self._pending = None
        # Detach so a later push cannot cancel a delivery already under way.
        self._task = None
        await self._deliver(value)

    async def _deliver(self, value: T) -> None:
        result = self.callback(value)
        if inspect.isawaitable(result):
            await result
