"""asyncio-backed timers for the aggregator.

Callbacks are coroutine functions; when a timer fires the coroutine runs as
its own task so a slow publish never blocks the event loop's timer queue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

LOGGER = logging.getLogger(__name__)


class _LoopTimer:
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class AsyncioScheduler:
    """SchedulerPort implementation on top of ``loop.call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_event_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> _LoopTimer:
        loop = self._get_loop()
        return _LoopTimer(loop.call_later(delay, self._spawn, callback))

    def _spawn(self, callback: Callable[[], Awaitable[None]]) -> None:
        task = self._get_loop().create_task(callback())
        # Keep a strong reference until the task finishes.
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Scheduled callback failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for callbacks that are already running."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
