"""Monotonic countdown clock."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

DEFAULT_TICK_SECONDS = 1.0


class Clock:
    """Count down once per tick and report expiry.

    Ticks are scheduled against the event loop's monotonic time so a slow
    callback does not stretch the exam. After ``cancel()`` no further
    ``on_tick`` or ``on_expired`` call is made.
    """

    def __init__(
        self,
        *,
        on_tick: Callable[[int], None],
        on_expired: Callable[[], None],
        tick_seconds: float = DEFAULT_TICK_SECONDS,
    ) -> None:
        self._on_tick = on_tick
        self._on_expired = on_expired
        self._tick_seconds = tick_seconds
        self._remaining = 0
        self._cancelled = True
        self._task: asyncio.Task[None] | None = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self, duration_seconds: int) -> None:
        self.cancel()
        self._remaining = max(0, int(duration_seconds))
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="examiner.clock")

    def cancel(self) -> None:
        self._cancelled = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while self._remaining > 0:
            deadline += self._tick_seconds
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if self._cancelled:
                return
            self._remaining -= 1
            self._on_tick(self._remaining)
            if self._cancelled:
                return

        logger.debug("clock.expired")
        self._cancelled = True
        self._on_expired()
