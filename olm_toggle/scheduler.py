"""Recurring-task scheduler on top of asyncio background tasks.

``schedule()`` starts a loop task that sleeps, then spawns the tick body as
its own task and goes back to sleep.  ``cancel()`` stops the loop only: a tick
body that is already running is left to finish.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TickFn = Callable[[], Awaitable[object]]


class PollHandle:
    """Opaque handle for one recurring schedule."""

    def __init__(self, name: str, interval: float, task: asyncio.Task[None]) -> None:
        self.name = name
        self.interval = interval
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def __repr__(self) -> str:
        state = "active" if self.active else "done"
        return f"<PollHandle {self.name} every {self.interval:g}s {state}>"


class RecurringScheduler:
    """Runs coroutines on a fixed interval until their handle is cancelled."""

    def __init__(self) -> None:
        self._handles: set[PollHandle] = set()
        self._ticks: set[asyncio.Task[None]] = set()

    @property
    def handles(self) -> frozenset[PollHandle]:
        return frozenset(self._handles)

    def schedule(self, interval_seconds: float, task: TickFn, *, name: str = "poll") -> PollHandle:
        """Run *task* every *interval_seconds*, first run one interval from now."""
        if interval_seconds <= 0:
            msg = f"interval must be positive, got {interval_seconds}"
            raise ValueError(msg)
        loop_task = asyncio.create_task(self._loop(interval_seconds, task, name))
        loop_task.add_done_callback(_log_task_crash)
        handle = PollHandle(name, interval_seconds, loop_task)
        self._handles.add(handle)
        logger.debug("Scheduled %s every %.1fs", name, interval_seconds)
        return handle

    def cancel(self, handle: PollHandle) -> None:
        """Stop future ticks of *handle*. Safe to call more than once."""
        self._handles.discard(handle)
        if handle.active:
            handle._task.cancel()
            logger.debug("Cancelled %s", handle.name)

    async def aclose(self) -> None:
        """Cancel every schedule and wait for loops and in-flight ticks to finish."""
        loops = [h._task for h in self._handles]
        for handle in list(self._handles):
            self.cancel(handle)
        for loop_task in loops:
            with contextlib.suppress(asyncio.CancelledError):
                await loop_task
        await self.wait_ticks()

    async def wait_ticks(self) -> None:
        """Wait for the tick bodies running right now (not for future ticks)."""
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def _loop(self, interval: float, task: TickFn, name: str) -> None:
        """Sleep -> spawn tick -> repeat."""
        try:
            while True:
                await asyncio.sleep(interval)
                tick = asyncio.create_task(_run_tick(task, name))
                self._ticks.add(tick)
                tick.add_done_callback(self._ticks.discard)
        except asyncio.CancelledError:
            logger.debug("%s loop cancelled", name)


async def _run_tick(task: TickFn, name: str) -> None:
    try:
        await task()
    except Exception:
        logger.exception("%s tick failed (continuing)", name)


def _log_task_crash(task: asyncio.Task[None]) -> None:
    """Log if a scheduler loop crashes unexpectedly."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Scheduler loop crashed: %s", exc, exc_info=exc)
