"""Service state observer: polls the unit and reconciles user intent with reality.

``active`` is written only from probe results.  A user toggle sends a control
request and makes sure polling is running; it never flips ``active`` itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from functools import partial
from typing import TYPE_CHECKING, Any

from olm_toggle.controller import ServiceAction
from olm_toggle.errors import ControlError, ProbeError
from olm_toggle.log_context import set_log_context
from olm_toggle.probe import probe_active
from olm_toggle.scheduler import PollHandle, RecurringScheduler

if TYPE_CHECKING:
    from olm_toggle.config import ToggleConfig
    from olm_toggle.controller import ServiceController

logger = logging.getLogger(__name__)

ProbeFn = Callable[[], Awaitable[bool]]
# Called with the probed state after every probe (not only on transitions).
StateListener = Callable[[bool], None]


class ServiceStateObserver:
    """Owns the ``active`` flag for one unit and the timer that keeps it fresh.

    Construction must happen inside a running event loop: it spawns the
    initial probe and starts polling right away.
    """

    def __init__(
        self,
        config: ToggleConfig,
        controller: ServiceController,
        *,
        probe: ProbeFn | None = None,
        scheduler: RecurringScheduler | None = None,
    ) -> None:
        self._config = config
        self._controller = controller
        self._probe = probe or partial(probe_active, config.unit, systemctl=config.systemctl)
        self._scheduler = scheduler or RecurringScheduler()
        self._active = False
        self._poll_handle: PollHandle | None = None
        self._listeners: list[StateListener] = []
        self._background_tasks: set[asyncio.Task[None]] = set()

        self._spawn(self._initial_refresh(), name="initial probe")
        self.start_polling()

    @property
    def unit(self) -> str:
        return self._config.unit

    @property
    def active(self) -> bool:
        return self._active

    @property
    def is_polling(self) -> bool:
        return self._poll_handle is not None

    # -- presentation binding -------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener* for probe results. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- user intent ----------------------------------------------------------

    def on_user_toggle(self, desired: bool) -> None:
        """Forward a click on the toggle to the controller.

        The control call is not awaited: its failure is logged by the
        controller and otherwise only shows up as an unchanged probe result.
        """
        action = ServiceAction.START if desired else ServiceAction.STOP
        logger.debug("User toggled %s -> %s", self.unit, action)
        self._spawn(self._submit(action), name=f"{action} request")
        if desired:
            self.start_polling()

    async def _submit(self, action: ServiceAction) -> None:
        try:
            await self._controller.submit(action)
        except ControlError:
            logger.debug("%s request failed, state left to the next poll", action)

    # -- probing --------------------------------------------------------------

    async def probe(self) -> bool:
        """Query the unit state. Never raises: any failure reads as inactive."""
        try:
            return await self._probe()
        except ProbeError as exc:
            logger.warning("Status probe for %s failed: %s", self.unit, exc)
        except Exception:
            logger.exception("Unexpected status probe error for %s", self.unit)
        return False

    async def refresh(self) -> bool:
        """Probe once and write the result into ``active``."""
        set_log_context(unit=self.unit)
        active = await self.probe()
        self._set_active(active)
        return active

    async def _initial_refresh(self) -> None:
        set_log_context(operation="probe")
        await self.refresh()

    def _set_active(self, active: bool) -> None:
        if active != self._active:
            logger.info("%s is now %s", self.unit, "active" if active else "inactive")
        self._active = active
        for listener in list(self._listeners):
            try:
                listener(active)
            except Exception:
                logger.exception("State listener failed")

    # -- polling --------------------------------------------------------------

    def start_polling(self) -> None:
        """Start the recurring probe. No-op if already polling."""
        if self._poll_handle is not None:
            return
        self._poll_handle = self._scheduler.schedule(
            self._config.poll_interval_seconds,
            self._poll_tick,
            name=f"poll {self.unit}",
        )
        logger.debug("Polling %s every %.1fs", self.unit, self._config.poll_interval_seconds)

    def stop_polling(self) -> None:
        """Stop the recurring probe. No-op if not polling."""
        if self._poll_handle is None:
            return
        handle = self._poll_handle
        self._poll_handle = None
        self._scheduler.cancel(handle)
        logger.debug("Stopped polling %s", self.unit)

    async def _poll_tick(self) -> None:
        set_log_context(operation="poll")
        await self.refresh()

    # -- lifecycle ------------------------------------------------------------

    def destroy(self) -> None:
        """Stop polling and drop presentation bindings.

        In-flight probes and control calls are not cancelled; a probe that
        completes afterwards still updates ``active``.
        """
        self.stop_polling()
        self._listeners.clear()

    async def wait_pending(self) -> None:
        """Wait for spawned probes, control calls and running poll ticks to settle."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        await self._scheduler.wait_ticks()

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(_log_task_crash)


def _log_task_crash(task: asyncio.Task[None]) -> None:
    """Log if an observer background task crashes unexpectedly."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("%s crashed: %s", task.get_name(), exc, exc_info=exc)
