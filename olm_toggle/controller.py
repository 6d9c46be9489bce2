"""Privileged start/stop requests to systemd over the system D-Bus.

The request is fire-and-forget: the job object path returned by
``StartUnit``/``StopUnit`` is logged and never inspected.  The observer's
next poll is what reports the real outcome.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from olm_toggle.errors import ControlError
from olm_toggle.log_context import set_log_context

if TYPE_CHECKING:
    from olm_toggle.config import SystemdBusConfig, ToggleConfig

logger = logging.getLogger(__name__)


class ServiceAction(StrEnum):
    START = "start"
    STOP = "stop"


class ManagerChannel(Protocol):
    """The two ``org.freedesktop.systemd1.Manager`` methods we call."""

    def StartUnit(self, name: str, mode: str) -> str: ...  # noqa: N802

    def StopUnit(self, name: str, mode: str) -> str: ...  # noqa: N802


ChannelFactory = Callable[["SystemdBusConfig"], ManagerChannel]


def connect_system_manager(bus: SystemdBusConfig) -> ManagerChannel:
    """Build a dbus-python proxy for the systemd manager on the system bus.

    Connecting and resolving the name owner are blocking bus round trips;
    call this from a worker thread.
    """
    import dbus

    system_bus = dbus.SystemBus()
    proxy = system_bus.get_object(bus.bus_name, bus.object_path, introspect=False)
    return dbus.Interface(proxy, dbus_interface=bus.interface)


def _construct(factory: ChannelFactory, bus: SystemdBusConfig) -> ManagerChannel:
    try:
        return factory(bus)
    except Exception as exc:
        logger.error("Failed to connect to %s on the system bus: %s", bus.bus_name, exc)
        msg = f"Cannot reach {bus.bus_name}: {exc}"
        raise ControlError(msg) from exc


# Process-wide channel: built on first use, reused for the life of the process,
# never torn down.  A failed construction is not cached.  Construction runs in
# worker threads, so it is serialized by a lock.
_shared_channel: ManagerChannel | None = None
_shared_lock = threading.Lock()


def get_shared_channel(bus: SystemdBusConfig) -> ManagerChannel:
    """Return the process-wide systemd manager channel, connecting on first use."""
    global _shared_channel  # noqa: PLW0603
    with _shared_lock:
        if _shared_channel is None:
            _shared_channel = _construct(connect_system_manager, bus)
        return _shared_channel


def reset_shared_channel() -> None:
    """Forget the process-wide channel (tests only)."""
    global _shared_channel  # noqa: PLW0603
    _shared_channel = None


class ServiceController:
    """Sends start/stop requests for one unit.

    By default all controllers share the process-wide channel.  Passing
    *channel_factory* gives this controller its own lazily-built channel instead.
    """

    def __init__(
        self,
        config: ToggleConfig,
        *,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self._config = config
        self._channel_factory = channel_factory
        self._channel: ManagerChannel | None = None
        self._channel_lock = threading.Lock()

    @property
    def unit(self) -> str:
        return self._config.unit

    def _get_channel(self) -> ManagerChannel:
        """Blocking: run in a worker thread."""
        if self._channel_factory is None:
            return get_shared_channel(self._config.dbus)
        with self._channel_lock:
            if self._channel is None:
                self._channel = _construct(self._channel_factory, self._config.dbus)
            return self._channel

    async def submit(self, action: ServiceAction) -> None:
        """Ask systemd to start or stop the unit.

        Resolves once the request is accepted.  Raises ControlError if the
        channel cannot be built or the call is rejected (the error is logged here).
        """
        unit = self._config.unit
        mode = self._config.dbus.mode
        set_log_context(operation="ctl", unit=unit)
        logger.info("Requesting %s of %s (mode=%s)", action, unit, mode)

        channel = await asyncio.to_thread(self._get_channel)
        method = channel.StartUnit if action is ServiceAction.START else channel.StopUnit
        try:
            job = await asyncio.to_thread(method, unit, mode)
        except Exception as exc:
            logger.error("Failed to %s %s: %s", action, unit, exc)
            msg = f"{action} {unit} rejected: {exc}"
            raise ControlError(msg) from exc

        logger.debug("%s %s accepted, job %s", action, unit, job)
