"""Extension lifecycle: ``enable()`` installs the indicator, ``disable()`` tears it down."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from rich.console import Console
from rich.panel import Panel

from olm_toggle.log_context import set_log_context
from olm_toggle.presentation import OlmIndicator
from olm_toggle.probe import unit_exists

if TYPE_CHECKING:
    from olm_toggle.config import ToggleConfig

logger = logging.getLogger(__name__)

NOTIFY_TITLE = "OLM Toggle"
NOTIFY_NOT_FOUND = "OLM service not configured on this system"


class Notifier(Protocol):
    def notify_error(self, title: str, body: str) -> None: ...


class ConsoleNotifier:
    """Shows user-facing errors as a rich panel."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    def notify_error(self, title: str, body: str) -> None:
        self._console.print(
            Panel(
                f"[bold red]{body}[/bold red]",
                title=f"[bold]{title}[/bold]",
                border_style="red",
                padding=(1, 2),
            ),
        )


class OlmExtension:
    """Host-facing entry point.

    *add_indicator* is the host's hook for placing the indicator in its panel.
    """

    def __init__(
        self,
        config: ToggleConfig,
        *,
        add_indicator: Callable[[OlmIndicator], None],
        notifier: Notifier | None = None,
        indicator_factory: Callable[[ToggleConfig], OlmIndicator] = OlmIndicator,
    ) -> None:
        self._config = config
        self._add_indicator = add_indicator
        self._notifier: Notifier = notifier or ConsoleNotifier()
        self._indicator_factory = indicator_factory
        self._indicator: OlmIndicator | None = None
        self._enable_lock = asyncio.Lock()

    @property
    def indicator(self) -> OlmIndicator | None:
        return self._indicator

    async def enable(self) -> bool:
        """Install the indicator if the service manager knows the unit.

        Returns False (after notifying the user once) when it does not.
        Overlapping calls install at most one indicator.
        """
        async with self._enable_lock:
            return await self._enable()

    async def _enable(self) -> bool:
        if self._indicator is not None:
            return True
        set_log_context(operation="enable", unit=self._config.unit)

        if not await unit_exists(self._config.unit, systemctl=self._config.systemctl):
            logger.error("%s service not found", self._config.unit)
            self._notifier.notify_error(NOTIFY_TITLE, NOTIFY_NOT_FOUND)
            return False

        self._indicator = self._indicator_factory(self._config)
        self._add_indicator(self._indicator)
        logger.info("Indicator enabled for %s", self._config.unit)
        return True

    def disable(self) -> None:
        """Destroy the indicator (and with it the observer's polling)."""
        if self._indicator is None:
            return
        self._indicator.destroy()
        self._indicator = None
        logger.info("Indicator disabled for %s", self._config.unit)
