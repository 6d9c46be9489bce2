"""Presentation models: the quick-settings toggle and the panel indicator.

These stand in for the shell's widgets.  They hold the state a renderer
needs (``checked``, ``visible``) and the signals the observer reports into.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from olm_toggle.controller import ServiceController
from olm_toggle.observer import ServiceStateObserver

if TYPE_CHECKING:
    from olm_toggle.config import ToggleConfig
    from olm_toggle.observer import ProbeFn
    from olm_toggle.scheduler import RecurringScheduler

logger = logging.getLogger(__name__)

BoolHandler = Callable[[bool], None]


def _emit(handlers: list[BoolHandler], value: bool, signal: str) -> None:
    for handler in list(handlers):
        try:
            handler(value)
        except Exception:
            logger.exception("%s handler failed", signal)


class QuickToggle:
    """A toggle-mode button: ``checked`` plus a ``clicked`` signal."""

    def __init__(self, *, title: str, icon_name: str, checked: bool = False) -> None:
        self.title = title
        self.icon_name = icon_name
        self._checked = checked
        self._on_checked: list[BoolHandler] = []
        self._on_clicked: list[BoolHandler] = []
        self.destroyed = False

    @property
    def checked(self) -> bool:
        return self._checked

    @checked.setter
    def checked(self, value: bool) -> None:
        if value == self._checked:
            return
        self._checked = value
        _emit(self._on_checked, value, "notify::checked")

    def connect_checked(self, handler: BoolHandler) -> None:
        self._on_checked.append(handler)

    def connect_clicked(self, handler: BoolHandler) -> None:
        self._on_clicked.append(handler)

    def click(self, desired: bool | None = None) -> None:
        """Simulate a user click. Flips ``checked`` unless *desired* is given."""
        self.checked = (not self._checked) if desired is None else desired
        _emit(self._on_clicked, self._checked, "clicked")

    def destroy(self) -> None:
        self._on_checked.clear()
        self._on_clicked.clear()
        self.destroyed = True


class StatusIndicator:
    """Panel icon whose visibility follows a toggle's ``checked`` state."""

    def __init__(self, icon_name: str) -> None:
        self.icon_name = icon_name
        self.visible = False

    def bind_visible(self, toggle: QuickToggle) -> None:
        """Sync ``visible`` to ``toggle.checked`` now and on every change."""
        self.visible = toggle.checked
        toggle.connect_checked(self._set_visible)

    def _set_visible(self, value: bool) -> None:
        self.visible = value


class OlmToggle(QuickToggle):
    """Quick toggle wired to a ServiceStateObserver.

    Probe results set ``checked``; clicks are forwarded as user intent.
    """

    def __init__(self, config: ToggleConfig, observer: ServiceStateObserver) -> None:
        super().__init__(title=config.title, icon_name=config.icon_name, checked=False)
        self.observer = observer
        self._unsubscribe = observer.subscribe(self._on_probe_result)
        self.connect_clicked(observer.on_user_toggle)

    def _on_probe_result(self, active: bool) -> None:
        self.checked = active

    def destroy(self) -> None:
        self._unsubscribe()
        self.observer.destroy()
        super().destroy()


class OlmIndicator:
    """System indicator holding the panel icon and the quick-settings toggle.

    Builds the controller/observer pair the toggle reports to.
    """

    def __init__(
        self,
        config: ToggleConfig,
        *,
        controller: ServiceController | None = None,
        probe: ProbeFn | None = None,
        scheduler: RecurringScheduler | None = None,
    ) -> None:
        self.indicator = StatusIndicator(config.icon_name)
        observer = ServiceStateObserver(
            config,
            controller or ServiceController(config),
            probe=probe,
            scheduler=scheduler,
        )
        self.toggle = OlmToggle(config, observer)
        self.indicator.bind_visible(self.toggle)
        self.quick_settings_items: list[QuickToggle] = [self.toggle]

    def destroy(self) -> None:
        for item in self.quick_settings_items:
            item.destroy()
        self.quick_settings_items.clear()
        self.indicator.visible = False
