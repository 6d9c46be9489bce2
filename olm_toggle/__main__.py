"""Entry point: python -m olm_toggle.

Runs a console host in place of the desktop shell: it enables the extension,
prints every state change of the toggle and disables it on SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console

from olm_toggle.config import ToggleConfig, load_config
from olm_toggle.errors import ConfigError
from olm_toggle.extension import OlmExtension
from olm_toggle.logging_config import setup_logging, shutdown_logging
from olm_toggle.presentation import OlmIndicator

logger = logging.getLogger(__name__)

_console = Console()


class ConsoleHost:
    """Receives the indicator from ``enable()`` and renders its toggle state."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self.indicator: OlmIndicator | None = None

    def add_indicator(self, indicator: OlmIndicator) -> None:
        self.indicator = indicator
        indicator.toggle.connect_checked(self._render)
        self._render(indicator.toggle.checked)

    def _render(self, checked: bool) -> None:
        if self.indicator is None:
            return
        title = self.indicator.toggle.title
        if checked:
            self._console.print(f"[bold green]●[/bold green] {title}: [green]on[/green]")
        else:
            self._console.print(f"[dim]○ {title}: off[/dim]")


async def run_host(
    config: ToggleConfig,
    *,
    desired: bool | None = None,
    stop: asyncio.Event | None = None,
) -> int:
    """Enable the extension and keep it running until *stop* is set.

    Without *stop*, SIGINT/SIGTERM end the run.  Returns the process exit
    code (``1`` when the unit is not installed).
    """
    host = ConsoleHost(_console)
    extension = OlmExtension(config, add_indicator=host.add_indicator)
    if not await extension.enable():
        return 1

    if stop is None:
        stop = asyncio.Event()
        _install_signal_handlers(stop)

    indicator = extension.indicator
    assert indicator is not None
    observer = indicator.toggle.observer
    if desired is not None:
        indicator.toggle.click(desired)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        extension.disable()
        await observer.wait_pending()
    return 0


def _install_signal_handlers(stop: asyncio.Event) -> None:
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="olm-toggle",
        description="Console host for the OLM quick-settings toggle.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging output")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument(
        "--log-file", type=Path, default=None, help="Also log to this file (overrides config)"
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--start", dest="desired", action="store_const", const=True, help="Switch the unit on"
    )
    group.add_argument(
        "--stop", dest="desired", action="store_const", const=False, help="Switch the unit off"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = _parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        _console.print(f"[bold red]{exc}[/bold red]")
        sys.exit(1)

    setup_logging(
        config.log_level,
        verbose=args.verbose,
        log_file=args.log_file or config.log_file,
    )
    try:
        exit_code = asyncio.run(run_host(config, desired=args.desired))
    except KeyboardInterrupt:
        exit_code = 0
    finally:
        shutdown_logging()
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
