"""Logging for the console host.

``setup_logging()`` is called once, after the config is loaded, with the
config's level.  Records go to stderr; when a log file is configured they are
also handed to a background thread that writes a rotating file, so a slow disk
never stalls the event loop.  ``shutdown_logging()`` flushes that thread.
"""

from __future__ import annotations

import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path

from olm_toggle.log_context import ContextFilter

LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUPS = 2

CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(ctx)s%(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(ctx)s%(message)s"

logger = logging.getLogger(__name__)

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[2m",
    logging.INFO: "\x1b[34m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[1;31m",
    logging.CRITICAL: "\x1b[1;37;41m",
}

_listener: QueueListener | None = None


class _LevelColorFormatter(logging.Formatter):
    """Pads the level name and, on a terminal, colors it."""

    def __init__(self, fmt: str, *, color: bool) -> None:
        super().__init__(fmt, datefmt="%H:%M:%S")
        self._color = color

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        levelname = record.levelname
        padded = f"{levelname:<7}"
        if self._color:
            padded = f"{_LEVEL_COLORS.get(record.levelno, '')}{padded}\x1b[0m"
        record.levelname = padded
        try:
            return super().formatMessage(record)
        finally:
            record.levelname = levelname


def _console_handler(level: int, ctx_filter: logging.Filter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(ctx_filter)
    handler.setFormatter(_LevelColorFormatter(CONSOLE_FORMAT, color=sys.stderr.isatty()))
    return handler


def _file_handler(path: Path, ctx_filter: logging.Filter) -> logging.Handler:
    """Queue handler feeding a rotating file written by a listener thread."""
    global _listener  # noqa: PLW0603
    path.parent.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(
        path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    rotating.setFormatter(logging.Formatter(FILE_FORMAT))

    records: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    _listener = QueueListener(records, rotating)
    _listener.start()

    handler = QueueHandler(records)
    handler.addFilter(ctx_filter)
    return handler


def setup_logging(
    level: str | int = logging.INFO,
    *,
    verbose: bool = False,
    log_file: Path | None = None,
) -> None:
    """Replace the root handlers with a console handler and, optionally, a file.

    *level* is a level name as stored in the config (``"INFO"``) or a number.
    *verbose* forces DEBUG on the console.  The file always receives DEBUG.
    Calling this again tears down the previous setup first.
    """
    if isinstance(level, str):
        level = logging.getLevelNamesMapping()[level.upper()]
    if verbose:
        level = logging.DEBUG

    shutdown_logging()
    ctx_filter = ContextFilter()
    root = logging.getLogger()
    root.handlers.clear()

    root.addHandler(_console_handler(level, ctx_filter))
    root.setLevel(level)
    if log_file is not None:
        root.addHandler(_file_handler(log_file, ctx_filter))
        root.setLevel(logging.DEBUG)

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.debug(
        "Logging to stderr at %s%s",
        logging.getLevelName(level),
        f" and to {log_file}" if log_file is not None else "",
    )


def shutdown_logging() -> None:
    """Flush and stop the file writer thread, if one is running."""
    global _listener  # noqa: PLW0603
    if _listener is not None:
        _listener.stop()
        _listener = None
