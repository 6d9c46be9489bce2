"""Logging context: ContextVar-based log enrichment for async operations.

Every log record is automatically enriched with an ``[op:unit]`` prefix
via a `ContextFilter` attached to the root logger handlers.

Operation codes: ``enable`` (lifecycle hook), ``probe`` (status query),
``poll`` (recurring tick), ``ctl`` (start/stop control call).
"""

from __future__ import annotations

import logging
from contextvars import ContextVar

# Cross-cutting context propagated through asyncio tasks.
ctx_operation: ContextVar[str | None] = ContextVar("ctx_operation", default=None)
ctx_unit: ContextVar[str | None] = ContextVar("ctx_unit", default=None)


class ContextFilter(logging.Filter):
    """Inject ContextVar values into every LogRecord as ``record.ctx``."""

    def filter(self, record: logging.LogRecord) -> bool:
        op = ctx_operation.get(None)
        unit = ctx_unit.get(None)
        parts: list[str] = []
        if op:
            parts.append(op)
        if unit:
            parts.append(unit)
        record.ctx = f"[{':'.join(parts)}] " if parts else ""
        return True


def set_log_context(
    *,
    operation: str | None = None,
    unit: str | None = None,
) -> None:
    """Set logging context for the current asyncio task.

    Values propagate to all coroutines called within the same task.
    Each ``asyncio.create_task()`` copies the current context automatically,
    so setting the context inside a background task does not leak into its parent.
    """
    if operation is not None:
        ctx_operation.set(operation)
    if unit is not None:
        ctx_unit.set(unit)
