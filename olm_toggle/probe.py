"""Unprivileged status queries via ``systemctl``.

Only exit codes are consumed; stdout/stderr are captured so they never reach
the host terminal, and stderr is logged at debug level.
"""

from __future__ import annotations

import asyncio
import logging

from olm_toggle.errors import ProbeError

logger = logging.getLogger(__name__)

# ``systemctl status`` exit code for "no such unit" (LSB: program or service status is unknown).
_EXIT_NO_SUCH_UNIT = 4


async def _run_systemctl(systemctl: str, *args: str) -> int:
    """Run ``systemctl <args>`` and return its exit code.

    Raises ProbeError if the process cannot be spawned or read.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            systemctl,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
    except OSError as exc:
        msg = f"{systemctl} {' '.join(args)}: {exc}"
        raise ProbeError(msg) from exc

    if stderr:
        logger.debug("systemctl stderr: %s", stderr.decode(errors="replace").strip()[:500])
    assert proc.returncode is not None
    return proc.returncode


async def probe_active(unit: str, *, systemctl: str = "systemctl") -> bool:
    """Return True if ``systemctl is-active <unit>`` exits with 0."""
    returncode = await _run_systemctl(systemctl, "is-active", unit)
    logger.debug("is-active %s -> exit %d", unit, returncode)
    return returncode == 0


async def unit_exists(unit: str, *, systemctl: str = "systemctl") -> bool:
    """Check whether the service manager knows *unit*.

    A missing ``systemctl`` binary counts as "not found", as does exit code 4.
    Every other exit code (running, stopped, failed) means the unit exists.
    """
    try:
        returncode = await _run_systemctl(systemctl, "status", "--no-pager", unit)
    except ProbeError:
        logger.warning("Service manager unavailable while looking up %s", unit, exc_info=True)
        return False
    return returncode != _EXIT_NO_SUCH_UNIT
