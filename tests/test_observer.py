"""Tests for the service state observer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from olm_toggle.config import ToggleConfig
from olm_toggle.controller import ServiceAction, ServiceController
from olm_toggle.errors import ControlError, ProbeError
from olm_toggle.observer import ServiceStateObserver
from olm_toggle.scheduler import RecurringScheduler


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def _controller() -> AsyncMock:
    return AsyncMock(spec=ServiceController)


def _proc(returncode: int) -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(b"", b""))
    return proc


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    async def test_starts_inactive(self, config: ToggleConfig) -> None:
        obs = ServiceStateObserver(config, _controller(), probe=AsyncMock(return_value=True))
        assert obs.active is False
        obs.destroy()

    async def test_immediate_probe_exit_zero_sets_active(self, config: ToggleConfig) -> None:
        with patch(
            "olm_toggle.probe.asyncio.create_subprocess_exec",
            AsyncMock(return_value=_proc(0)),
        ):
            obs = ServiceStateObserver(config, _controller())
            await obs.wait_pending()
        assert obs.active is True
        obs.destroy()

    async def test_immediate_probe_exit_three_leaves_inactive(self, config: ToggleConfig) -> None:
        with patch(
            "olm_toggle.probe.asyncio.create_subprocess_exec",
            AsyncMock(return_value=_proc(3)),
        ):
            obs = ServiceStateObserver(config, _controller())
            await obs.wait_pending()
        assert obs.active is False
        obs.destroy()

    async def test_begins_polling(self, config: ToggleConfig) -> None:
        sched = RecurringScheduler()
        obs = ServiceStateObserver(
            config, _controller(), probe=AsyncMock(return_value=False), scheduler=sched
        )
        assert obs.is_polling
        assert len(sched.handles) == 1
        (handle,) = sched.handles
        assert handle.interval == 60
        obs.destroy()


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class TestPolling:
    async def test_start_polling_is_idempotent(self, config: ToggleConfig) -> None:
        sched = RecurringScheduler()
        obs = ServiceStateObserver(
            config, _controller(), probe=AsyncMock(return_value=False), scheduler=sched
        )
        obs.start_polling()
        obs.start_polling()
        assert len(sched.handles) == 1
        obs.destroy()

    async def test_stop_polling_is_idempotent(self, config: ToggleConfig) -> None:
        sched = RecurringScheduler()
        obs = ServiceStateObserver(
            config, _controller(), probe=AsyncMock(return_value=False), scheduler=sched
        )
        obs.stop_polling()
        obs.stop_polling()
        assert not obs.is_polling
        assert sched.handles == frozenset()

    async def test_ticks_update_active(self, fast_config: ToggleConfig) -> None:
        calls: list[int] = []

        async def _probe() -> bool:
            calls.append(1)
            return len(calls) >= 3

        obs = ServiceStateObserver(fast_config, _controller(), probe=_probe)
        await _wait_for(lambda: obs.active)
        obs.destroy()
        await obs.wait_pending()

    async def test_restart_after_stop(self, config: ToggleConfig) -> None:
        sched = RecurringScheduler()
        obs = ServiceStateObserver(
            config, _controller(), probe=AsyncMock(return_value=False), scheduler=sched
        )
        obs.stop_polling()
        obs.start_polling()
        assert obs.is_polling
        assert len(sched.handles) == 1
        obs.destroy()


# ---------------------------------------------------------------------------
# Probe failures
# ---------------------------------------------------------------------------


class TestProbeFailure:
    @pytest.mark.parametrize("error", [ProbeError("spawn failed"), RuntimeError("weird")])
    async def test_failure_resets_active_to_false(
        self, config: ToggleConfig, error: Exception
    ) -> None:
        probe = AsyncMock(side_effect=[True, error])
        obs = ServiceStateObserver(config, _controller(), probe=probe)
        await obs.wait_pending()
        assert obs.active is True

        assert await obs.refresh() is False
        assert obs.active is False
        obs.destroy()

    async def test_probe_never_raises(self, config: ToggleConfig) -> None:
        probe = AsyncMock(side_effect=[False, ProbeError("nope")])
        obs = ServiceStateObserver(config, _controller(), probe=probe)
        await obs.wait_pending()
        assert await obs.probe() is False
        obs.destroy()

    async def test_failure_is_logged(
        self, config: ToggleConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        probe = AsyncMock(side_effect=ProbeError("systemctl: not found"))
        with caplog.at_level(logging.WARNING):
            obs = ServiceStateObserver(config, _controller(), probe=probe)
            await obs.wait_pending()
        assert any("systemctl: not found" in r.getMessage() for r in caplog.records)
        obs.destroy()


# ---------------------------------------------------------------------------
# User toggles
# ---------------------------------------------------------------------------


class TestUserToggle:
    async def test_toggle_on_submits_start(self, config: ToggleConfig) -> None:
        ctl = _controller()
        obs = ServiceStateObserver(config, ctl, probe=AsyncMock(return_value=False))
        obs.on_user_toggle(True)
        await obs.wait_pending()
        ctl.submit.assert_awaited_once_with(ServiceAction.START)
        obs.destroy()

    async def test_toggle_off_submits_stop(self, config: ToggleConfig) -> None:
        ctl = _controller()
        obs = ServiceStateObserver(config, ctl, probe=AsyncMock(return_value=True))
        obs.on_user_toggle(False)
        await obs.wait_pending()
        ctl.submit.assert_awaited_once_with(ServiceAction.STOP)
        obs.destroy()

    async def test_toggle_does_not_flip_active(self, config: ToggleConfig) -> None:
        probe = AsyncMock(return_value=False)
        obs = ServiceStateObserver(config, _controller(), probe=probe)
        await obs.wait_pending()
        obs.on_user_toggle(True)
        assert obs.active is False
        await obs.wait_pending()
        assert obs.active is False

        probe.return_value = True
        await obs.refresh()
        assert obs.active is True
        obs.destroy()

    async def test_toggle_returns_before_control_call_settles(
        self, config: ToggleConfig
    ) -> None:
        release = asyncio.Event()
        ctl = _controller()

        async def _slow_submit(_action: ServiceAction) -> None:
            await release.wait()

        ctl.submit.side_effect = _slow_submit
        obs = ServiceStateObserver(config, ctl, probe=AsyncMock(return_value=False))
        obs.on_user_toggle(True)
        await asyncio.sleep(0)
        ctl.submit.assert_awaited_once()
        release.set()
        await obs.wait_pending()
        obs.destroy()

    async def test_toggle_on_restarts_polling(self, config: ToggleConfig) -> None:
        obs = ServiceStateObserver(config, _controller(), probe=AsyncMock(return_value=False))
        obs.stop_polling()
        obs.on_user_toggle(True)
        assert obs.is_polling
        obs.destroy()
        await obs.wait_pending()

    async def test_toggle_off_does_not_start_polling(self, config: ToggleConfig) -> None:
        obs = ServiceStateObserver(config, _controller(), probe=AsyncMock(return_value=True))
        obs.stop_polling()
        obs.on_user_toggle(False)
        assert not obs.is_polling
        await obs.wait_pending()

    async def test_control_failure_is_isolated(
        self, config: ToggleConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        ctl = _controller()
        ctl.submit.side_effect = ControlError("access denied")
        obs = ServiceStateObserver(config, ctl, probe=AsyncMock(return_value=True))
        await obs.wait_pending()

        with caplog.at_level(logging.DEBUG):
            obs.on_user_toggle(False)
            await obs.wait_pending()

        assert obs.active is True
        assert not any("crashed" in r.getMessage() for r in caplog.records)
        obs.destroy()

    async def test_start_then_next_tick_reports_real_state(
        self, fast_config: ToggleConfig
    ) -> None:
        channel = MagicMock()
        ctl = ServiceController(fast_config, channel_factory=lambda _bus: channel)
        state = {"running": False}

        def _start(_unit: str, _mode: str) -> str:
            state["running"] = True
            return "/org/freedesktop/systemd1/job/1"

        channel.StartUnit.side_effect = _start

        async def _probe() -> bool:
            return state["running"]

        obs = ServiceStateObserver(fast_config, ctl, probe=_probe)
        await obs.wait_pending()
        assert obs.active is False

        obs.on_user_toggle(True)
        await _wait_for(lambda: obs.active)
        channel.StartUnit.assert_called_once_with("olm.service", "replace")
        obs.destroy()
        await obs.wait_pending()


# ---------------------------------------------------------------------------
# Presentation binding and teardown
# ---------------------------------------------------------------------------


class TestListeners:
    async def test_listener_gets_every_probe_result(self, config: ToggleConfig) -> None:
        probe = AsyncMock(return_value=False)
        obs = ServiceStateObserver(config, _controller(), probe=probe)
        seen: list[bool] = []
        obs.subscribe(seen.append)
        await obs.wait_pending()
        await obs.refresh()
        assert seen == [False, False]
        obs.destroy()

    async def test_unsubscribe(self, config: ToggleConfig) -> None:
        obs = ServiceStateObserver(config, _controller(), probe=AsyncMock(return_value=True))
        seen: list[bool] = []
        unsubscribe = obs.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        await obs.wait_pending()
        assert seen == []
        obs.destroy()

    async def test_failing_listener_does_not_break_probe(self, config: ToggleConfig) -> None:
        obs = ServiceStateObserver(config, _controller(), probe=AsyncMock(return_value=True))
        obs.subscribe(MagicMock(side_effect=RuntimeError("render failed")))
        await obs.wait_pending()
        assert obs.active is True
        obs.destroy()


class TestDestroy:
    async def test_destroy_stops_polling(self, fast_config: ToggleConfig) -> None:
        sched = RecurringScheduler()
        probe = AsyncMock(return_value=False)
        obs = ServiceStateObserver(fast_config, _controller(), probe=probe, scheduler=sched)
        obs.destroy()
        await obs.wait_pending()
        calls = probe.await_count
        await asyncio.sleep(0.05)
        assert probe.await_count == calls
        assert not obs.is_polling
        assert sched.handles == frozenset()

    async def test_in_flight_probe_still_writes_after_destroy(
        self, fast_config: ToggleConfig
    ) -> None:
        release = asyncio.Event()

        async def _slow_probe() -> bool:
            await release.wait()
            return True

        obs = ServiceStateObserver(fast_config, _controller(), probe=_slow_probe)
        await asyncio.sleep(0)
        obs.destroy()
        release.set()
        await obs.wait_pending()
        assert obs.active is True
        assert not obs.is_polling

    async def test_destroy_drops_listeners(self, config: ToggleConfig) -> None:
        release = asyncio.Event()

        async def _slow_probe() -> bool:
            await release.wait()
            return True

        obs = ServiceStateObserver(config, _controller(), probe=_slow_probe)
        seen: list[bool] = []
        obs.subscribe(seen.append)
        obs.destroy()
        release.set()
        await obs.wait_pending()
        assert seen == []

    async def test_destroy_twice(self, config: ToggleConfig) -> None:
        obs = ServiceStateObserver(config, _controller(), probe=AsyncMock(return_value=False))
        obs.destroy()
        obs.destroy()
        await obs.wait_pending()
