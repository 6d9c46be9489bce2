"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from olm_toggle.config import ToggleConfig
from olm_toggle.controller import reset_shared_channel


@pytest.fixture
def config() -> ToggleConfig:
    """Config with a poll interval long enough that no tick fires during a test."""
    return ToggleConfig(poll_interval_seconds=60)


@pytest.fixture
def fast_config() -> ToggleConfig:
    """Config that polls every 10ms."""
    return ToggleConfig(poll_interval_seconds=0.01)


@pytest.fixture(autouse=True)
def _fresh_shared_channel() -> Iterator[None]:
    reset_shared_channel()
    yield
    reset_shared_channel()
