"""Application configuration."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from olm_toggle.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


class SystemdBusConfig(BaseModel):
    """Addressing of the systemd manager on the system bus."""

    bus_name: str = "org.freedesktop.systemd1"
    object_path: str = "/org/freedesktop/systemd1"
    interface: str = "org.freedesktop.systemd1.Manager"
    mode: str = "replace"


class ToggleConfig(BaseModel):
    """Top-level configuration loaded from config.json."""

    log_level: str = "INFO"
    log_file: Path | None = None
    unit: str = "olm.service"
    poll_interval_seconds: float = 5.0
    systemctl: str = "systemctl"
    title: str = "OLM Tunnel"
    icon_name: str = "network-vpn-symbolic"
    dbus: SystemdBusConfig = Field(default_factory=SystemdBusConfig)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        name = value.upper()
        if name not in logging.getLevelNamesMapping():
            msg = f"unknown log level {value!r}"
            raise ValueError(msg)
        return name

    @field_validator("poll_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            msg = "poll_interval_seconds must be positive"
            raise ValueError(msg)
        return value


def default_config_path() -> Path:
    """``$XDG_CONFIG_HOME/olm-toggle/config.json`` (``~/.config`` fallback)."""
    base = os.environ.get("XDG_CONFIG_HOME", "").strip()
    root = Path(base) if base else Path.home() / ".config"
    return root / "olm-toggle" / CONFIG_FILENAME


def load_config(path: Path | None = None) -> ToggleConfig:
    """Load the config file, falling back to Pydantic defaults when it is missing.

    The file is only read, never created or rewritten. Unknown keys are ignored
    so that older config files keep working after upgrades.
    """
    config_path = path if path is not None else default_config_path()
    if not config_path.is_file():
        logger.debug("No config at %s, using defaults", config_path)
        return ToggleConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        msg = f"Failed to read config at {config_path}: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(data, dict):
        msg = f"Config at {config_path} must be a JSON object"
        raise ConfigError(msg)

    try:
        config = ToggleConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid config at {config_path}: {exc}"
        raise ConfigError(msg) from exc

    logger.info("Loaded config from %s (unit=%s)", config_path, config.unit)
    return config
