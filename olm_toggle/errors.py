"""Project-level exception hierarchy."""


class OlmToggleError(Exception):
    """Base for all olm-toggle exceptions."""


class ControlError(OlmToggleError):
    """Start/stop request was rejected or the control channel is unavailable."""


class ProbeError(OlmToggleError):
    """Status probe subprocess could not be spawned or read."""


class ConfigError(OlmToggleError):
    """Config file is unreadable or invalid."""
