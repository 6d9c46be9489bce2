"""Quick-settings toggle for a single systemd unit (OLM tunnel by default)."""

__version__ = "0.1.0"
