"""Core configuration, logging and error types."""

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.core.logging import configure_logging

__all__ = [
    "Settings",
    "configure_logging",
    "get_settings",
]
