"""Core utilities for ratewarden."""

from ratewarden.core.config import Settings, settings
from ratewarden.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
