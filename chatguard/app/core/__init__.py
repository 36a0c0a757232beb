"""Core utilities for the chatguard application."""

from chatguard.app.core.config import Settings, settings
from chatguard.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
