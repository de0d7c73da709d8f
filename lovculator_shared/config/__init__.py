"""
Configuration module: settings and logging.
"""

from lovculator_shared.config.settings import settings, get_settings
from lovculator_shared.config.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
