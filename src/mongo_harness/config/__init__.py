"""Configuration package for the harness."""

from ..errors import ConfigurationError
from .logging import configure_logging, get_logger, sanitize_log_data
from .settings import HarnessSettings, LoggingConfig, load_settings

__all__ = [
    "ConfigurationError",
    "HarnessSettings",
    "LoggingConfig",
    "configure_logging",
    "get_logger",
    "load_settings",
    "sanitize_log_data",
]
