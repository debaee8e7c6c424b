"""Utilities module for the library watcher."""

from .logging_config import setup_logging, get_logger, LoggingConfig, Timer
from .exceptions import (
    ErrorCode,
    BookLoreWatchError,
    ConfigurationError,
    WatchRegistrationError,
    DirectoryWalkError,
    EventProcessingError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "Timer",
    "ErrorCode",
    "BookLoreWatchError",
    "ConfigurationError",
    "WatchRegistrationError",
    "DirectoryWalkError",
    "EventProcessingError",
]
