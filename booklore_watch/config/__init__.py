"""Configuration module for the library watcher."""

from .settings import (
    Config,
    MonitoringConfig,
    LibraryConfig,
)
from .formats import BookFileType, FormatMapping, FORMAT_MAPPING

__all__ = [
    "Config",
    "MonitoringConfig",
    "LibraryConfig",
    "BookFileType",
    "FormatMapping",
    "FORMAT_MAPPING",
]
