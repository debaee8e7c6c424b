"""Monitoring module for library directories and filesystem events."""

from .registry import WatchPathRegistry, WatchEntry, RegisterStatus, normalize_path
from .drain import EventDrainTracker
from .events import FileEvent, FileEventKind
from .watcher import MonitoringService, LibraryEventHandler, DebounceTracker
from .queue_manager import (
    FileEventQueueManager,
    EventTask,
    ProcessingStatus,
    ProcessingStats,
)
from .registration import (
    MonitoringRegistrationService,
    Library,
    RegistrationResult,
    RegistrationFailure,
)
from .processor import LibraryEventProcessor, FolderAnalysis

__all__ = [
    "WatchPathRegistry",
    "WatchEntry",
    "RegisterStatus",
    "normalize_path",
    "EventDrainTracker",
    "FileEvent",
    "FileEventKind",
    "MonitoringService",
    "LibraryEventHandler",
    "DebounceTracker",
    "FileEventQueueManager",
    "EventTask",
    "ProcessingStatus",
    "ProcessingStats",
    "MonitoringRegistrationService",
    "Library",
    "RegistrationResult",
    "RegistrationFailure",
    "LibraryEventProcessor",
    "FolderAnalysis",
]
