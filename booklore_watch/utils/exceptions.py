"""
Custom Exceptions
=================

Exception classes for the library watcher. Every exception carries an
error code so callers and log records can tell failures apart without
parsing messages.
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Union


class ErrorCode(Enum):
    """Error codes for programmatic error handling."""

    # General errors (1000-1099)
    UNKNOWN_ERROR = 1000
    CONFIGURATION_ERROR = 1001

    # Registration errors (1100-1199)
    WATCH_SCHEDULE_FAILED = 1100
    DIRECTORY_WALK_FAILED = 1101

    # Event errors (1200-1299)
    EVENT_PROCESSING_FAILED = 1200


class BookLoreWatchError(Exception):
    """Base exception for all library watcher errors.

    Attributes:
        message: Human-readable error message.
        error_code: Programmatic error code.
        details: Additional error context.
        cause: Original exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = f"[{self.error_code.name}] {self.message}"
        if self.details:
            result += f" | Details: {self.details}"
        if self.cause:
            result += f" | Caused by: {type(self.cause).__name__}: {self.cause}"
        return result

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(BookLoreWatchError):
    """Raised when the configuration file describes something invalid.

    Examples:
        - A library entry without an id
        - Two libraries sharing an id
        - A value of the wrong type
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(
            message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
            **kwargs
        )


class WatchRegistrationError(BookLoreWatchError):
    """Raised when an OS-level watch cannot be placed on a directory.

    The registry entry survives this error; only the live watch is missing.
    """

    def __init__(
        self,
        message: str,
        path: Optional[Union[str, Path]] = None,
        library_id: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.WATCH_SCHEDULE_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if path is not None:
            details["path"] = str(path)
        if library_id is not None:
            details["library_id"] = library_id
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )


class DirectoryWalkError(WatchRegistrationError):
    """Raised when walking a library tree hits an I/O error."""

    def __init__(
        self,
        message: str,
        path: Optional[Union[str, Path]] = None,
        library_id: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message,
            path=path,
            library_id=library_id,
            error_code=ErrorCode.DIRECTORY_WALK_FAILED,
            **kwargs
        )


class EventProcessingError(BookLoreWatchError):
    """Raised when an import or removal callback fails for an event.

    The queue treats it as a failed attempt and retries the event. Events
    for unknown libraries or paths outside the library roots are skipped,
    not raised.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Union[str, Path]] = None,
        library_id: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.EVENT_PROCESSING_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if file_path is not None:
            details["file_path"] = str(file_path)
        if library_id is not None:
            details["library_id"] = library_id
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )
