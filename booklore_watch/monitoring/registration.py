"""
Monitoring Registration
=======================

Entry point for everything that changes which directories are watched:
library creation and deletion, root path changes, and one-off folders.
Library trees are walked here and registered directory by directory, so a
walk that fails half way leaves the part it reached registered.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from booklore_watch.monitoring.registry import PathLike, RegisterStatus, normalize_path
from booklore_watch.monitoring.watcher import MonitoringService
from booklore_watch.utils.exceptions import DirectoryWalkError
from booklore_watch.utils.logging_config import Timer, get_logger

logger = get_logger(__name__)


@dataclass
class Library:
    """A library and the root directories it is built from."""

    id: int
    name: str = ""
    paths: List[Path] = field(default_factory=list)
    watch: bool = True


@dataclass
class RegistrationFailure:
    """A directory that could not be registered, and why."""

    path: Path
    error: Exception

    def __str__(self) -> str:
        return f"{self.path}: {self.error}"


@dataclass
class RegistrationResult:
    """Outcome of registering a library tree.

    Attributes:
        library_id: Library the tree belongs to.
        root: Root directory of the walk.
        registered: Directories registered (or already registered).
        failures: Directories that could not be registered, including the
            error that aborted the walk if there was one.
        aborted: True if an I/O error stopped the walk early.
    """

    library_id: int
    root: Path
    registered: List[Path] = field(default_factory=list)
    failures: List[RegistrationFailure] = field(default_factory=list)
    aborted: bool = False

    @property
    def succeeded(self) -> int:
        return len(self.registered)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.aborted


class MonitoringRegistrationService:
    """Registers and unregisters library directory trees.

    All state lives in the MonitoringService passed in; this class only
    walks directories and translates library-level requests into path-level
    ones.
    """

    def __init__(self, monitoring_service: MonitoringService):
        self.monitoring_service = monitoring_service

    def is_path_monitored(self, path: PathLike) -> bool:
        return self.monitoring_service.is_path_monitored(path)

    def is_library_monitored(self, library_id: int) -> bool:
        return self.monitoring_service.is_library_monitored(library_id)

    def unregister_specific_path(self, path: PathLike) -> None:
        """Stop watching one directory, even if it is already gone."""
        if not Path(path).exists():
            logger.debug(f"Path does not exist, attempting to unregister anyway: {path}")
        self.monitoring_service.unregister_path(path)

    def register_specific_path(self, path: PathLike, library_id: int) -> bool:
        """Watch one directory for a library.

        Returns:
            False if the path is missing or not a directory.
        """
        candidate = Path(path)
        if not candidate.exists():
            logger.warning(f"Cannot register path that does not exist: {path}")
            return False
        if not candidate.is_dir():
            logger.warning(f"Cannot register path that is not a directory: {path}")
            return False
        return self.monitoring_service.register_path(candidate, library_id).is_registered

    def register_library(self, library: Library) -> List[RegistrationResult]:
        """Register every root of a library, or drop it if it is not watched."""
        if not library.watch:
            logger.debug(f"Library {library.id} is not watched, unregistering")
            self.unregister_library(library.id)
            return []
        return [self.register_library_paths(library.id, root) for root in library.paths]

    def unregister_library(self, library_id: int) -> None:
        self.monitoring_service.unregister_library(library_id)

    def register_library_paths(self, library_id: int, library_root: PathLike) -> RegistrationResult:
        """Register a library root and every directory below it.

        A missing root, or one that is not a directory, is silently skipped.
        An I/O error while walking is logged and stops the walk; whatever
        was registered before it stays registered.

        Args:
            library_id: Library owning the tree.
            library_root: Root directory of the tree.

        Returns:
            What was registered and what failed.
        """
        root = normalize_path(library_root)
        result = RegistrationResult(library_id=library_id, root=root)
        if not root.exists() or not root.is_dir():
            return result

        logger.debug(f"Registering library paths for libraryId {library_id} at {root}")
        with Timer(logger, f"register library {library_id} at {root}"):
            try:
                self._register(root, library_id, result)
                for path in self._walk_directories(root, library_id):
                    self._register(path, library_id, result)
            except DirectoryWalkError as e:
                result.aborted = True
                result.failures.append(RegistrationFailure(path=Path(e.details.get("path", root)), error=e))
                logger.error(
                    f"Failed to register library paths for libraryId {library_id} at {root}: {e}",
                    extra={"library_id": library_id, "path": root},
                )

        logger.info(
            f"Library {library_id}: {result.succeeded} directories registered under {root}"
            + (f", {result.failed} failed" if result.failed else "")
        )
        return result

    def register_libraries(self, libraries: Optional[Mapping[int, PathLike]]) -> List[RegistrationResult]:
        """Register several library trees independently of each other."""
        if not libraries:
            return []
        return [self.register_library_paths(library_id, root) for library_id, root in libraries.items()]

    def unregister_libraries(self, library_ids: Optional[Iterable[int]]) -> None:
        if not library_ids:
            return
        for library_id in library_ids:
            self.unregister_library(library_id)

    def get_paths_for_libraries(self, library_ids: Optional[Iterable[int]]) -> Set[Path]:
        if not library_ids:
            return set()
        return self.monitoring_service.get_paths_for_libraries(set(library_ids))

    def wait_for_events_drained_by_paths(
        self, paths: Optional[Iterable[PathLike]], timeout_ms: Optional[int] = None
    ) -> bool:
        """Block until no events are pending for the given directories.

        A timeout of None uses the configured drain timeout.

        Returns:
            True if drained, False if ``timeout_ms`` elapsed first.
        """
        return self.monitoring_service.wait_for_events_drained_by_paths(paths, timeout_ms)

    def wait_for_events_drained(
        self, library_ids: Optional[Iterable[int]], timeout_ms: Optional[int] = None
    ) -> bool:
        """Block until no events are pending for the given libraries.

        No libraries means nothing to wait for.
        """
        if not library_ids:
            return True
        return self.monitoring_service.wait_for_events_drained(set(library_ids), timeout_ms)

    def _register(self, path: Path, library_id: int, result: RegistrationResult) -> None:
        status = self.monitoring_service.register_path(path, library_id)
        if status is RegisterStatus.REJECTED:
            # Vanished between listing and registration
            result.failures.append(
                RegistrationFailure(path=path, error=FileNotFoundError(f"Not a directory: {path}"))
            )
        else:
            result.registered.append(path)

    @staticmethod
    def _walk_directories(root: Path, library_id: int):
        """Yield every directory below root, parents before children."""
        def on_error(error: OSError) -> None:
            failed_path = error.filename or root
            raise DirectoryWalkError(
                f"Cannot read directory {failed_path}",
                path=failed_path,
                library_id=library_id,
                cause=error,
            ) from error

        for dirpath, dirnames, _ in os.walk(root, onerror=on_error, followlinks=False):
            current = Path(dirpath)
            for name in sorted(dirnames):
                yield current / name
