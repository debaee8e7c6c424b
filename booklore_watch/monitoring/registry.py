"""
Watch Path Registry
===================

Keeps the set of watched directories and the library that owns each one.
The registry is pure bookkeeping: it never touches watchdog and never
blocks on anything but its own lock.
"""

import os
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from booklore_watch.utils.logging_config import get_logger

logger = get_logger(__name__)

PathLike = Union[str, os.PathLike]


def normalize_path(path: PathLike) -> Path:
    """Return an absolute, lexically normalized path.

    Symlinks are not resolved, so a path that no longer exists on disk
    still normalizes to the same key it was registered under.
    """
    return Path(os.path.normpath(os.path.abspath(os.fspath(path))))


class RegisterStatus(Enum):
    """Outcome of a single path registration."""

    ADDED = "added"
    REASSIGNED = "reassigned"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"

    @property
    def is_registered(self) -> bool:
        return self is not RegisterStatus.REJECTED


@dataclass
class WatchEntry:
    """A watched directory.

    Attributes:
        path: Normalized directory path.
        library_id: Owning library.
        active: True while an OS watch is scheduled for the path.
        registered_at: When the entry was created.
    """

    path: Path
    library_id: int
    active: bool = False
    registered_at: datetime = field(default_factory=datetime.now)


class WatchPathRegistry:
    """Thread-safe map of watched directory -> owning library.

    Each mutation is atomic per path. Bulk operations built on top of the
    registry (tree walks) are not atomic as a whole.
    """

    def __init__(self):
        self._entries: Dict[Path, WatchEntry] = {}
        self._lock = threading.RLock()

    def register_path(self, path: PathLike, library_id: int) -> RegisterStatus:
        """Register a directory for a library.

        Registration is best effort: a missing path or a non-directory is
        logged and rejected without raising. Registering a path that is
        already watched by the same library is a no-op; registering it for
        another library moves ownership to that library.

        Args:
            path: Directory to watch.
            library_id: Library that owns the directory.

        Returns:
            What the call did to the registry.
        """
        key = normalize_path(path)
        if not key.exists():
            logger.warning(f"Cannot register path that does not exist: {key}")
            return RegisterStatus.REJECTED
        if not key.is_dir():
            logger.warning(f"Cannot register path that is not a directory: {key}")
            return RegisterStatus.REJECTED

        with self._lock:
            existing = self._entries.get(key)
            if existing is None:
                self._entries[key] = WatchEntry(path=key, library_id=library_id)
                logger.debug(f"Registered {key} for library {library_id}")
                return RegisterStatus.ADDED
            if existing.library_id == library_id:
                return RegisterStatus.UNCHANGED
            previous = existing.library_id
            existing.library_id = library_id

        logger.info(f"Reassigned {key} from library {previous} to library {library_id}")
        return RegisterStatus.REASSIGNED

    def unregister_path(self, path: PathLike) -> Optional[WatchEntry]:
        """Remove a path whether or not it still exists on disk.

        Returns:
            The removed entry, or None if the path was not registered.
        """
        key = normalize_path(path)
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is not None:
            logger.debug(f"Unregistered {key} (library {entry.library_id})")
        return entry

    def unregister_library(self, library_id: int) -> List[WatchEntry]:
        """Remove every entry owned by a library.

        Returns:
            The removed entries.
        """
        with self._lock:
            removed = [e for e in self._entries.values() if e.library_id == library_id]
            for entry in removed:
                del self._entries[entry.path]
        if removed:
            logger.debug(f"Unregistered {len(removed)} paths of library {library_id}")
        return removed

    def set_active(self, path: PathLike, active: bool) -> bool:
        """Flag whether an OS watch is live for a path.

        Returns:
            False if the path is not registered.
        """
        key = normalize_path(path)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.active = active
            return True

    def get(self, path: PathLike) -> Optional[WatchEntry]:
        """Return a copy of the entry for a path, if registered."""
        key = normalize_path(path)
        with self._lock:
            entry = self._entries.get(key)
            return replace(entry) if entry is not None else None

    def library_for(self, path: PathLike) -> Optional[int]:
        key = normalize_path(path)
        with self._lock:
            entry = self._entries.get(key)
            return entry.library_id if entry is not None else None

    def is_path_monitored(self, path: PathLike) -> bool:
        key = normalize_path(path)
        with self._lock:
            return key in self._entries

    def is_library_monitored(self, library_id: int) -> bool:
        with self._lock:
            return any(e.library_id == library_id for e in self._entries.values())

    def get_paths_for_libraries(self, library_ids: Optional[Iterable[int]]) -> Set[Path]:
        """Return every registered path owned by any of the given libraries.

        An empty or missing id collection yields an empty set, never "all
        paths".
        """
        if not library_ids:
            return set()
        wanted = set(library_ids)
        with self._lock:
            return {p for p, e in self._entries.items() if e.library_id in wanted}

    def paths_under(self, path: PathLike) -> Set[Path]:
        """Return the registered paths at or below a directory."""
        root = normalize_path(path)
        with self._lock:
            return {p for p in self._entries if p == root or root in p.parents}

    def entries(self) -> List[WatchEntry]:
        """Snapshot of all entries, sorted by path."""
        with self._lock:
            snapshot = [replace(e) for e in self._entries.values()]
        return sorted(snapshot, key=lambda e: str(e.path))

    def library_ids(self) -> Set[int]:
        with self._lock:
            return {e.library_id for e in self._entries.values()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
