"""
Filesystem Watcher
==================

Turns watchdog notifications into counted, debounced FileEvents for the
library that owns the changed directory, and keeps the set of live OS
watches in line with the registry.

Watch layout: a recursive watchdog watch is placed on every registered
directory that has no registered, watched ancestor. Whether an individual
directory is monitored is decided by the registry, not by the OS watch: an
event is only accepted when its parent directory is registered.
"""

import threading
import time
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from booklore_watch.config.settings import MonitoringConfig
from booklore_watch.monitoring.drain import EventDrainTracker
from booklore_watch.monitoring.events import FileEvent, FileEventKind
from booklore_watch.monitoring.registry import (
    PathLike,
    RegisterStatus,
    WatchPathRegistry,
    normalize_path,
)
from booklore_watch.utils.exceptions import WatchRegistrationError
from booklore_watch.utils.logging_config import get_logger

logger = get_logger(__name__)

# Placeholder for a watch that is being scheduled
_PENDING_WATCH = object()


class DebounceTracker:
    """Drops repeated events for the same path inside a time window."""

    def __init__(self, debounce_seconds: float = 0.5):
        self.debounce_seconds = debounce_seconds
        self._last_seen: Dict[Path, float] = {}
        self._lock = threading.Lock()

    def should_process(self, path: Path) -> bool:
        """Check if enough time has passed since the last event for path."""
        now = time.monotonic()
        with self._lock:
            last = self._last_seen.get(path)
            if last is not None and now - last < self.debounce_seconds:
                return False
            self._last_seen[path] = now
            if len(self._last_seen) > 10000:
                cutoff = now - self.debounce_seconds
                self._last_seen = {p: t for p, t in self._last_seen.items() if t >= cutoff}
            return True

    def clear(self, path: Path) -> None:
        with self._lock:
            self._last_seen.pop(path, None)

    def clear_all(self) -> None:
        with self._lock:
            self._last_seen.clear()


class LibraryEventHandler(FileSystemEventHandler):
    """Filters, debounces and counts watchdog events.

    Every accepted event increments the pending counter of its watched
    directory before it is dispatched or parked on a debounce timer. The
    counter is released by whoever finishes the event: the queue's
    settlement callback, or this handler when a debounced event is
    cancelled or cannot be dispatched.
    """

    def __init__(
        self,
        registry: WatchPathRegistry,
        tracker: EventDrainTracker,
        sink: Callable[[FileEvent], None],
        config: Optional[MonitoringConfig] = None,
        on_directory_created: Optional[Callable[[Path, int], None]] = None,
        on_directory_deleted: Optional[Callable[[Path], None]] = None,
    ):
        """Initialize the event handler.

        Args:
            registry: Registry deciding which directories are monitored.
            tracker: Drain tracker receiving pending event counts.
            sink: Receives events ready for processing.
            config: Monitoring configuration.
            on_directory_created: Called with (path, library_id) for a new
                directory inside a monitored one.
            on_directory_deleted: Called with the path of a deleted
                directory.
        """
        super().__init__()
        self.registry = registry
        self.tracker = tracker
        self.sink = sink
        self.config = config or MonitoringConfig()
        self.on_directory_created = on_directory_created
        self.on_directory_deleted = on_directory_deleted
        self.debouncer = DebounceTracker(self.config.debounce_ms / 1000.0)

        self._pending_deletes: Dict[Path, Tuple[threading.Timer, FileEvent]] = {}
        self._pending_folders: Dict[Path, Tuple[threading.Timer, FileEvent]] = {}
        self._lock = threading.Lock()

    def _should_ignore(self, path: Path) -> bool:
        return any(fnmatch(path.name, pattern) for pattern in self.config.ignore_patterns)

    def _owner(self, path: Path) -> Optional[Tuple[Path, int]]:
        """Return (watched directory, library id) for a changed path."""
        watched = path.parent
        library_id = self.registry.library_for(watched)
        if library_id is None:
            return None
        return watched, library_id

    def _submit(self, event: FileEvent) -> None:
        try:
            self.sink(event)
        except Exception as e:
            logger.error(f"Failed to dispatch {event.kind.name} for {event.file_path}: {e}")
            self._release(event)

    def _release(self, event: FileEvent) -> None:
        self.tracker.event_processed(event.watched_path, event.generation)

    def _start_timer(self, delay_ms: int, callback: Callable, event: FileEvent) -> threading.Timer:
        timer = threading.Timer(delay_ms / 1000.0, callback, args=(event,))
        timer.daemon = True
        timer.name = f"Debounce-{event.event_id}"
        return timer

    # -- watchdog callbacks --------------------------------------------------

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_create(normalize_path(event.src_path), event.is_directory)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle_delete(normalize_path(event.src_path), event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle_delete(normalize_path(event.src_path), event.is_directory)
        self._handle_create(normalize_path(event.dest_path), event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = normalize_path(event.src_path)
        if self._should_ignore(path):
            return
        owner = self._owner(path)
        if owner is None:
            return
        if not self.debouncer.should_process(path):
            logger.debug(f"[DEBOUNCE] Modify ignored for '{path.name}'")
            return

        watched, library_id = owner
        generation = self.tracker.event_received(watched)
        self._submit(FileEvent(FileEventKind.MODIFY, library_id, watched, path, generation=generation))

    # -- create / delete -----------------------------------------------------

    def _handle_create(self, path: Path, is_directory: bool) -> None:
        if self._should_ignore(path):
            logger.debug(f"[SKIP] Ignored by pattern: '{path.name}'")
            return
        owner = self._owner(path)
        if owner is None:
            return
        watched, library_id = owner

        if is_directory and self.on_directory_created is not None:
            try:
                self.on_directory_created(path, library_id)
            except Exception as e:
                logger.error(f"Failed to register new directory {path}: {e}")

        with self._lock:
            pending_delete = self._pending_deletes.pop(path, None)
        if pending_delete is not None:
            timer, delete_event = pending_delete
            timer.cancel()
            self._release(delete_event)
            logger.debug(f"[DEBOUNCE] CREATE ignored because pending DELETE exists for '{path}'")
            return

        if is_directory:
            self._schedule_folder_create(path, watched, library_id)
            return

        with self._lock:
            inside_pending_folder = any(folder in path.parents for folder in self._pending_folders)
        if inside_pending_folder:
            logger.debug(f"[DEBOUNCE] File '{path.name}' folded into pending folder")
            return

        self.debouncer.clear(path)
        generation = self.tracker.event_received(watched)
        self._submit(FileEvent(FileEventKind.CREATE, library_id, watched, path, generation=generation))

    def _handle_delete(self, path: Path, is_directory: bool) -> None:
        if is_directory and self.registry.is_path_monitored(path):
            if self.on_directory_deleted is not None:
                try:
                    self.on_directory_deleted(path)
                except Exception as e:
                    logger.error(f"Failed to unregister deleted directory {path}: {e}")
            self._cancel_folders_under(path)

        if self._should_ignore(path):
            return
        owner = self._owner(path)
        if owner is None:
            return
        watched, library_id = owner

        self.debouncer.clear(path)
        generation = self.tracker.event_received(watched)
        event = FileEvent(
            FileEventKind.DELETE, library_id, watched, path,
            is_directory=is_directory, generation=generation,
        )
        timer = self._start_timer(self.config.debounce_ms, self._release_delete, event)
        with self._lock:
            replaced = self._pending_deletes.pop(path, None)
            self._pending_deletes[path] = (timer, event)
        if replaced is not None:
            replaced[0].cancel()
            self._release(replaced[1])
        timer.start()

    def _schedule_folder_create(self, path: Path, watched: Path, library_id: int) -> None:
        logger.debug(
            f"[DEBOUNCE] Scheduling folder create for '{path}' "
            f"with {self.config.folder_create_debounce_ms}ms delay"
        )
        generation = self.tracker.event_received(watched)
        event = FileEvent(
            FileEventKind.CREATE, library_id, watched, path,
            is_directory=True, is_debounced_folder=True, generation=generation,
        )
        timer = self._start_timer(self.config.folder_create_debounce_ms, self._release_folder, event)
        with self._lock:
            replaced = self._pending_folders.pop(path, None)
            self._pending_folders[path] = (timer, event)
        if replaced is not None:
            replaced[0].cancel()
            self._release(replaced[1])
        timer.start()

    def _release_delete(self, event: FileEvent) -> None:
        with self._lock:
            current = self._pending_deletes.get(event.file_path)
            if current is None or current[1] is not event:
                return
            del self._pending_deletes[event.file_path]
        self._submit(event)

    def _release_folder(self, event: FileEvent) -> None:
        with self._lock:
            current = self._pending_folders.get(event.file_path)
            if current is None or current[1] is not event:
                return
            del self._pending_folders[event.file_path]
        self._submit(event)

    def _cancel_folders_under(self, path: Path) -> None:
        with self._lock:
            doomed = [p for p in self._pending_folders if p == path or path in p.parents]
            cancelled = [self._pending_folders.pop(p) for p in doomed]
        for timer, event in cancelled:
            timer.cancel()
            self._release(event)

    def pending_debounced(self) -> int:
        """Number of events parked on debounce timers."""
        with self._lock:
            return len(self._pending_deletes) + len(self._pending_folders)

    def shutdown(self) -> None:
        """Cancel every parked event and release its pending count."""
        with self._lock:
            parked = list(self._pending_deletes.values()) + list(self._pending_folders.values())
            self._pending_deletes.clear()
            self._pending_folders.clear()
        for timer, event in parked:
            timer.cancel()
            self._release(event)
        self.debouncer.clear_all()


class MonitoringService:
    """Owns the registry, the drain tracker and the watchdog observer.

    Registrations are accepted whether or not the observer is running; OS
    watches are placed on start() and kept in line with the registry while
    running.

    The observer dispatches events while holding its own lock, and the
    handler calls back into this service for new and deleted directories.
    Observer methods are therefore never called with ``_watch_lock`` held.
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        registry: Optional[WatchPathRegistry] = None,
        tracker: Optional[EventDrainTracker] = None,
        event_sink: Optional[Callable[[FileEvent], None]] = None,
        observer_factory: Callable[[], object] = Observer,
    ):
        """Initialize the monitoring service.

        Args:
            config: Monitoring configuration.
            registry: Registry to use; a new one is created if omitted.
            tracker: Drain tracker to use; a new one is created if omitted.
            event_sink: Receives accepted events, typically the event
                queue's ``put``.
            observer_factory: Builds the watchdog observer on start().
        """
        self.config = config or MonitoringConfig()
        self.registry = registry if registry is not None else WatchPathRegistry()
        self.tracker = tracker if tracker is not None else EventDrainTracker()
        self.event_sink = event_sink
        self.observer_factory = observer_factory
        self.directory_registrar: Optional[Callable[[int, Path], object]] = None

        self.handler = LibraryEventHandler(
            self.registry,
            self.tracker,
            self._dispatch,
            self.config,
            on_directory_created=self._directory_created,
            on_directory_deleted=self.unregister_subtree,
        )

        self.observer = None
        self._watches: Dict[Path, object] = {}
        self._watch_lock = threading.RLock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the observer and watch every registered directory."""
        with self._watch_lock:
            if self._running:
                logger.warning("Monitoring service already running")
                return
            self.observer = self.observer_factory()
            self.observer.start()
            self._running = True

        paths = sorted((e.path for e in self.registry.entries()), key=lambda p: len(p.parts))
        for path in paths:
            self._cover(path)
        logger.info(
            f"Monitoring started: {len(self.registry)} directories, "
            f"{len(self._watches)} OS watches"
        )

    def stop(self) -> None:
        """Stop the observer and release parked events."""
        with self._watch_lock:
            if not self._running:
                return
            self._running = False
            observer = self.observer
            self.observer = None
            self._watches.clear()

        observer.unschedule_all()
        observer.stop()
        observer.join(timeout=5.0)
        self.handler.shutdown()
        for entry in self.registry.entries():
            self.registry.set_active(entry.path, False)
        logger.info("Monitoring stopped")

    # -- registration --------------------------------------------------------

    def register_path(self, path: PathLike, library_id: int) -> RegisterStatus:
        """Register one directory for a library and watch it if running."""
        status = self.registry.register_path(path, library_id)
        if status is RegisterStatus.ADDED and self._running:
            self._cover(normalize_path(path))
        return status

    def unregister_path(self, path: PathLike) -> bool:
        """Unregister one directory and discard its pending events.

        Returns:
            True if the path was registered.
        """
        key = normalize_path(path)
        entry = self.registry.unregister_path(key)
        self._after_removal([key])
        return entry is not None

    def unregister_library(self, library_id: int) -> int:
        """Unregister every directory of a library.

        Returns:
            Number of directories removed.
        """
        removed = self.registry.unregister_library(library_id)
        self._after_removal([e.path for e in removed])
        if removed:
            logger.info(f"Stopped monitoring library {library_id} ({len(removed)} directories)")
        return len(removed)

    def unregister_subtree(self, path: PathLike) -> int:
        """Unregister a directory and every registered directory below it."""
        doomed = self.registry.paths_under(path)
        for p in doomed:
            self.registry.unregister_path(p)
        self._after_removal(doomed)
        if doomed:
            logger.debug(f"Unregistered {len(doomed)} directories under {path}")
        return len(doomed)

    def is_path_monitored(self, path: PathLike) -> bool:
        return self.registry.is_path_monitored(path)

    def is_library_monitored(self, library_id: int) -> bool:
        return self.registry.is_library_monitored(library_id)

    def get_paths_for_libraries(self, library_ids: Optional[Iterable[int]]) -> Set[Path]:
        return self.registry.get_paths_for_libraries(library_ids)

    # -- drain ---------------------------------------------------------------

    def wait_for_events_drained_by_paths(
        self, paths: Optional[Iterable[PathLike]], timeout_ms: Optional[int] = None
    ) -> bool:
        """Wait until nothing is pending for the given directories.

        A timeout of None uses ``event_drain_timeout_ms`` from the config.
        """
        return self.tracker.wait_for_drained(paths, self._drain_timeout(timeout_ms))

    def wait_for_events_drained(
        self, library_ids: Optional[Iterable[int]], timeout_ms: Optional[int] = None
    ) -> bool:
        """Wait until nothing is pending for the directories of libraries.

        The libraries' directories are re-resolved on every recheck. A
        timeout of None uses ``event_drain_timeout_ms`` from the config.
        """
        if not library_ids:
            return True
        wanted = set(library_ids)
        return self.tracker.wait_until_drained(
            lambda: self.registry.get_paths_for_libraries(wanted),
            self._drain_timeout(timeout_ms),
        )

    def _drain_timeout(self, timeout_ms: Optional[int]) -> int:
        if timeout_ms is None:
            return self.config.event_drain_timeout_ms
        return timeout_ms

    def event_settled(self, event: FileEvent) -> None:
        """Release the pending count of a finished event."""
        self.tracker.event_processed(event.watched_path, event.generation)

    def status(self) -> Dict[str, object]:
        entries = self.registry.entries()
        return {
            "running": self._running,
            "directories": len(entries),
            "active_directories": sum(1 for e in entries if e.active),
            "os_watches": len(self._watches),
            "libraries": sorted(self.registry.library_ids()),
            "pending_events": self.tracker.pending_count(),
            "debounced_events": self.handler.pending_debounced(),
        }

    # -- internals -----------------------------------------------------------

    def _dispatch(self, event: FileEvent) -> None:
        if self.event_sink is None:
            logger.debug(f"No event sink, settling {event.kind.name} for {event.file_path}")
            self.event_settled(event)
            return
        self.event_sink(event)

    def _directory_created(self, path: Path, library_id: int) -> None:
        if self.directory_registrar is not None:
            self.directory_registrar(library_id, path)
        else:
            self.register_path(path, library_id)

    def _covering_watch(self, path: Path) -> Optional[Path]:
        if path in self._watches:
            return path
        for ancestor in path.parents:
            if ancestor in self._watches:
                return ancestor
        return None

    def _cover(self, path: Path) -> None:
        """Make sure a registered directory is under a live watch."""
        with self._watch_lock:
            if not self._running or not self.registry.is_path_monitored(path):
                return
            if self._covering_watch(path) is not None:
                self.registry.set_active(path, True)
                return
            observer = self.observer
            self._watches[path] = _PENDING_WATCH

        library_id = self.registry.library_for(path)
        try:
            watch = observer.schedule(self.handler, str(path), recursive=True)
        except OSError as e:
            with self._watch_lock:
                if self._watches.get(path) is _PENDING_WATCH:
                    del self._watches[path]
            error = WatchRegistrationError(
                f"Could not watch {path}", path=path, library_id=library_id, cause=e
            )
            logger.error(str(error), extra={"path": path, "library_id": library_id})
            self.registry.set_active(path, False)
            return

        with self._watch_lock:
            kept = self._running and self._watches.get(path) is _PENDING_WATCH
            nested = []
            if kept:
                self._watches[path] = watch
                nested = [self._watches.pop(p) for p in list(self._watches) if path in p.parents]

        if not kept:
            # Stopped or unregistered while scheduling
            self._unschedule(observer, watch)
            return
        self.registry.set_active(path, True)
        for nested_watch in nested:
            self._unschedule(observer, nested_watch)

    @staticmethod
    def _unschedule(observer, watch) -> None:
        if watch is _PENDING_WATCH:
            return
        try:
            observer.unschedule(watch)
        except (KeyError, OSError) as e:
            logger.debug(f"Ignoring error while removing watch: {e}")

    def _after_removal(self, paths: Iterable[Path]) -> None:
        removed = [normalize_path(p) for p in paths]
        if not removed:
            return
        self.tracker.discard(removed)

        with self._watch_lock:
            if not self._running:
                return
            observer = self.observer
            dropped = []
            orphaned: Set[Path] = set()
            for path in removed:
                if path in self._watches:
                    dropped.append(self._watches.pop(path))
                    orphaned |= self.registry.paths_under(path)

        for watch in dropped:
            self._unschedule(observer, watch)
        for path in sorted(orphaned, key=lambda p: len(p.parts)):
            self._cover(path)
