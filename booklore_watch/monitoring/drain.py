"""
Event Drain Tracker
===================

Counts filesystem events that have been received but not yet processed,
per watched directory, and lets callers block until those counts reach
zero for a set of directories.

A drain is a point-in-time condition: the wait returns True as soon as the
aggregate count for the requested paths is observed at zero. Events that
arrive after that moment are not covered.
"""

import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Set

from booklore_watch.monitoring.registry import PathLike, normalize_path
from booklore_watch.utils.logging_config import get_logger

logger = get_logger(__name__)


class EventDrainTracker:
    """Per-path pending event counters with a blocking drain wait.

    Every decrement and every discard wakes all waiters; each waiter then
    rechecks its own predicate, so waiters on overlapping path sets do not
    steal wakeups from each other.

    Each path carries a generation that is bumped whenever its counter is
    discarded. A completion reported for an older generation belongs to an
    event counted before the path was unregistered and is ignored, so it
    cannot cancel an event counted after re-registration.
    """

    def __init__(self):
        self._pending: Dict[Path, int] = defaultdict(int)
        self._generations: Dict[Path, int] = defaultdict(int)
        self._condition = threading.Condition()

    def event_received(self, path: PathLike) -> int:
        """Count an event that arrived for a watched directory.

        Returns:
            The path's current generation, to be passed back to
            event_processed() when the event is finished.
        """
        key = normalize_path(path)
        with self._condition:
            self._pending[key] += 1
            return self._generations[key]

    def event_processed(self, path: PathLike, generation: Optional[int] = None) -> int:
        """Mark one event for a watched directory as fully processed.

        A decrement on a path with nothing pending, or for a generation
        that has since been discarded, is ignored.

        Args:
            path: Watched directory the event was counted against.
            generation: Value returned by event_received() for the event.
                None applies the completion to the current generation.

        Returns:
            The new pending count for the path.
        """
        key = normalize_path(path)
        with self._condition:
            if generation is not None and generation != self._generations.get(key, 0):
                logger.debug(f"Ignoring completion for {key}: generation {generation} was discarded")
                return self._pending.get(key, 0)
            count = self._pending.get(key, 0)
            if count <= 0:
                logger.debug(f"Ignoring completion for {key}: nothing pending")
                return 0
            if count == 1:
                del self._pending[key]
                remaining = 0
            else:
                self._pending[key] = count - 1
                remaining = count - 1
            self._condition.notify_all()
            return remaining

    def discard(self, paths: Iterable[PathLike]) -> int:
        """Drop the counters of paths that are no longer watched.

        Completions still outstanding for these paths are ignored from now
        on.

        Returns:
            Number of pending events discarded.
        """
        dropped = 0
        with self._condition:
            for path in paths:
                key = normalize_path(path)
                dropped += self._pending.pop(key, 0)
                self._generations[key] += 1
            if dropped:
                self._condition.notify_all()
        if dropped:
            logger.debug(f"Discarded {dropped} pending events of unregistered paths")
        return dropped

    def generation(self, path: PathLike) -> int:
        with self._condition:
            return self._generations.get(normalize_path(path), 0)

    def pending_count(self, paths: Optional[Iterable[PathLike]] = None) -> int:
        """Aggregate pending count over paths, or over everything if None."""
        with self._condition:
            if paths is None:
                return sum(self._pending.values())
            return self._count_locked({normalize_path(p) for p in paths})

    def snapshot(self) -> Dict[Path, int]:
        """Copy of the non-zero counters."""
        with self._condition:
            return {p: c for p, c in self._pending.items() if c > 0}

    def wait_for_drained(self, paths: Optional[Iterable[PathLike]], timeout_ms: int) -> bool:
        """Block until nothing is pending for the given paths.

        Args:
            paths: Watched directories to wait on. Empty means nothing to
                wait for.
            timeout_ms: Wall-clock timeout. Zero or negative checks once.

        Returns:
            True if drained before the timeout, False otherwise.
        """
        keys = {normalize_path(p) for p in paths or ()}
        return self.wait_until_drained(lambda: keys, timeout_ms)

    def wait_until_drained(
        self,
        resolve_paths: Callable[[], Set[Path]],
        timeout_ms: int,
    ) -> bool:
        """Block until nothing is pending for a path set resolved per check.

        ``resolve_paths`` is called under the tracker lock on every recheck,
        so a library whose set of watched paths changes during the wait is
        judged against its current paths. It must not call back into the
        tracker.
        """
        def drained() -> bool:
            return self._count_locked({normalize_path(p) for p in resolve_paths()}) == 0

        with self._condition:
            if drained():
                return True
            if timeout_ms <= 0:
                return False

            deadline = time.monotonic() + timeout_ms / 1000.0
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.debug(f"Drain wait timed out after {timeout_ms} ms")
                    return False
                self._condition.wait(remaining)
                if drained():
                    return True

    def _count_locked(self, keys: Set[Path]) -> int:
        return sum(self._pending.get(k, 0) for k in keys)
