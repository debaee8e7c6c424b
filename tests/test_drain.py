"""
Unit tests for the event drain tracker.
"""

import random
import threading
import time

from booklore_watch.monitoring.drain import EventDrainTracker


class TestCounters:
    """Tests for the pending counters."""

    def test_received_and_processed(self, tmp_path):
        """Test counts go up and down per path."""
        tracker = EventDrainTracker()

        assert tracker.event_received(tmp_path) == 0
        assert tracker.event_received(tmp_path) == 0
        assert tracker.pending_count([tmp_path]) == 2
        assert tracker.event_processed(tmp_path, 0) == 1
        assert tracker.pending_count([tmp_path]) == 1

    def test_discard_starts_new_generation(self, tmp_path):
        """Test a discarded path hands out a new generation."""
        tracker = EventDrainTracker()
        before = tracker.event_received(tmp_path)

        tracker.discard([tmp_path])

        assert tracker.generation(tmp_path) == before + 1
        assert tracker.event_received(tmp_path) == before + 1

    def test_completion_from_discarded_generation_is_ignored(self, tmp_path):
        """Test an event counted before a discard cannot release a newer one."""
        tracker = EventDrainTracker()
        old = tracker.event_received(tmp_path)
        tracker.discard([tmp_path])
        new = tracker.event_received(tmp_path)

        tracker.event_processed(tmp_path, old)

        assert tracker.pending_count([tmp_path]) == 1
        assert tracker.wait_for_drained([tmp_path], 0) is False
        tracker.event_processed(tmp_path, new)
        assert tracker.wait_for_drained([tmp_path], 0) is True

    def test_processed_without_pending_is_ignored(self, tmp_path):
        """Test a stray completion never drives a count negative."""
        tracker = EventDrainTracker()

        assert tracker.event_processed(tmp_path) == 0
        tracker.event_received(tmp_path)

        assert tracker.pending_count([tmp_path]) == 1

    def test_zero_counts_are_not_kept(self, tmp_path):
        """Test the snapshot only holds paths with pending events."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path / "a")
        tracker.event_received(tmp_path / "b")
        tracker.event_processed(tmp_path / "a")

        assert tracker.snapshot() == {tmp_path / "b": 1}

    def test_discard(self, tmp_path):
        """Test discarding returns the number of dropped events."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path)
        tracker.event_received(tmp_path)

        assert tracker.discard([tmp_path, tmp_path / "other"]) == 2
        assert tracker.pending_count() == 0


class TestWaitForDrained:
    """Tests for the blocking drain wait."""

    def test_nothing_pending_returns_immediately(self, tmp_path):
        """Test an idle path is drained at once."""
        tracker = EventDrainTracker()

        start = time.monotonic()
        assert tracker.wait_for_drained([tmp_path], 5000) is True
        assert time.monotonic() - start < 0.5

    def test_empty_paths_are_drained(self, tmp_path):
        """Test waiting on no paths succeeds even with other work pending."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path)

        assert tracker.wait_for_drained([], 1000) is True
        assert tracker.wait_for_drained(None, 1000) is True

    def test_zero_timeout_checks_once(self, tmp_path):
        """Test a zero timeout does not block."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path)

        start = time.monotonic()
        assert tracker.wait_for_drained([tmp_path], 0) is False
        assert tracker.wait_for_drained([tmp_path], -5) is False
        assert time.monotonic() - start < 0.5

    def test_times_out(self, tmp_path):
        """Test the wait gives up after the timeout."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path)

        start = time.monotonic()
        assert tracker.wait_for_drained([tmp_path], 100) is False
        assert time.monotonic() - start >= 0.09

    def test_other_paths_do_not_block(self, tmp_path):
        """Test only the requested paths are considered."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path / "busy")

        assert tracker.wait_for_drained([tmp_path / "idle"], 0) is True

    def test_concurrent_producers_drain(self, tmp_path):
        """Test the wait returns once every worker has finished its event."""
        tracker = EventDrainTracker()
        workers = 8
        barrier = threading.Barrier(workers + 1)

        def work():
            tracker.event_received(tmp_path)
            barrier.wait()
            time.sleep(random.uniform(0.05, 0.15))
            tracker.event_processed(tmp_path)

        threads = [threading.Thread(target=work) for _ in range(workers)]
        for thread in threads:
            thread.start()
        barrier.wait()

        assert tracker.wait_for_drained([tmp_path], 0) is False
        assert tracker.wait_for_drained([tmp_path], 5000) is True
        assert tracker.pending_count([tmp_path]) == 0

        for thread in threads:
            thread.join()

    def test_overlapping_waiters(self, tmp_path):
        """Test waiters on overlapping path sets each see their own drain."""
        tracker = EventDrainTracker()
        a, b = tmp_path / "a", tmp_path / "b"
        tracker.event_received(a)
        tracker.event_received(b)
        results = {}

        def wait(name, paths):
            results[name] = tracker.wait_for_drained(paths, 5000)

        only_a = threading.Thread(target=wait, args=("a", [a]))
        both = threading.Thread(target=wait, args=("ab", [a, b]))
        only_a.start()
        both.start()

        tracker.event_processed(a)
        only_a.join(timeout=5)
        assert results == {"a": True}

        tracker.event_processed(b)
        both.join(timeout=5)
        assert results == {"a": True, "ab": True}

    def test_discard_releases_waiter(self, tmp_path):
        """Test dropping a path's counter wakes a blocked waiter."""
        tracker = EventDrainTracker()
        tracker.event_received(tmp_path)
        results = []

        waiter = threading.Thread(
            target=lambda: results.append(tracker.wait_for_drained([tmp_path], 5000))
        )
        waiter.start()
        time.sleep(0.05)
        tracker.discard([tmp_path])
        waiter.join(timeout=5)

        assert results == [True]

    def test_paths_resolved_on_each_check(self, tmp_path):
        """Test a path dropped from the resolved set stops blocking the wait."""
        tracker = EventDrainTracker()
        a, b = tmp_path / "a", tmp_path / "b"
        tracker.event_received(a)
        tracker.event_received(b)
        current = {a, b}
        results = []

        waiter = threading.Thread(
            target=lambda: results.append(
                tracker.wait_until_drained(lambda: set(current), 5000)
            )
        )
        waiter.start()
        time.sleep(0.05)
        current.discard(b)
        tracker.event_processed(a)
        waiter.join(timeout=5)

        assert results == [True]
        assert tracker.pending_count([b]) == 1
