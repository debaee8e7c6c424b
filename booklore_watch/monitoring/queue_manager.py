"""
Event Queue Manager
===================

Runs filesystem events through the processor on a pool of worker threads.
Implements retry logic, status tracking, and graceful shutdown.

Every event that enters the queue is settled exactly once, whether it
succeeds, fails for good, or is dropped at shutdown. Settlement is what
releases the event's pending count in the drain tracker.
"""

import threading
from queue import Queue, Empty
from typing import Callable, Optional, Dict, List
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
import traceback

from booklore_watch.monitoring.events import FileEvent
from booklore_watch.utils.logging_config import get_logger, set_correlation_id

logger = get_logger(__name__)


class ProcessingStatus(Enum):
    """Status of an event task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    DROPPED = "dropped"


@dataclass
class EventTask:
    """A queued filesystem event and its processing state.

    Attributes:
        event: The event to process.
        status: Current processing status.
        retry_count: Number of retry attempts.
        max_retries: Maximum retry attempts allowed.
        created_at: When the task was created.
        started_at: When processing started.
        completed_at: When processing completed.
        error: Error message if failed.
    """

    event: FileEvent
    status: ProcessingStatus = ProcessingStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def mark_processing(self) -> None:
        self.status = ProcessingStatus.PROCESSING
        self.started_at = datetime.now()

    def mark_completed(self) -> None:
        self.status = ProcessingStatus.COMPLETED
        self.completed_at = datetime.now()

    def mark_failed(self, error: str) -> None:
        self.status = ProcessingStatus.FAILED
        self.completed_at = datetime.now()
        self.error = error

    def mark_dropped(self) -> None:
        self.status = ProcessingStatus.DROPPED
        self.completed_at = datetime.now()

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def increment_retry(self) -> None:
        """Increment retry count and mark as retrying."""
        self.retry_count += 1
        self.status = ProcessingStatus.RETRYING
        self.started_at = None
        self.completed_at = None
        self.error = None


@dataclass
class ProcessingStats:
    """Statistics for the event queue."""

    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0
    pending: int = 0
    processing: int = 0

    def to_dict(self) -> Dict:
        return {
            "total_processed": self.total_processed,
            "successful": self.successful,
            "failed": self.failed,
            "retried": self.retried,
            "dropped": self.dropped,
            "pending": self.pending,
            "processing": self.processing,
        }


class FileEventQueueManager:
    """Processes queued filesystem events with worker threads.

    Features:
    - Thread pool for parallel processing
    - Automatic retry for failed events
    - Status tracking and statistics
    - Settlement callback fired once per event, on success, final failure
      or drop at shutdown
    """

    def __init__(
        self,
        processor_callback: Callable[[FileEvent], bool],
        max_workers: int = 2,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        settled_callback: Optional[Callable[[FileEvent], None]] = None,
    ):
        """Initialize the queue manager.

        Args:
            processor_callback: Function to process each event.
                               Returns True on success, False on failure.
            max_workers: Maximum number of worker threads.
            max_retries: Maximum retry attempts for failed events.
            retry_delay: Delay in seconds between retries.
            settled_callback: Called once when an event leaves the queue
                              for good.
        """
        self.queue: "Queue[EventTask]" = Queue()
        self.processor = processor_callback
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.settled_callback = settled_callback

        self.executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._worker_thread: Optional[threading.Thread] = None

        self._active_tasks: Dict[str, EventTask] = {}
        self._tasks_lock = threading.Lock()
        self._retry_timers: Dict[str, threading.Timer] = {}

        self.stats = ProcessingStats()
        self._stats_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def put(self, event: FileEvent) -> EventTask:
        """Add an event to the processing queue.

        Args:
            event: The event to process.

        Returns:
            The created EventTask.
        """
        task = EventTask(event=event, max_retries=self.max_retries)

        with self._tasks_lock:
            self._active_tasks[event.event_id] = task

        with self._stats_lock:
            self.stats.pending += 1

        self.queue.put(task)
        logger.debug(f"Queued {event.kind.name} for {event.file_path}")
        return task

    def start(self) -> None:
        """Start the queue processing workers."""
        if self._running:
            logger.warning("Queue manager already running")
            return

        self.executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="EventWorker"
        )
        self._running = True
        self._worker_thread = threading.Thread(
            target=self._process_loop, daemon=True, name="EventQueue-MainLoop"
        )
        self._worker_thread.start()
        logger.info(f"Event queue started with {self.max_workers} workers")

    def stop(self, wait: bool = True, timeout: float = 10.0) -> None:
        """Stop the queue processing.

        Events still waiting in the queue or on a retry timer are dropped
        and settled.

        Args:
            wait: Whether to wait for running tasks to complete.
            timeout: Maximum time to wait for the dispatch loop to exit, in seconds.
        """
        if not self._running:
            return

        self._running = False

        if self._worker_thread:
            self._worker_thread.join(timeout=timeout)

        if self.executor is not None:
            self.executor.shutdown(wait=wait)

        with self._tasks_lock:
            timers = list(self._retry_timers.items())
            self._retry_timers.clear()
        for event_id, timer in timers:
            timer.cancel()
            with self._tasks_lock:
                task = self._active_tasks.get(event_id)
            if task is not None:
                with self._stats_lock:
                    self.stats.pending -= 1
                self._drop(task)

        while True:
            try:
                task = self.queue.get_nowait()
            except Empty:
                break
            with self._stats_lock:
                self.stats.pending -= 1
            self._drop(task)

        logger.info("Event queue stopped")

    def _process_loop(self) -> None:
        """Main processing loop that dequeues and dispatches tasks."""
        while self._running:
            try:
                task = self.queue.get(timeout=0.5)
            except Empty:
                continue

            if not self._running:
                # Put it back for stop() to settle
                self.queue.put(task)
                break

            with self._stats_lock:
                self.stats.pending -= 1
                self.stats.processing += 1

            try:
                self.executor.submit(self._process_task, task)
            except RuntimeError as e:
                logger.error(f"Could not dispatch {task.event.file_path}: {e}")
                with self._stats_lock:
                    self.stats.processing -= 1
                self._drop(task)

    def _process_task(self, task: EventTask) -> None:
        """Process a single task."""
        event = task.event
        set_correlation_id(event.event_id)
        task.mark_processing()

        try:
            success = self.processor(event)

            if success:
                task.mark_completed()
                self._handle_success(task)
            else:
                self._handle_failure(task, "Processor returned False")

        except Exception as e:
            error_msg = f"{type(e).__name__}: {str(e)}"
            logger.error(f"Error processing {event.kind.name} for {event.file_path}: {error_msg}")
            logger.debug(traceback.format_exc())
            self._handle_failure(task, error_msg)

    def _handle_success(self, task: EventTask) -> None:
        with self._stats_lock:
            self.stats.processing -= 1
            self.stats.total_processed += 1
            self.stats.successful += 1

        logger.debug(f"Processed {task.event.kind.name} for {task.event.file_path}")
        self._settle(task)

    def _handle_failure(self, task: EventTask, error: str) -> None:
        """Handle task failure with retry logic."""
        with self._stats_lock:
            self.stats.processing -= 1

        if task.can_retry() and self._running:
            task.increment_retry()

            with self._stats_lock:
                self.stats.retried += 1
                self.stats.pending += 1

            logger.warning(
                f"Retrying ({task.retry_count}/{task.max_retries}): "
                f"{task.event.file_path} - {error}"
            )

            timer = threading.Timer(self.retry_delay, self._requeue, args=(task,))
            timer.daemon = True
            with self._tasks_lock:
                self._retry_timers[task.event.event_id] = timer
            timer.start()
        else:
            task.mark_failed(error)

            with self._stats_lock:
                self.stats.total_processed += 1
                self.stats.failed += 1

            logger.error(
                f"Failed after {task.retry_count} retries: "
                f"{task.event.file_path} - {error}"
            )
            self._settle(task)

    def _requeue(self, task: EventTask) -> None:
        with self._tasks_lock:
            if self._retry_timers.pop(task.event.event_id, None) is None:
                # stop() already settled it
                return
            # stop() drains the queue only after taking this lock
            running = self._running
            if running:
                self.queue.put(task)
        if not running:
            with self._stats_lock:
                self.stats.pending -= 1
            self._drop(task)

    def _drop(self, task: EventTask) -> None:
        task.mark_dropped()
        with self._stats_lock:
            self.stats.dropped += 1
        logger.warning(f"Dropped unprocessed {task.event.kind.name} for {task.event.file_path}")
        self._settle(task)

    def _settle(self, task: EventTask) -> None:
        with self._tasks_lock:
            self._active_tasks.pop(task.event.event_id, None)

        if self.settled_callback:
            try:
                self.settled_callback(task.event)
            except Exception as e:
                logger.error(f"Error in settled callback: {e}")

    def get_stats(self) -> ProcessingStats:
        """Get a copy of the current processing statistics."""
        with self._stats_lock:
            return ProcessingStats(**self.stats.to_dict())

    def get_active_tasks(self) -> List[EventTask]:
        with self._tasks_lock:
            return list(self._active_tasks.values())

    def get_queue_size(self) -> int:
        return self.queue.qsize()

    def is_idle(self) -> bool:
        """Check if no events are pending or processing."""
        with self._stats_lock:
            return self.stats.pending == 0 and self.stats.processing == 0
