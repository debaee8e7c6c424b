"""
BookLore Watch - Main Application
=================================

Builds the monitoring components once from configuration and runs them.
"""

import argparse
import signal
import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from booklore_watch.config import Config
from booklore_watch.monitoring import (
    EventDrainTracker,
    FileEventQueueManager,
    Library,
    LibraryEventProcessor,
    MonitoringRegistrationService,
    MonitoringService,
    RegistrationResult,
    WatchPathRegistry,
)
from booklore_watch.utils.logging_config import setup_logging, get_logger

logger = get_logger(__name__)


class LibraryWatchApp:
    """Wires configuration, logging and the monitoring components.

    One registry, one drain tracker and one monitoring service exist per
    application instance and are shared by reference.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        import_file: Optional[Callable[[int, Path], None]] = None,
        import_folder_audiobook: Optional[Callable[[int, Path], None]] = None,
        remove: Optional[Callable[[int, Path, bool], None]] = None,
        observer_factory: Optional[Callable[[], object]] = None,
    ):
        """Initialize the application.

        Args:
            config: Loaded configuration. Defaults are used if omitted.
            import_file: Called for each new book file.
            import_folder_audiobook: Called for each new folder audiobook.
            remove: Called for each deleted book file or folder.
            observer_factory: Overrides the watchdog observer (tests).
        """
        self.config = config or Config()
        self.libraries: Dict[int, Library] = {
            lib.id: lib.to_library() for lib in self.config.libraries
        }

        self.registry = WatchPathRegistry()
        self.tracker = EventDrainTracker()

        self.processor = LibraryEventProcessor(
            library_provider=self.libraries.get,
            import_file=import_file or self._log_import,
            import_folder_audiobook=import_folder_audiobook or self._log_import,
            remove=remove or self._log_removal,
        )

        monitoring = self.config.monitoring
        service_kwargs = {}
        if observer_factory is not None:
            service_kwargs["observer_factory"] = observer_factory
        self.monitoring_service = MonitoringService(
            config=monitoring,
            registry=self.registry,
            tracker=self.tracker,
            **service_kwargs,
        )
        self.queue_manager = FileEventQueueManager(
            processor_callback=self.processor.process,
            max_workers=monitoring.max_workers,
            max_retries=monitoring.max_retries,
            retry_delay=monitoring.retry_delay,
            settled_callback=self.monitoring_service.event_settled,
        )
        self.monitoring_service.event_sink = self.queue_manager.put

        self.registration = MonitoringRegistrationService(self.monitoring_service)
        self.monitoring_service.directory_registrar = self.registration.register_library_paths

    def register_configured_libraries(self) -> List[RegistrationResult]:
        """Register every configured library."""
        results: List[RegistrationResult] = []
        for library in self.libraries.values():
            results.extend(self.registration.register_library(library))
        logger.info(f"Monitoring initialized with {len(self.libraries)} libraries")
        return results

    def add_library(self, library: Library) -> List[RegistrationResult]:
        """Add or replace a library and register it."""
        self.libraries[library.id] = library
        self.registration.unregister_library(library.id)
        return self.registration.register_library(library)

    def remove_library(self, library_id: int) -> None:
        self.registration.unregister_library(library_id)
        self.libraries.pop(library_id, None)

    def start(self) -> None:
        """Register libraries and start watching."""
        logger.info("Starting BookLore Watch...")
        self.register_configured_libraries()
        self.queue_manager.start()
        self.monitoring_service.start()
        logger.info("BookLore Watch is running. Press Ctrl+C to stop.")

    def stop(self) -> None:
        logger.info("Stopping BookLore Watch...")
        self.monitoring_service.stop()
        self.queue_manager.stop()
        logger.info(f"Event statistics: {self.queue_manager.get_stats().to_dict()}")

    def status(self) -> Dict[str, object]:
        status = self.monitoring_service.status()
        status["queue"] = self.queue_manager.get_stats().to_dict()
        status["queue"]["queued"] = self.queue_manager.get_queue_size()
        return status

    @staticmethod
    def _log_import(library_id: int, path: Path) -> None:
        logger.info(f"Library {library_id}: import '{path}'")

    @staticmethod
    def _log_removal(library_id: int, path: Path, is_directory: bool) -> None:
        kind = "folder" if is_directory else "file"
        logger.info(f"Library {library_id}: remove {kind} '{path}'")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="BookLore Watch - library directory monitoring"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Register configured libraries, print watched directories and exit"
    )

    args = parser.parse_args()

    config = Config.load(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    setup_logging(config.logging)

    app = LibraryWatchApp(config)

    if args.list:
        results = app.register_configured_libraries()
        for entry in app.registry.entries():
            print(f"  [{entry.library_id}] {entry.path}")
        failures = [f for r in results for f in r.failures]
        for failure in failures:
            print(f"  ✗ {failure}")
        print(f"\n{len(app.registry)} directories in {len(app.libraries)} libraries")
        sys.exit(1 if failures else 0)

    def signal_handler(sig, frame):
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        app.stop()


if __name__ == "__main__":
    main()
