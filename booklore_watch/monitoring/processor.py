"""
Library Event Processor
=======================

Decides what a filesystem event means for a library and hands the result
to the import and removal callbacks. Runs on the event queue's worker
threads.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from booklore_watch.config.formats import FORMAT_MAPPING, FormatMapping
from booklore_watch.monitoring.events import FileEvent, FileEventKind
from booklore_watch.monitoring.registration import Library
from booklore_watch.monitoring.registry import normalize_path
from booklore_watch.utils.exceptions import EventProcessingError
from booklore_watch.utils.logging_config import get_logger

logger = get_logger(__name__)

MIN_AUDIO_FILES_FOR_FOLDER_AUDIOBOOK = 2


@dataclass
class FolderAnalysis:
    """Book files found below a folder."""

    audio_file_count: int = 0
    has_non_audio_book: bool = False

    @property
    def is_folder_audiobook(self) -> bool:
        return (
            self.audio_file_count >= MIN_AUDIO_FILES_FOR_FOLDER_AUDIOBOOK
            and not self.has_non_audio_book
        )


class LibraryEventProcessor:
    """Routes events to book import and removal.

    Callbacks:
        import_file(library_id, path): a new book file.
        import_folder_audiobook(library_id, folder): a new folder that is a
            single audiobook made of several tracks.
        remove(library_id, path, is_directory): a file or folder that is gone.

    A callback that raises makes the event fail, so the queue retries it.
    """

    def __init__(
        self,
        library_provider: Callable[[int], Optional[Library]],
        import_file: Optional[Callable[[int, Path], None]] = None,
        import_folder_audiobook: Optional[Callable[[int, Path], None]] = None,
        remove: Optional[Callable[[int, Path, bool], None]] = None,
        formats: FormatMapping = FORMAT_MAPPING,
    ):
        self.library_provider = library_provider
        self.import_file = import_file
        self.import_folder_audiobook = import_folder_audiobook
        self.remove = remove
        self.formats = formats

    def process(self, event: FileEvent) -> bool:
        """Handle one event.

        Returns:
            True when the event was handled or deliberately skipped.

        Raises:
            EventProcessingError: If a callback failed.
        """
        path = event.file_path
        suffix = " (debounced folder)" if event.is_debounced_folder else ""
        logger.info(f"[PROCESS] '{event.kind.value}' event for '{path.name}'{suffix}")

        library = self.library_provider(event.library_id)
        if library is None:
            logger.warning(f"[SKIP] Unknown library {event.library_id} for '{path}'")
            return True

        if not any(path == root or root in path.parents for root in self._roots(library)):
            logger.warning(f"[SKIP] Path outside of library: '{path}'")
            return True

        if event.is_directory or event.is_debounced_folder:
            if event.kind is FileEventKind.CREATE:
                self.handle_folder_create(library, path)
            elif event.kind is FileEventKind.DELETE:
                self.handle_delete(library, path, is_directory=True)
            else:
                logger.debug(f"[SKIP] Folder event '{event.kind.value}' ignored for '{path.name}'")
            return True

        if not self.formats.is_book_file(path):
            logger.debug(f"[SKIP] Ignored non-book file '{path.name}'")
            return True

        if event.kind is FileEventKind.CREATE:
            logger.info(f"[FILE_CREATE] '{path}'")
            self._call(self.import_file, event.library_id, path)
        elif event.kind is FileEventKind.DELETE:
            self.handle_delete(library, path, is_directory=False)
        else:
            logger.debug(f"[SKIP] File event '{event.kind.value}' ignored for '{path.name}'")
        return True

    def handle_folder_create(self, library: Library, folder: Path) -> None:
        logger.info(f"[FOLDER_CREATE] '{folder}'")
        analysis = self.analyze_folder(folder)

        if analysis.is_folder_audiobook:
            logger.info(
                f"[FOLDER_AUDIOBOOK] Detected folder-based audiobook: {folder.name} "
                f"({analysis.audio_file_count} audio files)"
            )
            self._call(self.import_folder_audiobook, library.id, folder)
            return

        book_files = self._book_files(folder)
        if book_files:
            logger.info(f"[FOLDER_CREATE] Processing {len(book_files)} files individually")
        for book_file in book_files:
            self._call(self.import_file, library.id, book_file)

    def handle_delete(self, library: Library, path: Path, is_directory: bool) -> None:
        tag = "FOLDER_DELETE" if is_directory else "FILE_DELETE"
        logger.info(f"[{tag}] '{path}'")
        self._call(self.remove, library.id, path, is_directory)

    def analyze_folder(self, folder: Path) -> FolderAnalysis:
        """Count audio tracks and other book files below a folder."""
        analysis = FolderAnalysis()
        for book_file in self._book_files(folder):
            if self.formats.is_audio(book_file):
                analysis.audio_file_count += 1
            else:
                analysis.has_non_audio_book = True
        return analysis

    def _book_files(self, folder: Path) -> List[Path]:
        found = []

        def on_error(error: OSError) -> None:
            logger.warning(f"[ERROR] Walking folder '{error.filename or folder}': {error.strerror}")

        for dirpath, _, filenames in os.walk(folder, onerror=on_error):
            for name in sorted(filenames):
                if self.formats.is_book_file(name):
                    found.append(Path(dirpath) / name)
        return found

    @staticmethod
    def _roots(library: Library) -> List[Path]:
        return [normalize_path(p) for p in library.paths]

    @staticmethod
    def _call(callback: Optional[Callable], library_id: int, path: Path, *args) -> None:
        if callback is None:
            return
        try:
            callback(library_id, path, *args)
        except Exception as e:
            raise EventProcessingError(
                f"Handling '{path}' failed",
                file_path=path,
                library_id=library_id,
                cause=e,
            ) from e
