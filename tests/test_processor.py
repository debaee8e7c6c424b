"""
Unit tests for the library event processor.
"""

from pathlib import Path

import pytest

from booklore_watch.monitoring.events import FileEvent, FileEventKind
from booklore_watch.monitoring.processor import FolderAnalysis, LibraryEventProcessor
from booklore_watch.monitoring.registration import Library
from booklore_watch.monitoring.registry import normalize_path
from booklore_watch.utils.exceptions import EventProcessingError


class Recorder:
    """Records calls to the import and removal callbacks."""

    def __init__(self):
        self.imported = []
        self.audiobooks = []
        self.removed = []

    def import_file(self, library_id, path):
        self.imported.append((library_id, path))

    def import_folder_audiobook(self, library_id, path):
        self.audiobooks.append((library_id, path))

    def remove(self, library_id, path, is_directory):
        self.removed.append((library_id, path, is_directory))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def processor(recorder, library_root):
    libraries = {1: Library(id=1, name="Books", paths=[library_root])}
    return LibraryEventProcessor(
        library_provider=libraries.get,
        import_file=recorder.import_file,
        import_folder_audiobook=recorder.import_folder_audiobook,
        remove=recorder.remove,
    )


def event(kind, path, library_id=1, **kwargs):
    path = normalize_path(path)
    return FileEvent(kind, library_id, path.parent, path, **kwargs)


class TestFileEvents:
    """Tests for single-file events."""

    def test_book_file_is_imported(self, processor, recorder, library_root):
        """Test a new book file is handed to the importer."""
        path = library_root / "F.epub"

        assert processor.process(event(FileEventKind.CREATE, path)) is True
        assert recorder.imported == [(1, normalize_path(path))]

    def test_non_book_file_is_skipped(self, processor, recorder, library_root):
        """Test files with unsupported extensions are ignored."""
        (library_root / "cover.jpg").write_bytes(b"jpg")

        assert processor.process(event(FileEventKind.CREATE, library_root / "cover.jpg")) is True
        assert recorder.imported == []

    def test_deleted_book_is_removed(self, processor, recorder, library_root):
        """Test a deleted book file is handed to the remover."""
        path = library_root / "gone.pdf"

        processor.process(event(FileEventKind.DELETE, path))

        assert recorder.removed == [(1, normalize_path(path), False)]

    def test_modify_is_skipped(self, processor, recorder, library_root):
        """Test modifications do not trigger imports."""
        processor.process(event(FileEventKind.MODIFY, library_root / "F.epub"))

        assert recorder.imported == []
        assert recorder.removed == []

    def test_unknown_library_is_skipped(self, processor, recorder, library_root):
        """Test events for unknown libraries are dropped without error."""
        assert processor.process(event(FileEventKind.CREATE, library_root / "F.epub", library_id=9)) is True
        assert recorder.imported == []

    def test_path_outside_library_is_skipped(self, processor, recorder, tmp_path):
        """Test events outside the library roots are dropped."""
        assert processor.process(event(FileEventKind.CREATE, tmp_path / "stray.epub")) is True
        assert recorder.imported == []

    def test_callback_error_fails_event(self, recorder, library_root):
        """Test a failing importer surfaces as EventProcessingError."""
        def broken(library_id, path):
            raise OSError("disk full")

        processor = LibraryEventProcessor(
            library_provider={1: Library(id=1, paths=[library_root])}.get,
            import_file=broken,
        )

        with pytest.raises(EventProcessingError) as exc_info:
            processor.process(event(FileEventKind.CREATE, library_root / "F.epub"))

        assert exc_info.value.details["library_id"] == 1
        assert isinstance(exc_info.value.cause, OSError)


class TestFolderEvents:
    """Tests for folder creates and deletes."""

    def test_folder_audiobook(self, processor, recorder, library_root):
        """Test a folder of audio tracks is imported as one audiobook."""
        folder = library_root / "Dune"
        folder.mkdir()
        for name in ("01.mp3", "02.mp3", "cover.jpg"):
            (folder / name).write_bytes(b"x")

        processor.process(event(FileEventKind.CREATE, folder, is_directory=True, is_debounced_folder=True))

        assert recorder.audiobooks == [(1, normalize_path(folder))]
        assert recorder.imported == []

    def test_mixed_folder_imports_files(self, processor, recorder, library_root):
        """Test a folder with ebooks is imported file by file."""
        folder = library_root / "Mixed"
        (folder / "extras").mkdir(parents=True)
        (folder / "a.mp3").write_bytes(b"x")
        (folder / "b.mp3").write_bytes(b"x")
        (folder / "extras" / "book.epub").write_bytes(b"x")

        processor.process(event(FileEventKind.CREATE, folder, is_directory=True, is_debounced_folder=True))

        assert recorder.audiobooks == []
        assert sorted(p.name for _, p in recorder.imported) == ["a.mp3", "b.mp3", "book.epub"]

    def test_single_track_is_not_folder_audiobook(self, processor, recorder, library_root):
        """Test one audio file is imported on its own."""
        folder = library_root / "Single"
        folder.mkdir()
        (folder / "track.m4b").write_bytes(b"x")

        processor.process(event(FileEventKind.CREATE, folder, is_directory=True, is_debounced_folder=True))

        assert recorder.audiobooks == []
        assert recorder.imported == [(1, normalize_path(folder) / "track.m4b")]

    def test_folder_delete(self, processor, recorder, library_root):
        """Test a deleted folder is removed as a directory."""
        folder = library_root / "A"

        processor.process(event(FileEventKind.DELETE, folder, is_directory=True))

        assert recorder.removed == [(1, normalize_path(folder), True)]

    def test_folder_analysis(self):
        """Test the folder audiobook rule."""
        assert FolderAnalysis(audio_file_count=2).is_folder_audiobook
        assert not FolderAnalysis(audio_file_count=1).is_folder_audiobook
        assert not FolderAnalysis(audio_file_count=3, has_non_audio_book=True).is_folder_audiobook
