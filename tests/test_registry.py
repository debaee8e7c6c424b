"""
Unit tests for the watch path registry.
"""

from pathlib import Path

from booklore_watch.monitoring.registry import (
    RegisterStatus,
    WatchPathRegistry,
    normalize_path,
)


class TestRegisterPath:
    """Tests for WatchPathRegistry.register_path."""

    def test_missing_path_is_rejected(self, library_root):
        """Test registering a path that does not exist changes nothing."""
        registry = WatchPathRegistry()
        missing = library_root / "missing"

        status = registry.register_path(missing, 1)

        assert status is RegisterStatus.REJECTED
        assert registry.is_path_monitored(missing) is False
        assert len(registry) == 0

    def test_file_is_rejected(self, library_root):
        """Test only directories can be registered."""
        registry = WatchPathRegistry()

        status = registry.register_path(library_root / "F.epub", 1)

        assert status is RegisterStatus.REJECTED
        assert len(registry) == 0

    def test_register_twice_same_library(self, library_root):
        """Test registration is idempotent for the same library."""
        registry = WatchPathRegistry()

        assert registry.register_path(library_root, 1) is RegisterStatus.ADDED
        assert registry.register_path(library_root, 1) is RegisterStatus.UNCHANGED
        assert len(registry) == 1

    def test_register_other_library_reassigns(self, library_root):
        """Test last registration wins without creating a duplicate."""
        registry = WatchPathRegistry()
        registry.register_path(library_root, 1)

        status = registry.register_path(library_root, 2)

        assert status is RegisterStatus.REASSIGNED
        assert len(registry) == 1
        assert registry.library_for(library_root) == 2
        assert registry.is_library_monitored(1) is False
        assert registry.is_library_monitored(2) is True

    def test_equivalent_spellings_share_an_entry(self, library_root):
        """Test paths are normalized before use as keys."""
        registry = WatchPathRegistry()
        registry.register_path(library_root / "A" / ".." / "B", 1)

        assert registry.is_path_monitored(library_root / "B")
        assert len(registry) == 1


class TestUnregister:
    """Tests for removing entries."""

    def test_unregister_unknown_path(self, library_root):
        """Test unregistering an unknown path is a no-op."""
        registry = WatchPathRegistry()

        assert registry.unregister_path(library_root) is None

    def test_unregister_deleted_directory(self, library_root):
        """Test a directory can be unregistered after it is gone from disk."""
        registry = WatchPathRegistry()
        registry.register_path(library_root / "A", 1)
        (library_root / "A").rmdir()

        entry = registry.unregister_path(library_root / "A")

        assert entry is not None
        assert entry.library_id == 1
        assert registry.is_path_monitored(library_root / "A") is False

    def test_unregister_library(self, library_root):
        """Test only the given library's entries are removed."""
        registry = WatchPathRegistry()
        registry.register_path(library_root, 1)
        registry.register_path(library_root / "A", 1)
        registry.register_path(library_root / "B", 2)

        removed = registry.unregister_library(1)

        assert {e.path for e in removed} == {normalize_path(library_root), normalize_path(library_root / "A")}
        assert registry.is_library_monitored(1) is False
        assert registry.is_path_monitored(library_root / "B") is True


class TestQueries:
    """Tests for read-only lookups."""

    def test_paths_for_no_libraries_is_empty(self, library_root):
        """Test empty input never means all paths."""
        registry = WatchPathRegistry()
        registry.register_path(library_root, 1)

        assert registry.get_paths_for_libraries([]) == set()
        assert registry.get_paths_for_libraries(None) == set()

    def test_paths_for_libraries(self, library_root):
        """Test paths are collected across several libraries."""
        registry = WatchPathRegistry()
        registry.register_path(library_root / "A", 1)
        registry.register_path(library_root / "B", 2)
        registry.register_path(library_root, 3)

        paths = registry.get_paths_for_libraries({1, 2})

        assert paths == {normalize_path(library_root / "A"), normalize_path(library_root / "B")}

    def test_paths_under(self, library_root):
        """Test subtree lookup includes the directory itself."""
        registry = WatchPathRegistry()
        (library_root / "A" / "deep").mkdir()
        for path in (library_root, library_root / "A", library_root / "A" / "deep", library_root / "B"):
            registry.register_path(path, 1)

        under = registry.paths_under(library_root / "A")

        assert under == {normalize_path(library_root / "A"), normalize_path(library_root / "A" / "deep")}

    def test_set_active(self, library_root):
        """Test the active flag is stored on the entry."""
        registry = WatchPathRegistry()
        registry.register_path(library_root, 1)

        assert registry.get(library_root).active is False
        assert registry.set_active(library_root, True) is True
        assert registry.get(library_root).active is True
        assert registry.set_active(library_root / "A", True) is False

    def test_get_returns_copy(self, library_root):
        """Test callers cannot mutate registry state through get()."""
        registry = WatchPathRegistry()
        registry.register_path(library_root, 1)

        entry = registry.get(library_root)
        entry.library_id = 99

        assert registry.library_for(library_root) == 1

    def test_normalize_path(self):
        """Test lexical normalization without touching the filesystem."""
        assert normalize_path("/books/a/../b/") == Path("/books/b")
