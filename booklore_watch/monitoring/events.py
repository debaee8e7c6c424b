"""Filesystem change events handed from the watcher to the processor."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class FileEventKind(Enum):
    """Kind of change observed for a path."""

    CREATE = "ENTRY_CREATE"
    DELETE = "ENTRY_DELETE"
    MODIFY = "ENTRY_MODIFY"


@dataclass(frozen=True)
class FileEvent:
    """A filtered filesystem change for one library.

    Attributes:
        kind: What happened.
        library_id: Library owning the watched directory.
        watched_path: Watched directory the event was counted against.
        file_path: Path that changed.
        is_directory: Whether the changed path is a directory.
        is_debounced_folder: Set on folder creates released by the folder
            debounce timer.
        generation: Drain tracker generation of watched_path when the
            event was counted.
        event_id: Short id used as the log correlation id.
    """

    kind: FileEventKind
    library_id: int
    watched_path: Path
    file_path: Path
    is_directory: bool = False
    is_debounced_folder: bool = False
    generation: int = 0
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
