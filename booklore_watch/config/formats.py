"""
Book Format Definitions
=======================

Book file types and the extension mapping used to decide whether a changed
file belongs in a library at all.
"""

from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union


class BookFileType(Enum):
    """Kinds of files a library can hold."""
    PDF = "PDF"
    EPUB = "EPUB"
    CBX = "CBX"
    FB2 = "FB2"
    MOBI = "MOBI"
    AZW3 = "AZW3"
    AUDIOBOOK = "AUDIOBOOK"


@dataclass
class FormatMapping:
    """Mapping of file extensions to book file types.

    Extensions are stored lowercase without the leading dot.
    """

    extensions: Dict[str, BookFileType] = field(default_factory=lambda: {
        "pdf": BookFileType.PDF,
        "epub": BookFileType.EPUB,
        "cbz": BookFileType.CBX,
        "cbr": BookFileType.CBX,
        "cb7": BookFileType.CBX,
        "fb2": BookFileType.FB2,
        "mobi": BookFileType.MOBI,
        "azw3": BookFileType.AZW3,
        "m4b": BookFileType.AUDIOBOOK,
        "m4a": BookFileType.AUDIOBOOK,
        "mp3": BookFileType.AUDIOBOOK,
        "opus": BookFileType.AUDIOBOOK,
        "flac": BookFileType.AUDIOBOOK,
        "ogg": BookFileType.AUDIOBOOK,
        "aac": BookFileType.AUDIOBOOK,
    })

    def get_type(self, file_name: Union[str, Path]) -> Optional[BookFileType]:
        """Get the book file type for a file name or path.

        Args:
            file_name: File name, path, or bare extension (with or without dot).

        Returns:
            The matching BookFileType, or None for anything else.
        """
        name = Path(file_name).name if isinstance(file_name, Path) else str(file_name)
        if "." in name:
            ext = name.rsplit(".", 1)[1]
        else:
            ext = name
        return self.extensions.get(ext.lower())

    def is_book_file(self, file_name: Union[str, Path]) -> bool:
        """Check if a file name has a supported book extension."""
        if "." not in Path(file_name).name:
            return False
        return self.get_type(file_name) is not None

    def is_audio(self, file_name: Union[str, Path]) -> bool:
        """Check if a file name is an audiobook track."""
        return self.is_book_file(file_name) and self.get_type(file_name) == BookFileType.AUDIOBOOK


# Global mapping instance
FORMAT_MAPPING = FormatMapping()
