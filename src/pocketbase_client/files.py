"""File attachments for multipart uploads."""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

UNKNOWN_MIME_TYPE = "application/octet-stream"


def guess_mime_type(file_name: str | None) -> str:
    """Best-effort MIME type from the file name extension.

    Never returns None: unknown extensions map to UNKNOWN_MIME_TYPE.
    """
    if not file_name:
        return UNKNOWN_MIME_TYPE
    mime_type, _ = mimetypes.guess_type(file_name, strict=False)
    return mime_type or UNKNOWN_MIME_TYPE


class FileAttachment(ABC):
    """A file to upload as one multipart part.

    `field_name` is the record field the file belongs to, `file_name` the
    name reported to the server.
    """

    field_name: str | None
    file_name: str | None

    @abstractmethod
    def open(self) -> BinaryIO | bytes | None:
        """Return the file content, or None if nothing can be read."""

    @property
    def mime_type(self) -> str:
        return guess_mime_type(self.file_name)

    @property
    def is_uploadable(self) -> bool:
        return bool(self.field_name and self.field_name.strip()) and bool(
            self.file_name and self.file_name.strip()
        )


class FilepathFile(FileAttachment):
    """Attachment read from a path on disk."""

    def __init__(self, path: str | Path, field_name: str, file_name: str | None = None):
        self.path = Path(path)
        self.field_name = field_name
        self.file_name = file_name or self.path.name

    def open(self) -> bytes | None:
        if not self.path.is_file():
            return None
        return self.path.read_bytes()


class BytesFile(FileAttachment):
    """Attachment held in memory (or an already open binary stream)."""

    def __init__(self, content: bytes | BinaryIO | None, field_name: str, file_name: str):
        self.content = content
        self.field_name = field_name
        self.file_name = file_name

    def open(self) -> BinaryIO | bytes | None:
        return self.content
