"""
Base storage interface and common types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class StoredFile:
    """Handle and metadata for a stored upload."""

    path: str  # Opaque handle; pass back to read/delete/exists
    size: int
    mime_type: str
    original_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "mime_type": self.mime_type,
            "original_name": self.original_name,
        }


class FileStorage(ABC):
    """
    Base class for upload storage backends.

    All failures surface as ``StorageError``.
    """

    @abstractmethod
    def store(self, user_id: str, data: bytes, original_name: str, mime_type: str) -> StoredFile:
        """Persist bytes for a user and return the handle."""
        pass

    @abstractmethod
    def read(self, path: str) -> bytes:
        """Read back the bytes behind a handle."""
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a stored file and its metadata."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def get_metadata(self, path: str) -> Optional[StoredFile]:
        """Metadata recorded at store time, or None if missing."""
        pass
