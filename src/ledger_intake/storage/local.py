"""
Local filesystem storage backend.

Files are laid out as ``{base_dir}/{user_id}/{timestamp}-{random}{ext}`` with a
``.meta.json`` sidecar holding the original name and MIME type.
"""

import json
import logging
import re
import secrets
import time
from pathlib import Path
from typing import Optional

from ..errors import StorageError
from .base import FileStorage, StoredFile

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"
_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]")


class LocalFileStorage(FileStorage):
    """Stores uploads under a base directory on local disk."""

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir).resolve()
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to initialize storage at {self.base_dir}: {e}") from e

    def _user_dir(self, user_id: str) -> Path:
        segment = _SAFE_SEGMENT.sub("_", user_id) or "_"
        return self.base_dir / segment

    def _resolve(self, path: str) -> Path:
        """Resolve a handle, refusing anything outside the base directory."""
        resolved = Path(path).resolve()
        if not resolved.is_relative_to(self.base_dir):
            raise StorageError(f"Path is outside storage root: {path}")
        return resolved

    @staticmethod
    def _unique_name(original_name: str) -> str:
        suffix = Path(original_name).suffix.lower()
        if not re.fullmatch(r"\.[a-z0-9]{1,8}", suffix):
            suffix = ""
        return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{suffix}"

    def store(self, user_id: str, data: bytes, original_name: str, mime_type: str) -> StoredFile:
        user_dir = self._user_dir(user_id)
        file_path = user_dir / self._unique_name(original_name)
        stored = StoredFile(
            path=str(file_path),
            size=len(data),
            mime_type=mime_type,
            original_name=original_name,
        )
        try:
            user_dir.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(data)
            Path(f"{file_path}{META_SUFFIX}").write_text(json.dumps(stored.to_dict(), indent=2))
        except OSError as e:
            logger.error("Failed to store file for user %s: %s", user_id, e)
            raise StorageError(f"Failed to store file: {e}") from e

        logger.debug("Stored file %s (%d bytes)", file_path, len(data))
        return stored

    def read(self, path: str) -> bytes:
        file_path = self._resolve(path)
        try:
            return file_path.read_bytes()
        except OSError as e:
            logger.error("Failed to read file %s: %s", path, e)
            raise StorageError(f"Failed to read file: {e}") from e

    def delete(self, path: str) -> None:
        file_path = self._resolve(path)
        try:
            file_path.unlink()
        except OSError as e:
            logger.error("Failed to delete file %s: %s", path, e)
            raise StorageError(f"Failed to delete file: {e}") from e
        Path(f"{file_path}{META_SUFFIX}").unlink(missing_ok=True)
        logger.debug("Deleted file %s", file_path)

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except StorageError:
            return False

    def get_metadata(self, path: str) -> Optional[StoredFile]:
        meta_path = Path(f"{self._resolve(path)}{META_SUFFIX}")
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read metadata: {e}") from e
        return StoredFile(
            path=data["path"],
            size=data["size"],
            mime_type=data["mime_type"],
            original_name=data["original_name"],
        )
