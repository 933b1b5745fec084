"""
Upload storage.

Only the read/write contract matters to the pipeline; ``LocalFileStorage``
is the bundled backend.
"""

from .base import FileStorage, StoredFile
from .local import LocalFileStorage

__all__ = ["FileStorage", "LocalFileStorage", "StoredFile"]
