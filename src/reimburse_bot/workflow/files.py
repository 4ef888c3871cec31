"""
Transient receipt files on local disk.
"""

import logging
import os
import re
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class TempFileStore:
    """
    Writes receipts to a scratch directory and deletes them again.

    discard() is idempotent: deleting an already-deleted file is a no-op.
    """

    def __init__(self, directory: Path | str | None = None):
        self.directory = Path(directory) if directory else Path(tempfile.gettempdir())

    def write(self, filename: str, data: bytes) -> str:
        """Persist receipt bytes and return the file path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        safe_name = _UNSAFE_CHARS.sub("_", filename or "receipt")[:100]
        fd, path = tempfile.mkstemp(
            prefix=f"receipt_{int(time.time() * 1000)}_",
            suffix=f"_{safe_name}",
            dir=self.directory,
        )
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        logger.debug("Stored receipt %s (%d bytes)", path, len(data))
        return path

    def discard(self, path: str | None) -> bool:
        """
        Delete a transient file.

        Returns:
            True if a file was removed
        """
        if not path:
            return False
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not delete temp file %s: %s", path, e)
            return False
        logger.debug("Deleted temp file %s", path)
        return True
