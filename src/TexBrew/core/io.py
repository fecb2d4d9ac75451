"""Buffered file I/O and scoped temporary files."""

import logging
import os
import tempfile
from typing import Optional
from uuid import uuid4

logger = logging.getLogger("texture_pipeline")

_TEMP_PREFIX = "texbrew-"


def read_file(path: str) -> Optional[bytes]:
    """Read a whole file; returns None (and logs) when it cannot be read."""
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        logger.debug("Failed to read %s: %s", path, exc)
        return None


def write_file(path: str, data: bytes) -> bool:
    """Write *data* to *path* verbatim; returns False (and logs) on failure."""
    try:
        with open(path, "wb") as f:
            f.write(data)
        return True
    except OSError as exc:
        logger.error("Failed to write %s: %s", path, exc)
        return False


class TempFile:
    """Uniquely named temp file path, removed when the scope exits.

    The file itself is not created; external tools are expected to write
    to ``path``. Whatever exists at ``path`` on exit is deleted, on every
    exit path.
    """

    def __init__(self, suffix: str = "", dir: Optional[str] = None):
        base_dir = dir or tempfile.gettempdir()
        self.path = os.path.join(base_dir, f"{_TEMP_PREFIX}{uuid4().hex}{suffix}")

    def __enter__(self) -> "TempFile":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.remove()
        return False

    def remove(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove temp file %s: %s", self.path, exc)

    def __repr__(self) -> str:
        return f"TempFile({self.path!r})"
