"""Source image MIME type <-> file extension lookup."""

import io
import logging

from PIL import Image

logger = logging.getLogger("texture_pipeline.mime")

# Ordered; the first entry for a MIME type is its canonical extension.
MIME_TYPES = (
    ("image/jpeg", ".jpg"),
    ("image/jpeg", ".jpeg"),
    ("image/png", ".png"),
)

# Extension used for temp inputs whose MIME type is not in MIME_TYPES.
FALLBACK_EXTENSION = ".raw"


def infer_mime_type(path: str) -> str:
    """Return the MIME type for *path* based on its extension, or ``""``."""
    dot = path.rfind(".")
    if dot < 0:
        return ""

    ext = path[dot:].lower()
    for mime_type, extension in MIME_TYPES:
        if ext == extension:
            return mime_type
    return ""


def mime_extension(mime_type: str) -> str:
    """Return the file extension for *mime_type*.

    Never empty: unknown types map to ``FALLBACK_EXTENSION`` so callers can
    always name a temp file.
    """
    for known_type, extension in MIME_TYPES:
        if known_type == mime_type:
            return extension
    return FALLBACK_EXTENSION


def sniff_mime_type(data: bytes) -> str:
    """Identify an image payload with Pillow; ``""`` when it cannot."""
    if not data:
        return ""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (OSError, ValueError) as exc:
        logger.debug("Pillow could not identify image payload: %s", exc)
        return ""
    return Image.MIME.get(fmt or "", "")
