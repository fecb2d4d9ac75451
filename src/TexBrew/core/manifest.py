"""Per-image result records and the CSV manifest written after a run."""

import csv
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Iterable

from .io import TempFile

logger = logging.getLogger("texture_pipeline")


@dataclass
class ImageResult:
    """Outcome of processing one scene image."""

    index: int
    name: str
    mime_type: str = ""
    srgb: bool = False
    normal_map: bool = False
    status: str = "pending"  # encoded | fallback | skipped | failed | planned
    output_path: str = ""
    source_bytes: int = 0
    output_bytes: int = 0
    error: str = ""


MANIFEST_COLUMNS = [f.name for f in fields(ImageResult)]


def save_manifest(results: Iterable[ImageResult], path: str):
    """Write one CSV row per image, replacing *path* only once the rows are on disk."""
    target_dir = os.path.dirname(path) or "."
    os.makedirs(target_dir, exist_ok=True)
    rows = [asdict(r) for r in sorted(results, key=lambda r: r.index)]
    with TempFile(".csv", dir=target_dir) as tmp:
        with open(tmp.path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=MANIFEST_COLUMNS)
            writer.writeheader()
            writer.writerows(rows)
        os.replace(tmp.path, path)
    logger.info("Manifest saved: %s (%d images)", path, len(rows))
