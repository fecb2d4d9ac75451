"""Compress every material texture of a glTF scene.

`TexturePipeline` loads the scene, infers per-image usage, probes the
selected encoder once and encodes each referenced image, keeping the
original payload when an encode fails.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

from tqdm import tqdm

from .config import TOOL_PATH_ENV, PipelineConfig
from .core import (
    ImageResult, ImageUsage, ProcessRunner, Scene, SceneImage,
    analyze_images, image_output_name, load_image_data, load_scene,
    mime_extension, save_manifest, write_file,
)
from .phases.encode import Encoder, create_encoder

logger = logging.getLogger("texture_pipeline")


class EncoderUnavailableError(RuntimeError):
    """Raised when the selected encoder cannot be run and fallback is disallowed."""


class EncodeFailureError(RuntimeError):
    """Raised after a batch when images fell back and fallback is disallowed."""


class TexturePipeline:
    """Run usage inference and texture compression for one scene."""

    def __init__(self, config: PipelineConfig, runner: Optional[ProcessRunner] = None):
        self.config = config
        self.encoder: Encoder = create_encoder(config, runner=runner)
        self.results: List[ImageResult] = []
        self._results_lock = threading.Lock()

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _format_bytes(num_bytes: int) -> str:
        size = float(num_bytes)
        for unit in ("B", "KiB", "MiB", "GiB"):
            if size < 1024.0 or unit == "GiB":
                if unit == "B":
                    return f"{int(size)} {unit}"
                return f"{size:.2f} {unit}"
            size /= 1024.0
        return f"{int(num_bytes)} B"

    def _output_names(self, scene: Scene) -> List[str]:
        """Assign each image a unique output stem."""
        names = []
        seen = set()
        for image in scene.images:
            base = image_output_name(image)
            name = base
            if name in seen:
                name = f"{base}_{image.index}"
                counter = 1
                while name in seen:
                    name = f"{base}_{image.index}_{counter}"
                    counter += 1
            seen.add(name)
            names.append(name)
        return names

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.config.output_dir, self.config.manifest_name)

    # ──────────────────────────────────────────
    # Per-image processing
    # ──────────────────────────────────────────

    def _keep_original(self, result: ImageResult, data: bytes, name: str,
                       mime_type: str, reason: str) -> ImageResult:
        out_path = os.path.join(self.config.output_dir, name + mime_extension(mime_type))
        if not write_file(out_path, data):
            result.status = "failed"
            result.error = f"{reason}; cannot write {out_path}"
            logger.error(
                "[compress] FAILED image=%d (%s): %s", result.index, name, result.error
            )
            return result
        result.status = "fallback"
        result.error = reason
        result.output_path = out_path
        result.output_bytes = len(data)
        logger.warning(
            "[compress] FALLBACK image=%d (%s): %s; kept original",
            result.index, name, reason,
        )
        return result

    def process_image(self, scene: Scene, image: SceneImage, usage: ImageUsage,
                      name: str, encoder_available: bool = True) -> ImageResult:
        """Encode one image and write its output file."""
        result = ImageResult(
            index=image.index, name=name,
            srgb=usage.srgb, normal_map=usage.normal_map,
        )
        try:
            data, mime_type = load_image_data(scene, image)
        except ValueError as exc:
            result.status = "failed"
            result.error = str(exc)
            logger.error("[compress] FAILED image=%d (%s): %s", image.index, name, exc)
            return result

        result.mime_type = mime_type
        result.source_bytes = len(data)

        if self.config.dry_run:
            cmd = self.encoder.build_command(
                f"<input{mime_extension(mime_type)}>",
                f"<output{self.encoder.output_extension}>",
                usage,
                self.config.compression.quality,
                self.config.compression.scale,
                self.config.compression.uastc,
            )
            result.status = "planned"
            logger.info("[DRY RUN] image=%d (%s): %s", image.index, name, " ".join(cmd))
            return result

        if not encoder_available:
            return self._keep_original(
                result, data, name, mime_type, f"{self.encoder.tool_name} unavailable"
            )

        encoded = self.encoder.encode(
            data, mime_type, usage,
            quality=self.config.compression.quality,
            scale=self.config.compression.scale,
            uastc=self.config.compression.uastc,
        )
        if not encoded.ok:
            reason = f"{self.encoder.tool_name} failed"
            if encoded.returncode is not None:
                reason += f" (exit code {encoded.returncode})"
            return self._keep_original(result, data, name, mime_type, reason)

        out_path = os.path.join(
            self.config.output_dir, name + self.encoder.output_extension
        )
        if not write_file(out_path, encoded.data):
            result.status = "failed"
            result.error = f"cannot write {out_path}"
            return result

        result.status = "encoded"
        result.output_path = out_path
        result.output_bytes = len(encoded.data)
        logger.info(
            "[compress] OK image=%d (%s): srgb=%s normal_map=%s size=%s->%s",
            image.index, name, usage.srgb, usage.normal_map,
            self._format_bytes(result.source_bytes),
            self._format_bytes(result.output_bytes),
        )
        return result

    # ──────────────────────────────────────────
    # Batch
    # ──────────────────────────────────────────

    def _select_images(self, scene: Scene,
                       usage: List[ImageUsage]) -> Tuple[list, List[ImageResult]]:
        names = self._output_names(scene)
        jobs = []
        skipped = []
        for image in scene.images:
            if usage[image.index].is_referenced:
                jobs.append((image, usage[image.index], names[image.index]))
            else:
                logger.debug("Image %d is not used by any material; skipping.", image.index)
                skipped.append(ImageResult(
                    index=image.index, name=names[image.index], status="skipped",
                ))
        return jobs, skipped

    def run(self, scene_path: str) -> List[ImageResult]:
        """Process every material image of *scene_path*; returns per-image results."""
        scene = load_scene(scene_path)
        usage = analyze_images(scene.materials, len(scene.images))
        jobs, skipped = self._select_images(scene, usage)
        self.results = list(skipped)

        if not jobs:
            logger.info("No material textures to compress in %s", scene_path)
            return self.results

        encoder_available = True
        if not self.config.dry_run:
            encoder_available = self.encoder.check()
            if not encoder_available:
                msg = (
                    f"Encoder '{self.encoder.executable}' is not available. "
                    f"Install it on PATH or set "
                    f"{TOOL_PATH_ENV[self.config.backend]}."
                )
                logger.error(msg)
                if self.config.compression.fail_on_fallback:
                    raise EncoderUnavailableError(msg)
            os.makedirs(self.config.output_dir, exist_ok=True)

        def _process(job):
            image, image_usage, name = job
            return self.process_image(scene, image, image_usage, name, encoder_available)

        workers = max(1, int(self.config.max_workers))
        desc = f"Encoding ({self.encoder.tool_name})"
        if workers <= 1:
            for job in tqdm(jobs, desc=desc):
                result = _process(job)
                with self._results_lock:
                    self.results.append(result)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(_process, job) for job in jobs]
                with tqdm(total=len(futures), desc=desc) as pbar:
                    for future in as_completed(futures):
                        result = future.result()
                        with self._results_lock:
                            self.results.append(result)
                        pbar.update(1)

        self.results.sort(key=lambda r: r.index)
        self._log_summary()

        if not self.config.dry_run:
            save_manifest(self.results, self.manifest_path)

        fallen_back = [r for r in self.results if r.status in ("fallback", "failed")]
        if fallen_back and self.config.compression.fail_on_fallback:
            raise EncodeFailureError(
                f"{len(fallen_back)} image(s) could not be encoded: "
                + ", ".join(r.name for r in fallen_back)
            )
        return self.results

    def _log_summary(self):
        counts = {}
        for r in self.results:
            counts[r.status] = counts.get(r.status, 0) + 1
        logger.info(
            "compress: %s",
            ", ".join(f"{status}={n}" for status, n in sorted(counts.items())),
        )

    @property
    def failed_images(self) -> int:
        return sum(1 for r in self.results if r.status == "failed")
