"""Define typed configuration models for the texture pipeline.

Use `PipelineConfig` to load, validate, and persist runtime settings.
"""

import dataclasses
import os
import logging
import yaml
from dataclasses import dataclass, field
from typing import Mapping, Optional
from enum import Enum

from .core.io import TempFile

logger = logging.getLogger("texture_pipeline.config")


class Backend(Enum):
    """Enumerate supported external texture encoders."""

    BASISU = "basisu"
    KTX = "ktx"


# Environment variables that override each backend's executable.
TOOL_PATH_ENV = {
    Backend.BASISU: "BASISU_PATH",
    Backend.KTX: "TOKTX_PATH",
}


@dataclass
class EncoderConfig:
    """Store settings for locating and running the external encoder."""

    backend: str = "basisu"
    basisu_path: str = ""
    toktx_path: str = ""
    timeout_seconds: int = 0  # 0 = wait for the tool indefinitely
    verbose: bool = False

    def override_path(self, backend: Optional[Backend] = None) -> Optional[str]:
        """Return the configured executable override, or None for the bare name."""
        backend = backend or Backend(self.backend)
        value = self.basisu_path if backend is Backend.BASISU else self.toktx_path
        return value or None

    def apply_environment(self, environ: Optional[Mapping[str, str]] = None):
        """Fill empty tool paths from BASISU_PATH / TOKTX_PATH."""
        environ = os.environ if environ is None else environ
        if not self.basisu_path and environ.get(TOOL_PATH_ENV[Backend.BASISU]):
            self.basisu_path = environ[TOOL_PATH_ENV[Backend.BASISU]]
            logger.debug("Using basisu override from environment: %s", self.basisu_path)
        if not self.toktx_path and environ.get(TOOL_PATH_ENV[Backend.KTX]):
            self.toktx_path = environ[TOOL_PATH_ENV[Backend.KTX]]
            logger.debug("Using toktx override from environment: %s", self.toktx_path)


@dataclass
class CompressionConfig:
    """Store settings that shape every encode call."""

    quality: int = 50  # 0..100, rescaled to the encoder's 0..255 range
    scale: float = 1.0  # < 1 downscales (toktx only)
    uastc: bool = False
    fail_on_fallback: bool = False


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class PipelineConfig:
    """Master pipeline configuration."""

    config_version: int = 1
    output_dir: str = "./textures"
    temp_dir: str = ""
    manifest_name: str = "manifest.csv"
    max_workers: int = 1
    log_level: str = "INFO"
    dry_run: bool = False

    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)

    @property
    def backend(self) -> Backend:
        return Backend(self.encoder.backend)

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load pipeline configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write the configuration as YAML, e.g. for ``--generate-config``."""
        target_dir = os.path.dirname(path) or "."
        os.makedirs(target_dir, exist_ok=True)
        text = yaml.safe_dump(
            dataclasses.asdict(self), default_flow_style=False, sort_keys=False,
        )
        with TempFile(".yaml", dir=target_dir) as tmp:
            with open(tmp.path, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp.path, path)

    def validate(self):
        """Check every setting and raise one ValueError listing all problems."""
        errors = []

        if not (1 <= self.max_workers <= 128):
            errors.append("max_workers must be in [1, 128]")
        if not self.output_dir:
            errors.append("output_dir must be non-empty")
        if not self.manifest_name:
            errors.append("manifest_name must be non-empty")
        if self.temp_dir and not os.path.isdir(self.temp_dir):
            errors.append(f"temp_dir '{self.temp_dir}' is not a directory")

        # Encoder
        valid_backends = {b.value for b in Backend}
        if self.encoder.backend not in valid_backends:
            errors.append(
                f"encoder.backend must be one of {sorted(valid_backends)}, "
                f"got '{self.encoder.backend}'"
            )
        if self.encoder.timeout_seconds < 0:
            errors.append("encoder.timeout_seconds must be >= 0 (0 = no timeout)")

        # Compression
        if not (0 <= self.compression.quality <= 100):
            errors.append("compression.quality must be in [0, 100]")
        if not (0 < self.compression.scale <= 1.0):
            errors.append("compression.scale must be in (0, 1.0]")

        # --- Cross-field validation warnings (non-fatal) ---
        if (
            self.compression.scale < 1.0
            and self.encoder.backend == Backend.BASISU.value
        ):
            logger.warning(
                "compression.scale=%g is ignored by the basisu backend; "
                "use the ktx backend to downscale.",
                self.compression.scale,
            )
        if self.compression.uastc and self.encoder.backend == Backend.KTX.value:
            logger.info(
                "compression.uastc selects toktx UASTC level 2; "
                "compression.quality does not apply in this mode."
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _coerce(key: str, value, default):
    """Return ``(ok, value)`` for a YAML scalar landing on a field whose default is *default*."""
    if value is None:
        logger.warning("Config key '%s' is null; keeping default %r", key, default)
        return False, None
    expected = type(default)
    # YAML true/false must not satisfy an int field (bool subclasses int).
    if isinstance(value, bool) and expected is not bool:
        logger.warning("Config key '%s' expects %s, got a boolean", key, expected.__name__)
        return False, None
    if expected is float and isinstance(value, int):
        return True, float(value)
    if expected is int and isinstance(value, float) and value.is_integer():
        return True, int(value)
    if not isinstance(value, expected):
        logger.warning(
            "Config key '%s' expects %s, got %s (%r); keeping default",
            key, expected.__name__, type(value).__name__, value,
        )
        return False, None
    return True, value


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    """Overlay YAML mapping *data* onto dataclass *obj* in place."""
    settable = {f.name for f in dataclasses.fields(obj)}
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if key not in settable:
            logger.warning("Unknown config key ignored: '%s'", full_key)
            continue
        current = getattr(obj, key)
        if dataclasses.is_dataclass(current):
            if isinstance(value, dict):
                _merge_dict_to_dataclass(current, value, f"{full_key}.")
            else:
                logger.warning("Config section '%s' must be a mapping; ignored", full_key)
            continue
        ok, coerced = _coerce(full_key, value, current)
        if ok:
            setattr(obj, key, coerced)
