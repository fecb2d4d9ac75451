"""Compress scene images with external Basis Universal / KTX encoders.

Each encoder turns an image payload plus its inferred usage flags into a
command line for ``basisu`` or ``toktx``, runs it against a pair of scoped
temp files and returns the encoded bytes. The command-line policy lives
in ``build_command`` so it can be inspected without running a tool.
"""

import logging
import shlex
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import Backend, PipelineConfig
from ..core import ImageUsage, ProcessRunner, TempFile, mime_extension, read_file, write_file

logger = logging.getLogger("texture_pipeline.encode")


def encode_quality(quality: int) -> int:
    """Map a 0..100 quality to the encoders' 0..255 scale, rounding half up."""
    return (int(quality) * 255 + 50) // 100


def resolve_tool_command(tool_name: str, override_path: Optional[str] = None) -> str:
    """Return the executable to invoke: the override verbatim, else the bare name."""
    return override_path if override_path else tool_name


@dataclass
class EncodeResult:
    """Outcome of one encode call; ``data`` is empty unless ``ok``."""

    ok: bool
    data: bytes = b""
    command: List[str] = field(default_factory=list)
    returncode: Optional[int] = None


class Encoder:
    """Shared probe/encode flow; subclasses define the tool's command syntax."""

    tool_name = ""
    version_flag = ""
    output_extension = ""
    ignore_stdout = False
    ignore_stderr = False

    def __init__(self, override_path: Optional[str] = None,
                 runner: Optional[ProcessRunner] = None,
                 temp_dir: Optional[str] = None, verbose: bool = False):
        self.override_path = override_path
        self.runner = runner or ProcessRunner()
        self.temp_dir = temp_dir or None
        self.verbose = verbose

    @property
    def executable(self) -> str:
        return resolve_tool_command(self.tool_name, self.override_path)

    def _report(self, cmd: List[str], rc: int) -> None:
        level = logging.INFO if self.verbose else logging.DEBUG
        logger.log(level, "%s => %d", shlex.join(cmd), rc)

    def check(self) -> bool:
        """Return True when the tool runs and answers its version query."""
        cmd = [self.executable, self.version_flag]
        rc = self.runner.probe(cmd)
        self._report(cmd, rc)
        return rc == 0

    def build_command(self, input_path: str, output_path: str,
                      usage: ImageUsage, quality: int, scale: float,
                      uastc: bool) -> List[str]:
        raise NotImplementedError

    def encode(self, data: bytes, mime_type: str, usage: ImageUsage,
               quality: int, scale: float = 1.0, uastc: bool = False) -> EncodeResult:
        """Encode one image payload; never raises for tool or I/O failures."""
        with TempFile(mime_extension(mime_type), dir=self.temp_dir) as temp_input, \
                TempFile(self.output_extension, dir=self.temp_dir) as temp_output:
            if not write_file(temp_input.path, data):
                return EncodeResult(ok=False)

            cmd = self.build_command(
                temp_input.path, temp_output.path, usage, quality, scale, uastc
            )
            rc = self.runner.run(
                cmd, ignore_stdout=self.ignore_stdout, ignore_stderr=self.ignore_stderr
            )
            self._report(cmd, rc)
            if rc != 0:
                return EncodeResult(ok=False, command=cmd, returncode=rc)

            result = read_file(temp_output.path)
            if result is None:
                logger.error(
                    "%s exited successfully but produced no readable output",
                    self.tool_name,
                )
                return EncodeResult(ok=False, command=cmd, returncode=rc)
            return EncodeResult(ok=True, data=result, command=cmd, returncode=rc)


class BasisEncoder(Encoder):
    """Basis Universal command-line encoder (``basisu``) producing ``.basis``."""

    tool_name = "basisu"
    version_flag = "-version"
    output_extension = ".basis"
    ignore_stdout = True
    ignore_stderr = False

    def build_command(self, input_path, output_path, usage, quality, scale, uastc):
        # basisu has no downscale option; scale is ignored.
        cmd = [self.executable, "-q", str(encode_quality(quality)), "-mipmap"]

        if usage.normal_map:
            # separate_rg_to_color_alpha would be better but needs renderer support
            cmd.append("-normal_map")
        elif not usage.srgb:
            cmd.append("-linear")

        if uastc:
            cmd.append("-uastc")

        cmd += ["-file", input_path, "-output_file", output_path]
        return cmd


class KtxEncoder(Encoder):
    """KTX-Software encoder (``toktx``) producing Basis-compressed ``.ktx2``."""

    tool_name = "toktx"
    version_flag = "--version"
    output_extension = ".ktx2"
    ignore_stdout = False
    ignore_stderr = False

    def build_command(self, input_path, output_path, usage, quality, scale, uastc):
        cmd = [self.executable, "--2d", "--t2", "--automipmap"]

        if scale < 1:
            cmd += ["--scale", f"{scale:g}"]

        if uastc:
            cmd += ["--uastc", "2"]
        else:
            cmd += ["--bcmp", "--qlevel", str(encode_quality(quality))]
            if usage.normal_map:
                cmd.append("--normal_map")

        # Normal map data is never tagged sRGB, even when also used as color.
        if usage.srgb and not usage.normal_map:
            cmd.append("--srgb")
        else:
            cmd.append("--linear")

        cmd += [output_path, input_path]
        return cmd


_ENCODERS = {
    Backend.BASISU: BasisEncoder,
    Backend.KTX: KtxEncoder,
}


def create_encoder(config: PipelineConfig,
                   runner: Optional[ProcessRunner] = None) -> Encoder:
    """Build the encoder selected by ``config.encoder.backend``."""
    backend = config.backend
    if runner is None:
        runner = ProcessRunner(timeout=config.encoder.timeout_seconds)
    return _ENCODERS[backend](
        override_path=config.encoder.override_path(backend),
        runner=runner,
        temp_dir=config.temp_dir,
        verbose=config.encoder.verbose,
    )
