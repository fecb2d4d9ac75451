"""Command-line interface for the texture pipeline."""

import argparse
import logging
import os
import sys

from . import __version__
from .config import Backend, PipelineConfig
from .core import setup_logging

logger = logging.getLogger("texture_pipeline")


def main(argv=None):
    """Parse CLI arguments, run the pipeline, and map failures to exit codes."""
    parser = argparse.ArgumentParser(
        prog="TexBrew",
        description="Compress glTF material textures with basisu or toktx",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  TexBrew scene.gltf -o ./textures
  TexBrew scene.glb --ktx2 --quality 80 --scale 0.5
  TexBrew scene.glb --uastc --workers 4 --verbose
  TexBrew scene.gltf --dry-run
  TexBrew --generate-config -c texbrew.yaml

Environment:
  BASISU_PATH   executable used instead of 'basisu'
  TOKTX_PATH    executable used instead of 'toktx'
        """
    )
    parser.add_argument("scene", nargs="?", help="Input .gltf or .glb file")
    parser.add_argument("--output", "-o", help="Output directory")
    parser.add_argument("--config", "-c", help="Path to config YAML")
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument("--ktx2", dest="backend", action="store_const",
                         const=Backend.KTX.value, help="Encode with toktx (.ktx2)")
    backend.add_argument("--basis", dest="backend", action="store_const",
                         const=Backend.BASISU.value, help="Encode with basisu (.basis)")
    parser.add_argument("--quality", "-q", type=int, help="Quality 0..100")
    parser.add_argument("--scale", type=float, help="Downscale factor in (0, 1] (ktx only)")
    parser.add_argument("--uastc", action="store_true",
                        help="Use the high-quality UASTC mode")
    parser.add_argument("--workers", type=int, help="Max parallel encoder processes")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print encoder commands without running them")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log every encoder command and its exit status")
    parser.add_argument("--generate-config", action="store_true",
                        help="Generate default config YAML")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)

    if args.generate_config:
        config = PipelineConfig()
        dest = args.config or "texbrew.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "texbrew.yaml")
        config.to_yaml(dest)
        logger.info("Generated default %s", dest)
        print(f"Generated default {dest}")
        return

    if not args.scene:
        parser.error("a scene file is required")

    # Make config warnings visible before full logging is configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = PipelineConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = PipelineConfig()

    # CLI overrides
    if args.output:
        config.output_dir = args.output
    if args.backend:
        config.encoder.backend = args.backend
    if args.quality is not None:
        config.compression.quality = args.quality
    if args.scale is not None:
        config.compression.scale = args.scale
    if args.uastc:
        config.compression.uastc = True
    if args.workers is not None:
        config.max_workers = args.workers
    if args.dry_run:
        config.dry_run = True
    if args.verbose:
        config.encoder.verbose = True
    if args.log_level:
        config.log_level = args.log_level
    config.encoder.apply_environment()

    if not os.path.isfile(args.scene):
        logger.error("Scene file not found: %s", args.scene)
        print(f"Error: Scene file not found: {args.scene}")
        sys.exit(1)

    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    log_file = None
    if not config.dry_run:
        os.makedirs(config.output_dir, exist_ok=True)
        log_file = os.path.join(config.output_dir, "texbrew.log")
    setup_logging(config.log_level, log_file)

    from .pipeline import (
        TexturePipeline,
        EncoderUnavailableError,
        EncodeFailureError,
    )
    pipeline = TexturePipeline(config)

    try:
        pipeline.run(args.scene)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        sys.exit(130)
    except ValueError as exc:
        logger.error("Cannot load scene: %s", exc)
        print(f"Error: {exc}")
        sys.exit(1)
    except EncoderUnavailableError as exc:
        logger.error("Pipeline aborted: %s", exc)
        print(f"Error: {exc}")
        sys.exit(2)
    except EncodeFailureError as exc:
        logger.error("Pipeline aborted: %s", exc)
        print(f"Error: {exc}")
        sys.exit(1)

    if pipeline.failed_images:
        sys.exit(1)


if __name__ == "__main__":
    main()
