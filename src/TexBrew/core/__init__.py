"""Core utilities -- re-exports all public symbols for convenience."""

from .mime import (
    MIME_TYPES, FALLBACK_EXTENSION,
    infer_mime_type, mime_extension, sniff_mime_type,
)
from .usage import ImageUsage, analyze_images
from .io import read_file, write_file, TempFile
from .process import ProcessRunner
from .scene import (
    Scene, SceneImage, SceneTexture, TextureRef,
    MetallicRoughness, SpecularGlossiness, Material,
    load_scene, parse_document, load_image_data, image_output_name,
)
from .manifest import ImageResult, MANIFEST_COLUMNS, save_manifest
from .logging import setup_logging

__all__ = [
    "MIME_TYPES", "FALLBACK_EXTENSION",
    "infer_mime_type", "mime_extension", "sniff_mime_type",
    "ImageUsage", "analyze_images",
    "read_file", "write_file", "TempFile",
    "ProcessRunner",
    "Scene", "SceneImage", "SceneTexture", "TextureRef",
    "MetallicRoughness", "SpecularGlossiness", "Material",
    "load_scene", "parse_document", "load_image_data", "image_output_name",
    "ImageResult", "MANIFEST_COLUMNS", "save_manifest",
    "setup_logging",
]
