"""Infer per-image color usage from the materials that reference it."""

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass
class ImageUsage:
    """Usage flags for one scene image.

    ``srgb`` is set when the image is sampled as base color, diffuse or
    emissive color. ``normal_map`` is set when it is sampled as a normal
    map. Both can be set at once when content reuses an image for
    conflicting roles.
    """

    srgb: bool = False
    normal_map: bool = False

    @property
    def is_referenced(self) -> bool:
        return self.srgb or self.normal_map


def _resolve_image_index(ref, image_count: int) -> Optional[int]:
    if ref is None or ref.texture is None or ref.texture.image is None:
        return None
    index = ref.texture.image.index
    if not (0 <= index < image_count):
        return None
    return index


def analyze_images(materials: Iterable, image_count: int) -> List[ImageUsage]:
    """Return one ``ImageUsage`` per image, populated in a single pass."""
    images = [ImageUsage() for _ in range(image_count)]

    for material in materials:
        if material.pbr_metallic_roughness is not None:
            index = _resolve_image_index(
                material.pbr_metallic_roughness.base_color_texture, image_count
            )
            if index is not None:
                images[index].srgb = True

        if material.pbr_specular_glossiness is not None:
            index = _resolve_image_index(
                material.pbr_specular_glossiness.diffuse_texture, image_count
            )
            if index is not None:
                images[index].srgb = True

        index = _resolve_image_index(material.emissive_texture, image_count)
        if index is not None:
            images[index].srgb = True

        index = _resolve_image_index(material.normal_texture, image_count)
        if index is not None:
            images[index].normal_map = True

    return images
