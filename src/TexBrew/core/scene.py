"""Minimal glTF 2.0 scene model: materials, textures and images.

Only the parts of the document needed to infer texture usage and to pull
out image payloads are modelled. Geometry, animation and node data are
ignored.
"""

import base64
import json
import logging
import os
import re
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import unquote, unquote_to_bytes

from .io import read_file
from .mime import infer_mime_type, sniff_mime_type

logger = logging.getLogger("texture_pipeline.scene")

_GLB_MAGIC = b"glTF"
_GLB_HEADER = struct.Struct("<4sII")
_GLB_CHUNK_HEADER = struct.Struct("<II")
_GLB_CHUNK_JSON = 0x4E4F534A
_GLB_CHUNK_BIN = 0x004E4942

_SPEC_GLOSS_EXT = "KHR_materials_pbrSpecularGlossiness"
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<b64>;base64)?,(?P<payload>.*)$", re.S)


@dataclass(eq=False)
class SceneImage:
    """Image entry; ``index`` is its position in ``Scene.images``."""

    index: int
    name: str = ""
    uri: str = ""
    mime_type: str = ""
    buffer_view: Optional[int] = None


@dataclass(eq=False)
class SceneTexture:
    image: Optional[SceneImage] = None


@dataclass(eq=False)
class TextureRef:
    texture: Optional[SceneTexture] = None


@dataclass(eq=False)
class MetallicRoughness:
    base_color_texture: Optional[TextureRef] = None


@dataclass(eq=False)
class SpecularGlossiness:
    diffuse_texture: Optional[TextureRef] = None


@dataclass(eq=False)
class Material:
    name: str = ""
    pbr_metallic_roughness: Optional[MetallicRoughness] = None
    pbr_specular_glossiness: Optional[SpecularGlossiness] = None
    emissive_texture: Optional[TextureRef] = None
    normal_texture: Optional[TextureRef] = None


@dataclass(eq=False)
class Scene:
    path: str = ""
    images: List[SceneImage] = field(default_factory=list)
    textures: List[SceneTexture] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    buffer_views: List[dict] = field(default_factory=list)
    buffers: List[dict] = field(default_factory=list)
    bin_chunk: Optional[bytes] = None

    @property
    def base_dir(self) -> str:
        return os.path.dirname(os.path.abspath(self.path)) if self.path else "."


def _split_glb(raw: bytes, path: str) -> Tuple[dict, Optional[bytes]]:
    if len(raw) < _GLB_HEADER.size:
        raise ValueError(f"GLB file '{path}' is truncated")
    magic, version, length = _GLB_HEADER.unpack_from(raw, 0)
    if magic != _GLB_MAGIC:
        raise ValueError(f"'{path}' is not a GLB file (bad magic)")
    if version != 2:
        raise ValueError(f"GLB file '{path}' has unsupported version {version}")
    if length > len(raw):
        raise ValueError(
            f"GLB file '{path}' declares {length} bytes but only {len(raw)} are present"
        )

    document = None
    bin_chunk = None
    offset = _GLB_HEADER.size
    while offset + _GLB_CHUNK_HEADER.size <= length:
        chunk_length, chunk_type = _GLB_CHUNK_HEADER.unpack_from(raw, offset)
        offset += _GLB_CHUNK_HEADER.size
        chunk = raw[offset:offset + chunk_length]
        if len(chunk) != chunk_length:
            raise ValueError(f"GLB file '{path}' has a truncated chunk")
        offset += chunk_length
        if chunk_type == _GLB_CHUNK_JSON and document is None:
            document = _parse_json(chunk, path)
        elif chunk_type == _GLB_CHUNK_BIN and bin_chunk is None:
            bin_chunk = chunk
        else:
            logger.debug("Skipping GLB chunk type 0x%08X in %s", chunk_type, path)

    if document is None:
        raise ValueError(f"GLB file '{path}' has no JSON chunk")
    return document, bin_chunk


def _parse_json(raw: bytes, path: str) -> dict:
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"Failed to parse glTF JSON '{path}': {exc}") from exc
    if not isinstance(document, dict):
        raise ValueError(
            f"glTF document '{path}' must be a JSON object, got {type(document).__name__}"
        )
    return document


def _list(document: dict, key: str) -> list:
    value = document.get(key)
    return value if isinstance(value, list) else []


def _lookup(items: list, index):
    if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(items):
        return items[index]
    return None


def _texture_ref(info, textures: List[SceneTexture]) -> Optional[TextureRef]:
    if not isinstance(info, dict):
        return None
    return TextureRef(texture=_lookup(textures, info.get("index")))


def parse_document(document: dict, path: str = "",
                   bin_chunk: Optional[bytes] = None) -> Scene:
    """Build a ``Scene`` from an already-decoded glTF JSON document."""
    scene = Scene(path=path, bin_chunk=bin_chunk)
    scene.buffers = [b if isinstance(b, dict) else {} for b in _list(document, "buffers")]
    scene.buffer_views = [
        v if isinstance(v, dict) else {} for v in _list(document, "bufferViews")
    ]

    for i, entry in enumerate(_list(document, "images")):
        entry = entry if isinstance(entry, dict) else {}
        view = entry.get("bufferView")
        scene.images.append(SceneImage(
            index=i,
            name=str(entry.get("name") or ""),
            uri=str(entry.get("uri") or ""),
            mime_type=str(entry.get("mimeType") or ""),
            buffer_view=view if isinstance(view, int) else None,
        ))

    for entry in _list(document, "textures"):
        entry = entry if isinstance(entry, dict) else {}
        scene.textures.append(
            SceneTexture(image=_lookup(scene.images, entry.get("source")))
        )

    for entry in _list(document, "materials"):
        entry = entry if isinstance(entry, dict) else {}
        material = Material(name=str(entry.get("name") or ""))

        pbr = entry.get("pbrMetallicRoughness")
        if isinstance(pbr, dict):
            material.pbr_metallic_roughness = MetallicRoughness(
                base_color_texture=_texture_ref(pbr.get("baseColorTexture"), scene.textures)
            )

        extensions = entry.get("extensions")
        spec_gloss = extensions.get(_SPEC_GLOSS_EXT) if isinstance(extensions, dict) else None
        if isinstance(spec_gloss, dict):
            material.pbr_specular_glossiness = SpecularGlossiness(
                diffuse_texture=_texture_ref(spec_gloss.get("diffuseTexture"), scene.textures)
            )

        material.emissive_texture = _texture_ref(entry.get("emissiveTexture"), scene.textures)
        material.normal_texture = _texture_ref(entry.get("normalTexture"), scene.textures)
        scene.materials.append(material)

    return scene


def load_scene(path: str) -> Scene:
    """Load a ``.gltf`` or ``.glb`` file."""
    raw = read_file(path)
    if raw is None:
        raise ValueError(f"Unable to read scene file '{path}'")

    if raw[:4] == _GLB_MAGIC:
        document, bin_chunk = _split_glb(raw, path)
    else:
        document, bin_chunk = _parse_json(raw, path), None

    scene = parse_document(document, path=path, bin_chunk=bin_chunk)
    logger.info(
        "Loaded %s: %d materials, %d textures, %d images",
        path, len(scene.materials), len(scene.textures), len(scene.images),
    )
    return scene


def _decode_data_uri(uri: str) -> Tuple[bytes, str]:
    match = _DATA_URI_RE.match(uri)
    if not match:
        raise ValueError("malformed data URI")
    payload = match.group("payload")
    if match.group("b64"):
        try:
            return base64.b64decode(payload, validate=False), match.group("mime")
        except ValueError as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
    return unquote_to_bytes(payload), match.group("mime")


def _load_buffer(scene: Scene, index: int) -> bytes:
    buffer = _lookup(scene.buffers, index)
    if not isinstance(buffer, dict):
        raise ValueError(f"buffer {index} does not exist")
    uri = buffer.get("uri")
    if not isinstance(uri, str) or not uri:
        if index == 0 and scene.bin_chunk is not None:
            return scene.bin_chunk
        raise ValueError(f"buffer {index} has no uri and no GLB binary chunk")
    if uri.startswith("data:"):
        return _decode_data_uri(uri)[0]
    data = read_file(os.path.join(scene.base_dir, unquote(uri)))
    if data is None:
        raise ValueError(f"buffer file '{uri}' cannot be read")
    return data


def _load_buffer_view(scene: Scene, index: int) -> bytes:
    view = _lookup(scene.buffer_views, index)
    if not isinstance(view, dict):
        raise ValueError(f"bufferView {index} does not exist")
    offset = view.get("byteOffset", 0)
    length = view.get("byteLength", 0)
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in (offset, length)):
        raise ValueError(f"bufferView {index} has a non-integer byteOffset or byteLength")
    data = _load_buffer(scene, view.get("buffer", 0))
    if offset < 0 or length < 0 or offset + length > len(data):
        raise ValueError(f"bufferView {index} is out of range of its buffer")
    return data[offset:offset + length]


def load_image_data(scene: Scene, image: SceneImage) -> Tuple[bytes, str]:
    """Return the encoded payload and MIME type of *image*.

    The MIME type comes from the image's ``mimeType``, then the data URI
    header or file extension, then content sniffing. It may be ``""`` for
    unrecognized content; the encoder treats that as a generic input.
    """
    mime_type = image.mime_type
    try:
        if image.uri.startswith("data:"):
            data, uri_mime = _decode_data_uri(image.uri)
            mime_type = mime_type or uri_mime
        elif image.uri:
            data = read_file(os.path.join(scene.base_dir, unquote(image.uri)))
            if data is None:
                raise ValueError(f"image file '{image.uri}' cannot be read")
            mime_type = mime_type or infer_mime_type(image.uri)
        elif image.buffer_view is not None:
            data = _load_buffer_view(scene, image.buffer_view)
        else:
            raise ValueError("image has neither uri nor bufferView")
    except ValueError as exc:
        raise ValueError(f"Image {image.index} ({image_output_name(image)}): {exc}") from exc

    if not mime_type:
        mime_type = sniff_mime_type(data)
    return data, mime_type


def image_output_name(image: SceneImage) -> str:
    """Return a filesystem-safe stem for the encoded image file."""
    base = image.name
    if not base and image.uri and not image.uri.startswith("data:"):
        base = os.path.splitext(os.path.basename(unquote(image.uri)))[0]
    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in base).strip("_")
    return safe or f"image{image.index}"
