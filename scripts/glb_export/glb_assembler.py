"""
glb_assembler.py
================

Append-only builder for a single-buffer glTF 2.0 document and the GLB framing
around it.

Every entity (buffer view, accessor, image, sampler, texture, material) is
appended once and referenced by its position in the owning list; the typed
index aliases below keep those position spaces apart.
"""

from __future__ import annotations

import json
import struct
from typing import Any, Dict, List, NewType, Optional, Sequence, Tuple

import numpy as np

GLTF_MAGIC = 0x46546C67  # "glTF"
GLTF_VERSION = 2
JSON_CHUNK_TYPE = 0x4E4F534A  # "JSON"
BIN_CHUNK_TYPE = 0x004E4942  # "BIN\0"

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

FLOAT = 5126
UNSIGNED_INT = 5125

LINEAR = 9729
LINEAR_MIPMAP_LINEAR = 9987
REPEAT = 10497

GENERATOR = "FLVER GLB Exporter"

BufferViewIndex = NewType("BufferViewIndex", int)
AccessorIndex = NewType("AccessorIndex", int)
ImageIndex = NewType("ImageIndex", int)
SamplerIndex = NewType("SamplerIndex", int)
TextureIndex = NewType("TextureIndex", int)
MaterialIndex = NewType("MaterialIndex", int)

_TYPE_BY_WIDTH = {1: "SCALAR", 2: "VEC2", 3: "VEC3", 4: "VEC4"}


class GlbFormatError(ValueError):
    pass


def align4(value: int) -> int:
    return (value + 3) & ~3


class GlbBuilder:
    def __init__(self) -> None:
        self.binary = bytearray()
        self.buffer_views: List[Dict[str, Any]] = []
        self.accessors: List[Dict[str, Any]] = []
        self.images: List[Dict[str, Any]] = []
        self.samplers: List[Dict[str, Any]] = []
        self.textures: List[Dict[str, Any]] = []
        self.materials: List[Dict[str, Any]] = []
        self.primitives: List[Dict[str, Any]] = []
        self._texture_by_key: Dict[str, TextureIndex] = {}
        self._texture_by_hash: Dict[str, TextureIndex] = {}

    # -- raw storage -------------------------------------------------------

    def add_buffer_view(self, payload: bytes, target: Optional[int] = None) -> BufferViewIndex:
        padding = align4(len(self.binary)) - len(self.binary)
        if padding:
            self.binary.extend(b"\x00" * padding)

        view: Dict[str, Any] = {
            "buffer": 0,
            "byteOffset": len(self.binary),
            "byteLength": len(payload),
        }
        if target is not None:
            view["target"] = target
        self.binary.extend(payload)

        index = BufferViewIndex(len(self.buffer_views))
        self.buffer_views.append(view)
        return index

    # -- accessors ---------------------------------------------------------

    def add_accessor(
        self,
        view: BufferViewIndex,
        component_type: int,
        count: int,
        element_type: str,
        bounds: Optional[Tuple[Sequence[float], Sequence[float]]] = None,
    ) -> AccessorIndex:
        accessor: Dict[str, Any] = {
            "bufferView": view,
            "componentType": component_type,
            "count": count,
            "type": element_type,
        }
        if bounds is not None:
            accessor["min"] = list(bounds[0])
            accessor["max"] = list(bounds[1])

        index = AccessorIndex(len(self.accessors))
        self.accessors.append(accessor)
        return index

    def add_float_accessor(
        self,
        values: np.ndarray,
        target: int = ARRAY_BUFFER,
        bounds: Optional[Tuple[Sequence[float], Sequence[float]]] = None,
    ) -> AccessorIndex:
        """Append an (N, width) float array as a VEC2/VEC3 accessor."""
        width = values.shape[1] if values.ndim > 1 else 1
        payload = np.ascontiguousarray(values, dtype="<f4").tobytes()
        view = self.add_buffer_view(payload, target)
        return self.add_accessor(view, FLOAT, int(values.shape[0]), _TYPE_BY_WIDTH[width], bounds)

    def add_index_accessor(self, indices: np.ndarray) -> AccessorIndex:
        payload = np.ascontiguousarray(indices, dtype="<u4").tobytes()
        view = self.add_buffer_view(payload, ELEMENT_ARRAY_BUFFER)
        return self.add_accessor(view, UNSIGNED_INT, int(indices.shape[0]), "SCALAR")

    # -- textures ----------------------------------------------------------

    def ensure_sampler(self) -> SamplerIndex:
        if not self.samplers:
            self.samplers.append(
                {
                    "magFilter": LINEAR,
                    "minFilter": LINEAR_MIPMAP_LINEAR,
                    "wrapS": REPEAT,
                    "wrapT": REPEAT,
                }
            )
        return SamplerIndex(0)

    def add_image(self, name: str, png_bytes: bytes) -> ImageIndex:
        view = self.add_buffer_view(png_bytes)
        index = ImageIndex(len(self.images))
        self.images.append({"name": name, "bufferView": view, "mimeType": "image/png"})
        return index

    def texture_for(self, key: str, png_bytes: bytes, content_hash: str) -> TextureIndex:
        """Return the texture for *key*, sharing one entry per content hash."""
        existing = self._texture_by_key.get(key)
        if existing is not None:
            return existing

        existing = self._texture_by_hash.get(content_hash)
        if existing is not None:
            self._texture_by_key[key] = existing
            return existing

        sampler = self.ensure_sampler()
        image = self.add_image(key, png_bytes)
        index = TextureIndex(len(self.textures))
        self.textures.append({"sampler": sampler, "source": image, "name": key})

        self._texture_by_hash[content_hash] = index
        self._texture_by_key[key] = index
        return index

    # -- scene -------------------------------------------------------------

    def add_material(self, material: Dict[str, Any]) -> MaterialIndex:
        index = MaterialIndex(len(self.materials))
        self.materials.append(material)
        return index

    def add_primitive(
        self,
        attributes: Dict[str, AccessorIndex],
        indices: AccessorIndex,
        material: Optional[MaterialIndex] = None,
    ) -> None:
        primitive: Dict[str, Any] = {"attributes": dict(attributes), "indices": indices}
        if material is not None:
            primitive["material"] = material
        self.primitives.append(primitive)

    def to_document(self, model_name: str) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "asset": {"version": "2.0", "generator": GENERATOR},
            "scene": 0,
            "scenes": [{"nodes": [0]}],
            "nodes": [{"name": model_name, "mesh": 0}],
            "meshes": [{"name": model_name, "primitives": self.primitives}],
            "buffers": [{"byteLength": len(self.binary)}],
            "bufferViews": self.buffer_views,
            "accessors": self.accessors,
        }
        if self.materials:
            document["materials"] = self.materials
        if self.textures:
            document["images"] = self.images
            document["samplers"] = self.samplers
            document["textures"] = self.textures
        return document

    def build(self, model_name: str) -> bytes:
        payload = json.dumps(self.to_document(model_name), separators=(",", ":")).encode("utf-8")
        return write_glb(payload, bytes(self.binary))


def write_glb(json_bytes: bytes, binary_blob: bytes) -> bytes:
    json_chunk = json_bytes + b" " * (align4(len(json_bytes)) - len(json_bytes))
    bin_chunk = binary_blob + b"\x00" * (align4(len(binary_blob)) - len(binary_blob))
    total_length = 12 + 8 + len(json_chunk) + 8 + len(bin_chunk)

    out = bytearray()
    out += struct.pack("<III", GLTF_MAGIC, GLTF_VERSION, total_length)
    out += struct.pack("<II", len(json_chunk), JSON_CHUNK_TYPE)
    out += json_chunk
    out += struct.pack("<II", len(bin_chunk), BIN_CHUNK_TYPE)
    out += bin_chunk
    return bytes(out)


def parse_glb(data: bytes) -> Tuple[Dict[str, Any], bytes]:
    """Split a GLB into its JSON document and BIN chunk, validating framing."""
    if len(data) < 20:
        raise GlbFormatError("GLB too small")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLTF_MAGIC:
        raise GlbFormatError("Invalid GLB magic")
    if version != GLTF_VERSION:
        raise GlbFormatError(f"Unsupported GLB version: {version}")
    if total_length != len(data):
        raise GlbFormatError(f"GLB length mismatch: header {total_length}, actual {len(data)}")

    offset = 12
    json_chunk: Optional[bytes] = None
    bin_chunk = b""
    while offset + 8 <= len(data):
        chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
        offset += 8
        chunk_end = offset + chunk_length
        if chunk_end > len(data):
            raise GlbFormatError("GLB chunk exceeds file size")
        if chunk_type == JSON_CHUNK_TYPE and json_chunk is None:
            json_chunk = data[offset:chunk_end]
        elif chunk_type == BIN_CHUNK_TYPE and not bin_chunk:
            bin_chunk = data[offset:chunk_end]
        offset = chunk_end

    if json_chunk is None:
        raise GlbFormatError("GLB missing JSON chunk")

    document = json.loads(json_chunk.decode("utf-8").rstrip(" "))
    if not isinstance(document, dict):
        raise GlbFormatError("GLB JSON root is not an object")
    return document, bin_chunk
