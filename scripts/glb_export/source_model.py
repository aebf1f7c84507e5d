"""
source_model.py
===============

Read-only view of a parsed FLVER-style model as handed over by the model
parser: materials with texture slots, meshes with vertices and face-sets, and
the flat texture reference list gathered by the host for the model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from material_params import FlatMaterialParams, LegacyMaterialParams

PRIMITIVE_RESTART = 0xFFFF


@dataclass(frozen=True)
class TextureSlot:
    param_name: str
    path: Optional[str] = None


@dataclass
class SourceMaterial:
    name: str
    shader: str
    textures: List[TextureSlot] = field(default_factory=list)


@dataclass
class SourceVertex:
    position: Tuple[float, float, float]
    normal: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    uvs: List[Tuple[float, float]] = field(default_factory=list)


@dataclass
class FaceSet:
    indices: List[int]
    triangle_strip: bool = False

    def triangulate(self, allow_primitive_restarts: bool) -> List[int]:
        """Return a flat triangle-list index sequence for this face-set."""
        if not self.triangle_strip:
            return list(self.indices)
        return triangulate_strip(self.indices, allow_primitive_restarts)


def triangulate_strip(indices: Sequence[int], allow_primitive_restarts: bool) -> List[int]:
    triangles: List[int] = []
    flip = False
    for i in range(len(indices) - 2):
        vi1, vi2, vi3 = indices[i], indices[i + 1], indices[i + 2]
        if allow_primitive_restarts and PRIMITIVE_RESTART in (vi1, vi2, vi3):
            flip = False
            continue

        if vi1 != vi2 and vi1 != vi3 and vi2 != vi3:
            if flip:
                triangles.extend((vi3, vi2, vi1))
            else:
                triangles.extend((vi1, vi2, vi3))
        flip = not flip
    return triangles


@dataclass
class SourceMesh:
    vertices: List[SourceVertex] = field(default_factory=list)
    face_sets: List[FaceSet] = field(default_factory=list)
    material_index: int = 0


@dataclass
class SourceModel:
    materials: List[SourceMaterial] = field(default_factory=list)
    meshes: List[SourceMesh] = field(default_factory=list)


@dataclass(frozen=True)
class TextureReference:
    """One entry of the host's texture list for the model being exported."""

    name: str
    virtual_path: str = ""
    material_string: str = ""
    legacy: Optional[LegacyMaterialParams] = None
    flat: Optional[FlatMaterialParams] = None
