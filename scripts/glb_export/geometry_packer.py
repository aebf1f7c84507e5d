"""
geometry_packer.py
==================

Flatten source meshes into tightly packed little-endian vertex/index arrays
ready to be appended to the GLB binary chunk.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from source_model import PRIMITIVE_RESTART, FaceSet, SourceMesh

FLOAT32_LE = np.dtype("<f4")
UINT32_LE = np.dtype("<u4")


class FaceSetMode(enum.Enum):
    FIRST_ONLY = "first_only"


@dataclass
class PackedMesh:
    positions: np.ndarray
    normals: Optional[np.ndarray]
    texcoords: Optional[np.ndarray]
    indices: np.ndarray
    bounds_min: List[float]
    bounds_max: List[float]
    material_index: int

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])


def flip_winding(indices: Sequence[int]) -> List[int]:
    """Swap the 2nd and 3rd index of every triangle (CW <-> CCW).

    A trailing incomplete triangle is dropped."""
    flipped: List[int] = []
    for i in range(0, len(indices) - 2, 3):
        flipped.extend((indices[i], indices[i + 2], indices[i + 1]))
    return flipped


def select_face_set(mesh: SourceMesh, mode: FaceSetMode) -> Optional[FaceSet]:
    if mode is FaceSetMode.FIRST_ONLY:
        return mesh.face_sets[0] if mesh.face_sets else None
    raise ValueError(f"Unsupported face-set mode: {mode}")


def pack_mesh(
    mesh: SourceMesh,
    mode: FaceSetMode,
    warn: Callable[[str], None],
) -> Optional[PackedMesh]:
    """Return packed arrays for *mesh*, or None when it has nothing to draw."""
    if not mesh.vertices:
        return None

    face_set = select_face_set(mesh, mode)
    if face_set is None:
        warn("Skipped mesh with no FaceSet.")
        return None

    vertex_count = len(mesh.vertices)
    triangles = face_set.triangulate(allow_primitive_restarts=vertex_count < PRIMITIVE_RESTART)
    if len(triangles) < 3:
        warn("Skipped mesh with no triangles after triangulation.")
        return None

    positions = np.array([v.position for v in mesh.vertices], dtype=FLOAT32_LE).reshape(vertex_count, 3)
    normals = np.array([v.normal for v in mesh.vertices], dtype=FLOAT32_LE).reshape(vertex_count, 3)
    texcoords = np.zeros((vertex_count, 2), dtype=FLOAT32_LE)
    has_uv = False
    for i, vertex in enumerate(mesh.vertices):
        if vertex.uvs:
            has_uv = True
            texcoords[i] = vertex.uvs[0][:2]

    has_normal = bool(np.any(np.einsum("ij,ij->i", normals, normals) > 0.0))

    return PackedMesh(
        positions=positions,
        normals=normals if has_normal else None,
        texcoords=texcoords if has_uv else None,
        indices=np.array(flip_winding(triangles), dtype=UINT32_LE),
        bounds_min=[float(v) for v in positions.min(axis=0)],
        bounds_max=[float(v) for v in positions.max(axis=0)],
        material_index=mesh.material_index,
    )
