"""
model_json.py
=============

Load the JSON model dump consumed by the exporter CLI.

Layout:
    {
      "name": "c1000",
      "virtual_path": "chr/c1000.flver",
      "uses_flat_params": false,
      "materials": [
        {"name": "...", "shader": "...mtd",
         "textures": [{"param": "g_DiffuseTexture", "path": "..."}]}
      ],
      "meshes": [
        {"material_index": 0,
         "vertices": [{"position": [x, y, z], "normal": [x, y, z],
                       "uvs": [[u, v]]}],
         "face_sets": [{"indices": [0, 1, 2], "triangle_strip": false}]}
      ],
      "texture_references": [
        {"name": "...", "virtual_path": "...", "material_string": "...",
         "legacy": {...}, "flat": {...}}
      ],
      "material_bank": {"legacy": {"<key>": {...}}, "flat": {"<key>": {...}}}
    }

Legacy documents: {"params": {name: value}, "textures": [{"type", "path", "extended"}]}.
Flat documents: {"params": {name: value}, "samplers": [{"type", "path"}],
"shader_path", "source_path"}.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

from material_params import (
    FlatMaterialParams,
    LegacyMaterialParams,
    LegacyTextureEntry,
    MaterialParam,
    ParamValue,
    SamplerEntry,
)
from source_model import (
    FaceSet,
    SourceMaterial,
    SourceMesh,
    SourceModel,
    SourceVertex,
    TextureReference,
    TextureSlot,
)


class ModelDumpError(Exception):
    pass


@dataclass
class ModelDump:
    name: str
    virtual_path: str
    model: SourceModel
    texture_references: List[TextureReference] = field(default_factory=list)
    legacy_by_key: Dict[str, LegacyMaterialParams] = field(default_factory=dict)
    flat_by_key: Dict[str, FlatMaterialParams] = field(default_factory=dict)
    uses_flat_params: bool = False


def _expect(value: Any, kind: type, where: str) -> Any:
    if not isinstance(value, kind):
        raise ModelDumpError(f"{where}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _vector(raw: Any, size: int, where: str) -> Tuple[float, ...]:
    values = _expect(raw, list, where)
    if len(values) < size:
        raise ModelDumpError(f"{where}: expected {size} components, got {len(values)}")
    try:
        return tuple(float(v) for v in values[:size])
    except (TypeError, ValueError) as exc:
        raise ModelDumpError(f"{where}: {exc}") from exc


def _params(raw: Any, where: str) -> List[MaterialParam]:
    params: List[MaterialParam] = []
    for name, value in _expect(raw or {}, dict, where).items():
        wrapped = ParamValue.from_python(value)
        if wrapped is None:
            raise ModelDumpError(f"{where}.{name}: unsupported parameter value {value!r}")
        params.append(MaterialParam(name, wrapped))
    return params


def parse_legacy_params(raw: Any, where: str) -> LegacyMaterialParams:
    doc = _expect(raw, dict, where)
    textures = [
        LegacyTextureEntry(
            type=str(entry.get("type", "")),
            path=str(entry.get("path") or ""),
            extended=bool(entry.get("extended", False)),
        )
        for entry in (_expect(e, dict, f"{where}.textures") for e in doc.get("textures", []))
    ]
    return LegacyMaterialParams(_params(doc.get("params"), f"{where}.params"), textures)


def parse_flat_params(raw: Any, where: str) -> FlatMaterialParams:
    doc = _expect(raw, dict, where)
    samplers = [
        SamplerEntry(type=str(entry.get("type", "")), path=str(entry.get("path") or ""))
        for entry in (_expect(e, dict, f"{where}.samplers") for e in doc.get("samplers", []))
    ]
    return FlatMaterialParams(
        params=_params(doc.get("params"), f"{where}.params"),
        samplers=samplers,
        shader_path=str(doc.get("shader_path") or ""),
        source_path=str(doc.get("source_path") or ""),
    )


def _material(raw: Any, index: int) -> SourceMaterial:
    where = f"materials[{index}]"
    doc = _expect(raw, dict, where)
    slots = []
    for slot_index, slot in enumerate(doc.get("textures", [])):
        slot = _expect(slot, dict, f"{where}.textures[{slot_index}]")
        path = slot.get("path")
        slots.append(TextureSlot(str(slot.get("param", "")), str(path) if path is not None else None))
    return SourceMaterial(str(doc.get("name") or ""), str(doc.get("shader") or ""), slots)


def _mesh(raw: Any, index: int) -> SourceMesh:
    where = f"meshes[{index}]"
    doc = _expect(raw, dict, where)

    vertices: List[SourceVertex] = []
    for vertex_index, vertex in enumerate(doc.get("vertices", [])):
        vwhere = f"{where}.vertices[{vertex_index}]"
        vertex = _expect(vertex, dict, vwhere)
        normal = vertex.get("normal")
        vertices.append(
            SourceVertex(
                position=_vector(vertex.get("position"), 3, f"{vwhere}.position"),
                normal=_vector(normal, 3, f"{vwhere}.normal") if normal is not None else (0.0, 0.0, 0.0),
                uvs=[_vector(uv, 2, f"{vwhere}.uvs") for uv in vertex.get("uvs", [])],
            )
        )

    face_sets: List[FaceSet] = []
    for face_index, face_set in enumerate(doc.get("face_sets", [])):
        fwhere = f"{where}.face_sets[{face_index}]"
        face_set = _expect(face_set, dict, fwhere)
        indices = _expect(face_set.get("indices", []), list, f"{fwhere}.indices")
        if not all(isinstance(i, int) and not isinstance(i, bool) and i >= 0 for i in indices):
            raise ModelDumpError(f"{fwhere}.indices: expected non-negative integers")
        face_sets.append(FaceSet(list(indices), bool(face_set.get("triangle_strip", False))))

    material_index = doc.get("material_index", 0)
    if not isinstance(material_index, int) or isinstance(material_index, bool):
        raise ModelDumpError(f"{where}.material_index: expected int")
    return SourceMesh(vertices, face_sets, material_index)


def _texture_reference(raw: Any, index: int) -> TextureReference:
    where = f"texture_references[{index}]"
    doc = _expect(raw, dict, where)
    legacy = doc.get("legacy")
    flat = doc.get("flat")
    return TextureReference(
        name=str(doc.get("name") or ""),
        virtual_path=str(doc.get("virtual_path") or ""),
        material_string=str(doc.get("material_string") or ""),
        legacy=parse_legacy_params(legacy, f"{where}.legacy") if legacy is not None else None,
        flat=parse_flat_params(flat, f"{where}.flat") if flat is not None else None,
    )


def parse_model_dump(raw: Any) -> ModelDump:
    doc = _expect(raw, dict, "dump")

    materials = [_material(m, i) for i, m in enumerate(_expect(doc.get("materials", []), list, "materials"))]
    meshes = [_mesh(m, i) for i, m in enumerate(_expect(doc.get("meshes", []), list, "meshes"))]
    references = [
        _texture_reference(r, i)
        for i, r in enumerate(_expect(doc.get("texture_references", []), list, "texture_references"))
    ]

    bank = _expect(doc.get("material_bank") or {}, dict, "material_bank")
    legacy_by_key = {
        key.lower(): parse_legacy_params(value, f"material_bank.legacy.{key}")
        for key, value in _expect(bank.get("legacy") or {}, dict, "material_bank.legacy").items()
    }
    flat_by_key = {
        key.lower(): parse_flat_params(value, f"material_bank.flat.{key}")
        for key, value in _expect(bank.get("flat") or {}, dict, "material_bank.flat").items()
    }

    virtual_path = str(doc.get("virtual_path") or "")
    name = str(doc.get("name") or "") or Path(virtual_path.replace("\\", "/")).stem

    return ModelDump(
        name=name,
        virtual_path=virtual_path,
        model=SourceModel(materials, meshes),
        texture_references=references,
        legacy_by_key=legacy_by_key,
        flat_by_key=flat_by_key,
        uses_flat_params=bool(doc.get("uses_flat_params", False)),
    )


def load_model_dump(path: Path) -> ModelDump:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ModelDumpError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ModelDumpError(f"Invalid JSON in {path}: {exc}") from exc
    return parse_model_dump(raw)
