"""
material_params.py
==================

Material parameter documents consumed by the GLB exporter.

Two document kinds exist per material key:
  - the legacy per-shader parameter list (MTD-style): named params plus a
    texture table whose "extended" entries carry explicit paths;
  - the newer flat binary-parameter list (MATBIN-style): named params plus
    sampler descriptions and the shader/source paths it was built from.

Parameter values are heterogeneous in the source data, so they are held as a
closed tagged variant with explicit widening coercions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple, Union, cast


class ParamKind(enum.Enum):
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    INT_ARRAY = "int[]"
    FLOAT_ARRAY = "float[]"


ParamPayload = Union[int, float, bool, Tuple[int, ...], Tuple[float, ...]]


@dataclass(frozen=True)
class ParamValue:
    kind: ParamKind
    value: ParamPayload

    @classmethod
    def of_int(cls, value: int) -> "ParamValue":
        return cls(ParamKind.INT, int(value))

    @classmethod
    def of_float(cls, value: float) -> "ParamValue":
        return cls(ParamKind.FLOAT, float(value))

    @classmethod
    def of_bool(cls, value: bool) -> "ParamValue":
        return cls(ParamKind.BOOL, bool(value))

    @classmethod
    def of_ints(cls, values: Sequence[int]) -> "ParamValue":
        return cls(ParamKind.INT_ARRAY, tuple(int(v) for v in values))

    @classmethod
    def of_floats(cls, values: Sequence[float]) -> "ParamValue":
        return cls(ParamKind.FLOAT_ARRAY, tuple(float(v) for v in values))

    @classmethod
    def from_python(cls, raw: object) -> Optional["ParamValue"]:
        """Wrap a plain JSON-ish value; returns None for unsupported shapes."""
        # bool before int: bool is an int subclass.
        if isinstance(raw, bool):
            return cls.of_bool(raw)
        if isinstance(raw, int):
            return cls.of_int(raw)
        if isinstance(raw, float):
            return cls.of_float(raw)
        if isinstance(raw, (list, tuple)):
            if all(isinstance(v, int) and not isinstance(v, bool) for v in raw):
                return cls.of_ints(raw)
            if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in raw):
                return cls.of_floats(raw)
        return None

    def _first(self) -> Optional[Union[int, float]]:
        if self.kind is ParamKind.BOOL:
            return 1 if self.value else 0
        if self.kind in (ParamKind.INT_ARRAY, ParamKind.FLOAT_ARRAY):
            values = cast(Tuple[Union[int, float], ...], self.value)
            return values[0] if values else None
        return cast(Union[int, float], self.value)

    def as_int(self) -> Optional[int]:
        first = self._first()
        return None if first is None else int(first)

    def as_float(self) -> Optional[float]:
        first = self._first()
        return None if first is None else float(first)

    def as_bool(self) -> Optional[bool]:
        if self.kind is ParamKind.BOOL:
            return bool(self.value)
        number = self.as_float()
        return None if number is None else number > 0.0


@dataclass(frozen=True)
class MaterialParam:
    name: str
    value: ParamValue


@dataclass(frozen=True)
class LegacyTextureEntry:
    type: str
    path: str = ""
    extended: bool = False


@dataclass(frozen=True)
class SamplerEntry:
    type: str
    path: str = ""


@dataclass
class LegacyMaterialParams:
    """Per-shader parameter document (MTD-style)."""

    params: List[MaterialParam] = field(default_factory=list)
    textures: List[LegacyTextureEntry] = field(default_factory=list)


@dataclass
class FlatMaterialParams:
    """Flat binary-parameter document (MATBIN-style)."""

    params: List[MaterialParam] = field(default_factory=list)
    samplers: List[SamplerEntry] = field(default_factory=list)
    shader_path: str = ""
    source_path: str = ""


@dataclass(frozen=True)
class MaterialLookup:
    legacy: Optional[LegacyMaterialParams] = None
    flat: Optional[FlatMaterialParams] = None


def iter_material_params(lookup: Optional[MaterialLookup]) -> Iterator[MaterialParam]:
    """Yield named params from the legacy document first, then the flat one."""
    if lookup is None:
        return
    for document in (lookup.legacy, lookup.flat):
        if document is None:
            continue
        for param in document.params:
            if param.name and param.name.strip():
                yield param
