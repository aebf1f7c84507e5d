"""
material_classifier.py
======================

Pick a glTF alpha mode (and MASK cutoff) for a material from its parameter
documents, its texture channels and, as a last resort, the alpha content of
its base-color texture.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from material_params import MaterialLookup, iter_material_params
from source_model import SourceMaterial
from texture_decoder import load_rgba_array
from texture_resolver import TextureCache

DEFAULT_ALPHA_CUTOFF = 0.5


class AlphaMode(enum.Enum):
    OPAQUE = "OPAQUE"
    MASK = "MASK"
    BLEND = "BLEND"


class LegacyBlendMode(enum.IntEnum):
    NORMAL = 0
    TEX_EDGE = 1
    BLEND = 2
    WATER = 3
    ADD = 4
    SUB = 5
    MUL = 6
    ADD_MUL = 7
    SUB_MUL = 8
    WATER_WAVE = 9
    LS_NORMAL = 32
    LS_TEX_EDGE = 33
    LS_BLEND = 34
    LS_WATER = 35
    LS_ADD = 36
    LS_SUB = 37
    LS_MUL = 38
    LS_ADD_MUL = 39
    LS_SUB_MUL = 40
    LS_WATER_WAVE = 41


MASK_BLEND_MODES = frozenset({LegacyBlendMode.TEX_EDGE, LegacyBlendMode.LS_TEX_EDGE})
OPAQUE_BLEND_MODES = frozenset({LegacyBlendMode.NORMAL, LegacyBlendMode.LS_NORMAL})

# Substrings in a material's name/shader text that mark an opacity map as a
# cutout rather than a translucent surface.
MASK_HINTS: Tuple[str, ...] = ("alphatest", "cutout", "clip", "texedge")


@dataclass(frozen=True)
class AlphaAnalysis:
    has_transparency: bool
    is_binary_alpha: bool


Decision = Tuple[AlphaMode, float]


def normalize_alpha_cutoff(value: float) -> float:
    """Map an authored cutoff onto [0, 1]; 8-bit style values are rescaled."""
    if 1.0 < value <= 255.0:
        value /= 255.0
    return min(max(value, 0.0), 1.0)


def analyze_alpha(png_bytes: bytes) -> AlphaAnalysis:
    alpha = load_rgba_array(png_bytes)[:, :, 3]
    non_opaque = alpha[alpha < 255]
    has_transparency = non_opaque.size > 0
    is_binary = bool(np.all(non_opaque == 0))
    return AlphaAnalysis(has_transparency, has_transparency and is_binary)


def find_blend_mode(lookup: Optional[MaterialLookup]) -> Optional[int]:
    for param in iter_material_params(lookup):
        if "blendmode" not in param.name.lower():
            continue
        value = param.value.as_int()
        if value is not None:
            return value
    return None


def find_alpha_test(lookup: Optional[MaterialLookup]) -> Optional[float]:
    """Return the MASK cutoff if an alpha-test parameter is enabled, else None."""
    enabled = False
    cutoff = DEFAULT_ALPHA_CUTOFF

    for param in iter_material_params(lookup):
        name = param.name.lower()
        is_flag = "alphatest" in name or "alphaclip" in name
        is_cutoff = ("alpha" in name or "clip" in name) and (
            "cutoff" in name or "threshold" in name
        )

        if is_flag and param.value.as_bool():
            enabled = True

        if is_cutoff:
            value = param.value.as_float()
            if value is not None:
                enabled = True
                cutoff = normalize_alpha_cutoff(value)

    return cutoff if enabled else None


def has_mask_hint(material: SourceMaterial, lookup: Optional[MaterialLookup]) -> bool:
    flat = lookup.flat if lookup is not None else None
    text = " ".join(
        (
            material.name or "",
            material.shader or "",
            flat.shader_path if flat is not None else "",
            flat.source_path if flat is not None else "",
        )
    ).lower()
    return any(hint in text for hint in MASK_HINTS)


class MaterialClassifier:
    """Alpha-mode selection with per-texture memoized alpha scans."""

    def __init__(self, cache: TextureCache) -> None:
        self._cache = cache
        self._alpha_by_key: Dict[str, AlphaAnalysis] = {}
        self._rules: Tuple[Callable[..., Optional[Decision]], ...] = (
            self._from_blend_mode,
            self._from_alpha_test,
            self._from_opacity_channel,
            self._from_base_color_alpha,
        )

    def alpha_analysis(self, key: str) -> Optional[AlphaAnalysis]:
        cached = self._alpha_by_key.get(key)
        if cached is not None:
            return cached

        texture = self._cache.resolve(key)
        if texture is None:
            return None

        analysis = analyze_alpha(texture.png_bytes)
        self._alpha_by_key[key] = analysis
        return analysis

    def classify(
        self,
        material: SourceMaterial,
        lookup: Optional[MaterialLookup],
        base_color_key: Optional[str],
        opacity_key: Optional[str],
    ) -> Decision:
        for rule in self._rules:
            decision = rule(material, lookup, base_color_key, opacity_key)
            if decision is not None:
                return decision
        return AlphaMode.OPAQUE, DEFAULT_ALPHA_CUTOFF

    def _from_blend_mode(self, material, lookup, base_color_key, opacity_key) -> Optional[Decision]:
        blend_mode = find_blend_mode(lookup)
        if blend_mode is None:
            return None
        if blend_mode in MASK_BLEND_MODES:
            return AlphaMode.MASK, DEFAULT_ALPHA_CUTOFF
        if blend_mode in OPAQUE_BLEND_MODES:
            return None
        return AlphaMode.BLEND, DEFAULT_ALPHA_CUTOFF

    def _from_alpha_test(self, material, lookup, base_color_key, opacity_key) -> Optional[Decision]:
        cutoff = find_alpha_test(lookup)
        if cutoff is None:
            return None
        return AlphaMode.MASK, cutoff

    def _from_opacity_channel(self, material, lookup, base_color_key, opacity_key) -> Optional[Decision]:
        if not opacity_key:
            return None
        if has_mask_hint(material, lookup):
            return AlphaMode.MASK, DEFAULT_ALPHA_CUTOFF
        return AlphaMode.BLEND, DEFAULT_ALPHA_CUTOFF

    def _from_base_color_alpha(self, material, lookup, base_color_key, opacity_key) -> Optional[Decision]:
        if not base_color_key:
            return None
        analysis = self.alpha_analysis(base_color_key)
        if analysis is None or not analysis.has_transparency:
            return None
        mode = AlphaMode.MASK if analysis.is_binary_alpha else AlphaMode.BLEND
        return mode, DEFAULT_ALPHA_CUTOFF
