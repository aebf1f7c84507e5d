"""
texture_synthesizer.py
======================

Derive glTF-ready textures that the source data does not contain directly:

  - normal maps repacked from the engine's two-channel tangent-space layout
    into a standard RGB normal map;
  - roughness maps pulled out of a normal map's blue channel, where the
    engine stores inverse roughness;
  - base-color textures with a separate opacity map baked into alpha.

Derived textures are registered in the session's texture cache under the
source key plus a fixed suffix, and every derivation is memoized per source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np
from PIL import UnidentifiedImageError

from texture_decoder import load_rgba_array, rgba_array_to_png
from texture_resolver import TextureCache, TextureData

NORMAL_SUFFIX = "__glb_normal"
ROUGHNESS_SUFFIX = "__glb_roughness"
ALPHA_SUFFIX = "__glb_alpha_"

# Mean |blue - implied blue| (0..1 scale) above which the blue channel is
# treated as packed roughness rather than a reconstructed normal Z.
PACKED_ROUGHNESS_THRESHOLD = 0.08
# Roughly this many samples per axis are inspected when measuring it.
PACKED_ROUGHNESS_SAMPLES_PER_AXIS = 64


class SynthesisError(ValueError):
    pass


@dataclass(frozen=True)
class DerivedNormal:
    normal_key: Optional[str]
    roughness_key: Optional[str]
    has_packed_roughness: bool


@dataclass(frozen=True)
class RepackedNormal:
    normal_png: bytes
    roughness_png: Optional[bytes]


def _to_byte(values: np.ndarray) -> np.ndarray:
    return np.round(np.clip(values, 0.0, 1.0) * 255.0).astype(np.uint8)


def reconstruct_normal_z(nx: np.ndarray, ny: np.ndarray) -> np.ndarray:
    return np.sqrt(np.maximum(0.0, 1.0 - nx * nx - ny * ny))


def measure_blue_discrepancy(pixels: np.ndarray) -> float:
    """Mean distance between the stored blue channel and the blue a pure
    tangent-space normal map would hold, over a strided sample grid."""
    height, width = pixels.shape[:2]
    if height == 0 or width == 0:
        return 0.0
    step_y = max(1, height // PACKED_ROUGHNESS_SAMPLES_PER_AXIS)
    step_x = max(1, width // PACKED_ROUGHNESS_SAMPLES_PER_AXIS)
    sample = pixels[::step_y, ::step_x].astype(np.float32) / 255.0

    nx = sample[:, :, 0] * 2.0 - 1.0
    ny = sample[:, :, 1] * 2.0 - 1.0
    implied_blue = reconstruct_normal_z(nx, ny) * 0.5 + 0.5
    return float(np.mean(np.abs(sample[:, :, 2] - implied_blue)))


def repack_normal_map(png_bytes: bytes) -> RepackedNormal:
    try:
        pixels = load_rgba_array(png_bytes)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise SynthesisError(f"Cannot decode normal texture: {exc}") from exc

    channels = pixels.astype(np.float32) / 255.0
    nx = channels[:, :, 0] * 2.0 - 1.0
    ny = channels[:, :, 1] * 2.0 - 1.0
    nz = reconstruct_normal_z(nx, ny)

    normal = np.empty_like(pixels)
    normal[:, :, 0] = _to_byte(nx * 0.5 + 0.5)
    normal[:, :, 1] = _to_byte(ny * 0.5 + 0.5)
    normal[:, :, 2] = _to_byte(nz * 0.5 + 0.5)
    normal[:, :, 3] = 255

    roughness_png: Optional[bytes] = None
    discrepancy = measure_blue_discrepancy(pixels)
    if discrepancy > PACKED_ROUGHNESS_THRESHOLD:
        # glTF reads roughness from G; the source stores inverse roughness in B.
        roughness = np.zeros_like(pixels)
        roughness[:, :, 1] = 255 - pixels[:, :, 2]
        roughness[:, :, 3] = 255
        roughness_png = rgba_array_to_png(roughness)
    else:
        logging.debug("Blue channel matches normal Z (discrepancy %.4f)", discrepancy)

    return RepackedNormal(rgba_array_to_png(normal), roughness_png)


def merge_opacity_into_base_color(base_png: bytes, opacity_png: bytes) -> bytes:
    try:
        base = load_rgba_array(base_png)
        opacity = load_rgba_array(opacity_png)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise SynthesisError(f"Cannot decode texture: {exc}") from exc

    if base.shape != opacity.shape:
        raise SynthesisError(
            f"Size mismatch {base.shape[1]}x{base.shape[0]} vs "
            f"{opacity.shape[1]}x{opacity.shape[0]}"
        )

    # Opacity maps without authored alpha carry the mask in their red channel.
    use_alpha = bool(np.any(opacity[:, :, 3] < 255))
    merged = base.copy()
    merged[:, :, 3] = opacity[:, :, 3] if use_alpha else opacity[:, :, 0]
    return rgba_array_to_png(merged)


class TextureSynthesizer:
    def __init__(self, cache: TextureCache, warn: Callable[[str], None]) -> None:
        self._cache = cache
        self._warn = warn
        self._derived_normal_by_source: Dict[str, DerivedNormal] = {}
        self._composite_by_pair: Dict[Tuple[str, str], str] = {}

    def derive_normal(self, source_key: str, source: TextureData) -> DerivedNormal:
        cached = self._derived_normal_by_source.get(source_key)
        if cached is not None:
            return cached

        try:
            repacked = repack_normal_map(source.png_bytes)
        except SynthesisError as exc:
            logging.debug("Normal repack failed for %s: %s", source_key, exc)
            self._warn(f"Failed to post-process normal texture: {source_key}")
            derived = DerivedNormal(None, None, False)
        else:
            normal_key = f"{source_key}{NORMAL_SUFFIX}"
            self._cache.add(TextureData(normal_key, repacked.normal_png))

            roughness_key: Optional[str] = None
            if repacked.roughness_png is not None:
                roughness_key = f"{source_key}{ROUGHNESS_SUFFIX}"
                self._cache.add(TextureData(roughness_key, repacked.roughness_png))
            derived = DerivedNormal(normal_key, roughness_key, roughness_key is not None)

        self._derived_normal_by_source[source_key] = derived
        return derived

    def composite_opacity(self, base_color_key: Optional[str], opacity_key: Optional[str]) -> Optional[str]:
        """Return the key of the texture to use as base color once the
        opacity map has been folded into it."""
        if not opacity_key:
            return base_color_key
        if not base_color_key:
            return opacity_key
        if base_color_key == opacity_key:
            return base_color_key

        pair = (base_color_key, opacity_key)
        existing = self._composite_by_pair.get(pair)
        if existing is not None:
            return existing

        base = self._cache.resolve(base_color_key)
        opacity = self._cache.resolve(opacity_key)
        if base is None or opacity is None:
            self._warn(
                f"Failed to merge opacity map into base color: {base_color_key} + {opacity_key}"
            )
            self._composite_by_pair[pair] = base_color_key
            return base_color_key

        try:
            merged_png = merge_opacity_into_base_color(base.png_bytes, opacity.png_bytes)
        except SynthesisError as exc:
            logging.debug("Opacity merge skipped for %s + %s: %s", base_color_key, opacity_key, exc)
            self._warn(
                f"Failed to merge opacity map into base color: {base_color_key} + {opacity_key}"
            )
            self._composite_by_pair[pair] = base_color_key
            return base_color_key

        composite_key = f"{base_color_key}{ALPHA_SUFFIX}{opacity_key}"
        self._cache.add(TextureData(composite_key, merged_png))
        self._composite_by_pair[pair] = composite_key
        return composite_key
