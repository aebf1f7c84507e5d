"""
texture_decoder.py
==================

DDS -> PNG decoding for textures pulled out of texture containers, plus the
small PNG/RGBA helpers the synthesis and classification stages share.
"""

from __future__ import annotations

import io
import struct
from typing import Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

DDS_MAGIC = b"DDS "

# Decoded pixel layouts accepted for re-encoding: 32-bit with alpha, 24-bit
# RGB, and the two 8-bit luminance-like layouts.
SUPPORTED_RASTER_MODES = ("RGBA", "RGB", "L", "LA")


class TextureDecodeError(ValueError):
    pass


class UnsupportedFormatError(TextureDecodeError):
    pass


def open_dds(data: bytes) -> Image.Image:
    """Decode DDS bytes (block-compressed or raw) into a loaded Pillow image."""
    if not data.startswith(DDS_MAGIC):
        raise TextureDecodeError("Payload is not a DDS texture")
    try:
        image = Image.open(io.BytesIO(data), formats=("DDS",))
        image.load()
    except UnidentifiedImageError as exc:
        raise TextureDecodeError("Unrecognized DDS payload") from exc
    except Image.DecompressionBombError as exc:
        raise TextureDecodeError(f"Declared size too large: {exc}") from exc
    except NotImplementedError as exc:
        # Raised by the DDS plugin for pixel formats it cannot decompress.
        raise UnsupportedFormatError(str(exc)) from exc
    except (OSError, ValueError, struct.error) as exc:
        raise TextureDecodeError(f"Corrupted DDS payload: {exc}") from exc
    return image


def raster_to_png(image: Image.Image) -> bytes:
    if image.mode not in SUPPORTED_RASTER_MODES:
        raise UnsupportedFormatError(f"Unsupported pixel layout: {image.mode}")
    return encode_png(image)


def dds_to_png(data: bytes) -> bytes:
    return raster_to_png(open_dds(data))


def encode_png(image: Image.Image) -> bytes:
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


def png_size(png_bytes: bytes) -> Tuple[int, int]:
    with Image.open(io.BytesIO(png_bytes)) as img:
        return img.size


def load_rgba_array(png_bytes: bytes) -> np.ndarray:
    """Return an (height, width, 4) uint8 array for an encoded image."""
    with Image.open(io.BytesIO(png_bytes)) as img:
        rgba = img.convert("RGBA")
    return np.asarray(rgba, dtype=np.uint8)


def rgba_array_to_png(pixels: np.ndarray) -> bytes:
    return encode_png(Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)))

