"""Small in-memory fixtures shared by the glb_export unit tests."""

from __future__ import annotations

import io
import struct
import zipfile
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from asset_source import DDS_MAGIC, ZIP_MAGIC, ContainerKind, MalformedContainerError
from material_params import FlatMaterialParams, LegacyMaterialParams
from texture_decoder import encode_png

DDSD_CAPS_HEIGHT_WIDTH_PIXELFORMAT = 0x100F
DDPF_RGB_ALPHAPIXELS = 0x41
DDSCAPS_TEXTURE = 0x1000


def make_dds_header(width: int, height: int) -> bytes:
    return struct.pack(
        "<4s7I44s8I5I",
        DDS_MAGIC,
        124,
        DDSD_CAPS_HEIGHT_WIDTH_PIXELFORMAT,
        height,
        width,
        width * 4,
        0,
        0,
        b"\x00" * 44,
        32,
        DDPF_RGB_ALPHAPIXELS,
        0,
        32,
        0x00FF0000,
        0x0000FF00,
        0x000000FF,
        0xFF000000,
        DDSCAPS_TEXTURE,
        0,
        0,
        0,
        0,
    )


def make_dds(pixels: np.ndarray) -> bytes:
    """Uncompressed 32-bit DDS for an (H, W, 4) RGBA uint8 array."""
    height, width = pixels.shape[:2]
    bgra = np.ascontiguousarray(pixels[:, :, [2, 1, 0, 3]], dtype=np.uint8)
    return make_dds_header(width, height) + bgra.tobytes()


def solid_rgba(width: int, height: int, rgba: Sequence[int]) -> np.ndarray:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :] = rgba
    return pixels


def make_png(pixels: np.ndarray) -> bytes:
    return encode_png(Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)))


def make_zip(entries: Dict[str, bytes]) -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as archive:
        for name, payload in entries.items():
            archive.writestr(name, payload)
    return out.getvalue()


class MemoryAssetSource:
    """Asset source backed by a dict of virtual path -> bytes."""

    def __init__(
        self,
        files: Optional[Dict[str, bytes]] = None,
        legacy_by_key: Optional[Dict[str, LegacyMaterialParams]] = None,
        flat_by_key: Optional[Dict[str, FlatMaterialParams]] = None,
        uses_flat_params: bool = False,
    ) -> None:
        self.files = {k.lower(): v for k, v in (files or {}).items()}
        self.legacy_by_key = legacy_by_key or {}
        self.flat_by_key = flat_by_key or {}
        self._uses_flat_params = uses_flat_params
        self.reads: List[str] = []

    @property
    def uses_flat_params(self) -> bool:
        return self._uses_flat_params

    def read_file(self, virtual_path: str) -> Optional[bytes]:
        self.reads.append(virtual_path)
        return self.files.get(virtual_path.lower())

    def container_kind(self, virtual_path: str) -> ContainerKind:
        return ContainerKind.ARCHIVE if virtual_path.lower().endswith(".zip") else ContainerKind.NONE

    def iter_archive_entries(self, data: bytes) -> Iterable[Tuple[str, bytes]]:
        return self._unzip(data)

    def iter_container_textures(self, data: bytes, name: str) -> Iterable[Tuple[str, bytes]]:
        if data.startswith(DDS_MAGIC):
            return [(PurePosixPath(name).name, data)]
        if data.startswith(ZIP_MAGIC):
            return self._unzip(data)
        raise MalformedContainerError(name)

    def legacy_params(self, material_key: str) -> Optional[LegacyMaterialParams]:
        return self.legacy_by_key.get(material_key)

    def flat_params(self, material_key: str) -> Optional[FlatMaterialParams]:
        return self.flat_by_key.get(material_key)

    def texture_virtual_path(self, model_virtual_path: str, texture_path: str) -> str:
        model_dir = PurePosixPath(model_virtual_path).parent
        stem = PurePosixPath(texture_path.replace("\\", "/")).name.split(".", 1)[0]
        return (model_dir / f"{stem}.dds").as_posix()

    @staticmethod
    def _unzip(data: bytes) -> List[Tuple[str, bytes]]:
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                return [(info.filename, archive.read(info)) for info in archive.infolist()]
        except zipfile.BadZipFile as exc:
            raise MalformedContainerError(str(exc)) from exc
