"""
asset_source.py
===============

Collaborator interface the exporter reads textures and material documents
through, and a directory-backed implementation of it.

The directory source maps virtual paths onto files below a root folder:
  - ``.zip`` files stand in for generic binary containers (BND-style);
  - a texture container is either a raw DDS file (one texture named after the
    file) or a zip of DDS files (TPF-style);
  - material-bank documents are supplied up front by the caller.
"""

from __future__ import annotations

import enum
import io
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Iterator, Optional, Protocol, Tuple

from material_params import FlatMaterialParams, LegacyMaterialParams

DDS_MAGIC = b"DDS "
ZIP_MAGIC = b"PK\x03\x04"


class ContainerKind(enum.Enum):
    NONE = "none"
    ARCHIVE = "archive"


class MalformedContainerError(Exception):
    pass


class AssetSource(Protocol):
    @property
    def uses_flat_params(self) -> bool: ...

    def read_file(self, virtual_path: str) -> Optional[bytes]: ...

    def container_kind(self, virtual_path: str) -> ContainerKind: ...

    def iter_archive_entries(self, data: bytes) -> Iterable[Tuple[str, bytes]]: ...

    def iter_container_textures(self, data: bytes, name: str) -> Iterable[Tuple[str, bytes]]: ...

    def legacy_params(self, material_key: str) -> Optional[LegacyMaterialParams]: ...

    def flat_params(self, material_key: str) -> Optional[FlatMaterialParams]: ...

    def texture_virtual_path(self, model_virtual_path: str, texture_path: str) -> str: ...


def _iter_zip(data: bytes) -> Iterator[Tuple[str, bytes]]:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                yield info.filename, archive.read(info)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as exc:
        raise MalformedContainerError(f"Invalid archive: {exc}") from exc


class DirectoryAssetSource:
    """Serve virtual paths from files below *root*."""

    def __init__(
        self,
        root: Path,
        legacy_by_key: Optional[Dict[str, LegacyMaterialParams]] = None,
        flat_by_key: Optional[Dict[str, FlatMaterialParams]] = None,
        uses_flat_params: bool = False,
    ) -> None:
        self.root = root.resolve()
        self._legacy_by_key = {k.lower(): v for k, v in (legacy_by_key or {}).items()}
        self._flat_by_key = {k.lower(): v for k, v in (flat_by_key or {}).items()}
        self._uses_flat_params = uses_flat_params

    @property
    def uses_flat_params(self) -> bool:
        return self._uses_flat_params

    def _locate(self, virtual_path: str) -> Optional[Path]:
        parts = [p for p in virtual_path.replace("\\", "/").split("/") if p and p != "."]
        if not parts or ".." in parts:
            return None

        direct = self.root.joinpath(*parts)
        if direct.is_file():
            return direct

        # Virtual paths are case-insensitive; walk the tree one level at a time.
        current = self.root
        for part in parts:
            if not current.is_dir():
                return None
            lowered = part.lower()
            match = next(
                (child for child in sorted(current.iterdir()) if child.name.lower() == lowered),
                None,
            )
            if match is None:
                return None
            current = match
        return current if current.is_file() else None

    def read_file(self, virtual_path: str) -> Optional[bytes]:
        path = self._locate(virtual_path)
        if path is None:
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            logging.warning("Failed to read '%s': %s", path, exc)
            return None

    def container_kind(self, virtual_path: str) -> ContainerKind:
        if virtual_path.lower().endswith(".zip"):
            return ContainerKind.ARCHIVE
        return ContainerKind.NONE

    def iter_archive_entries(self, data: bytes) -> Iterable[Tuple[str, bytes]]:
        return list(_iter_zip(data))

    def iter_container_textures(self, data: bytes, name: str) -> Iterable[Tuple[str, bytes]]:
        if data.startswith(DDS_MAGIC):
            return [(PurePosixPath(name.replace("\\", "/")).name, data)]
        if data.startswith(ZIP_MAGIC):
            return list(_iter_zip(data))
        raise MalformedContainerError(f"Unrecognized texture container: {name}")

    def legacy_params(self, material_key: str) -> Optional[LegacyMaterialParams]:
        return self._legacy_by_key.get(material_key.lower())

    def flat_params(self, material_key: str) -> Optional[FlatMaterialParams]:
        return self._flat_by_key.get(material_key.lower())

    def texture_virtual_path(self, model_virtual_path: str, texture_path: str) -> str:
        model_dir = PurePosixPath(model_virtual_path.replace("\\", "/")).parent
        texture_name = PurePosixPath(texture_path.replace("\\", "/")).name
        stem = texture_name.split(".", 1)[0]
        if not stem:
            return ""
        return (model_dir / f"{stem}.dds").as_posix()
