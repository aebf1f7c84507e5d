"""
texture_resolver.py
===================

Locate, decode and cache the textures a model's materials refer to.

Texture identity is a normalized key (file name without directory or
extension, lowercased).  Decoded textures are cached per key for the life of
one export session; lookups that miss are remembered so the archive is never
read twice for the same key.
"""

from __future__ import annotations

import enum
import hashlib
import logging
from dataclasses import dataclass
from functools import cached_property
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from asset_source import AssetSource, ContainerKind, MalformedContainerError
from material_params import FlatMaterialParams, LegacyMaterialParams, MaterialLookup
from source_model import SourceMaterial, TextureReference, TextureSlot
from texture_decoder import TextureDecodeError, dds_to_png

Warn = Callable[[str], None]

TEXTURE_CONTAINER_MARKER = ".tpf"


def normalize_texture_key(raw_name: Optional[str]) -> str:
    """``"Tex\\FOO.dds"`` -> ``"foo"``; idempotent."""
    if raw_name is None:
        return ""
    name = PurePosixPath(raw_name.strip().replace("\\", "/")).name
    return name.split(".", 1)[0].strip().lower()


def material_key_for_shader(shader: Optional[str]) -> str:
    """Material-bank key for a shader reference: its file stem, lowercased."""
    if not shader:
        return ""
    name = PurePosixPath(shader.strip().replace("\\", "/")).name
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return stem.lower()


@dataclass(frozen=True)
class TextureData:
    key: str
    png_bytes: bytes

    @cached_property
    def content_hash(self) -> str:
        return hashlib.sha256(self.png_bytes).hexdigest()


def find_texture_in_container(
    source: AssetSource,
    container_bytes: bytes,
    container_name: str,
    texture_key: str,
) -> Optional[bytes]:
    try:
        entries = source.iter_container_textures(container_bytes, container_name)
        for name, payload in entries:
            if normalize_texture_key(name) == texture_key:
                return payload
    except MalformedContainerError as exc:
        logging.debug("Skipping malformed texture container '%s': %s", container_name, exc)
    return None


def read_texture_dds(source: AssetSource, virtual_path: str, texture_key: str) -> Optional[bytes]:
    """Return the DDS bytes for *texture_key* stored at *virtual_path*, if any."""
    if not virtual_path or not virtual_path.strip():
        return None

    file_data = source.read_file(virtual_path)
    if file_data is None:
        return None

    kind = source.container_kind(virtual_path)
    if kind is ContainerKind.NONE:
        return find_texture_in_container(source, file_data, virtual_path, texture_key)

    if kind is ContainerKind.ARCHIVE:
        try:
            entries = source.iter_archive_entries(file_data)
            for entry_name, entry_bytes in entries:
                if TEXTURE_CONTAINER_MARKER not in entry_name.lower():
                    continue
                found = find_texture_in_container(source, entry_bytes, entry_name, texture_key)
                if found is not None:
                    return found
        except MalformedContainerError as exc:
            logging.debug("Skipping malformed archive '%s': %s", virtual_path, exc)

    return None


class TextureCache:
    """Per-session texture store keyed by normalized texture key."""

    def __init__(self, source: AssetSource, warn: Warn) -> None:
        self._source = source
        self._warn = warn
        self._textures: Dict[str, TextureData] = {}
        self._virtual_path_by_key: Dict[str, str] = {}
        self._misses: Set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._textures

    def add(self, texture: TextureData) -> None:
        if texture.key in self._textures:
            raise KeyError(f"Texture already cached: {texture.key}")
        self._textures[texture.key] = texture

    def record_virtual_path(self, key: str, virtual_path: str) -> None:
        self._virtual_path_by_key.setdefault(key, virtual_path)

    def load_references(self, references: Sequence[TextureReference]) -> None:
        for reference in references:
            key = normalize_texture_key(reference.name)
            if not key or key in self._textures:
                continue

            dds_bytes = read_texture_dds(self._source, reference.virtual_path, key)
            if dds_bytes is None:
                self._warn(f"Texture source not found: {reference.name}")
                continue

            try:
                png_bytes = dds_to_png(dds_bytes)
            except TextureDecodeError as exc:
                logging.debug("DDS decode failed for %s: %s", reference.name, exc)
                self._warn(f"Failed to decode DDS: {reference.name}")
                continue

            self._textures[key] = TextureData(key, png_bytes)

    def resolve(self, key: Optional[str]) -> Optional[TextureData]:
        if not key:
            return None

        cached = self._textures.get(key)
        if cached is not None:
            return cached
        if key in self._misses:
            return None

        virtual_path = self._virtual_path_by_key.get(key)
        texture: Optional[TextureData] = None
        if virtual_path is not None:
            dds_bytes = read_texture_dds(self._source, virtual_path, key)
            if dds_bytes is None:
                self._warn(f"Texture source not found: {virtual_path}")
            else:
                try:
                    texture = TextureData(key, dds_to_png(dds_bytes))
                except TextureDecodeError as exc:
                    logging.debug("DDS decode failed for %s: %s", virtual_path, exc)
                    self._warn(f"Failed to decode DDS: {virtual_path}")

        if texture is None:
            self._misses.add(key)
            return None

        self._textures[key] = texture
        return texture


# ---------------------------------------------------------------------------
# Slot path resolution
# ---------------------------------------------------------------------------


def _second_token(value: str) -> Optional[str]:
    parts = value.split("__")
    return parts[1] if len(parts) > 1 else None


def resolve_from_flat(slot_type: str, flat: Optional[FlatMaterialParams]) -> Optional[str]:
    if flat is None:
        return None

    for sampler in flat.samplers:
        if sampler.type == slot_type and sampler.path.strip():
            return sampler.path

    for sampler in flat.samplers:
        if not sampler.path.strip():
            continue

        if "__" in sampler.type and "__" in slot_type:
            if _second_token(sampler.type) == _second_token(slot_type):
                return sampler.path

        if (slot_type == "g_DiffuseTexture" or "AlbedoMap" in slot_type) and "AlbedoMap" in sampler.type:
            return sampler.path

        if (slot_type == "g_BumpmapTexture" or "NormalMap" in slot_type) and "NormalMap" in sampler.type:
            return sampler.path

    return None


def resolve_from_legacy(slot_type: str, legacy: Optional[LegacyMaterialParams]) -> Optional[str]:
    if legacy is None:
        return None
    entry = next((tex for tex in legacy.textures if tex.type == slot_type), None)
    if entry is None or not entry.extended or not entry.path.strip():
        return None
    return entry.path


def resolve_slot_path(
    slot: TextureSlot,
    lookup: Optional[MaterialLookup],
    uses_flat_params: bool,
) -> Optional[str]:
    if slot.path and slot.path.strip():
        return slot.path

    slot_type = slot.param_name
    if not slot_type or not slot_type.strip():
        return None

    if uses_flat_params:
        from_flat = resolve_from_flat(slot_type, lookup.flat if lookup else None)
        if from_flat:
            return from_flat

    return resolve_from_legacy(slot_type, lookup.legacy if lookup else None)


# ---------------------------------------------------------------------------
# Channel classification
# ---------------------------------------------------------------------------


class TextureChannel(enum.Enum):
    BASE_COLOR = "base_color"
    NORMAL = "normal"
    METALLIC_ROUGHNESS = "metallic_roughness"
    OPACITY = "opacity"


# Evaluated top to bottom; a slot lands in the first channel whose substrings
# match and which is still unassigned for the material.
CHANNEL_RULES: Tuple[Tuple[TextureChannel, Tuple[str, ...]], ...] = (
    (TextureChannel.BASE_COLOR, ("diffuse", "albedo", "basecolor")),
    (TextureChannel.NORMAL, ("bumpmap", "normal")),
    (TextureChannel.METALLIC_ROUGHNESS, ("metallicroughness", "roughness", "metallic")),
    (TextureChannel.OPACITY, ("opacity", "alpha", "transparency", "dissolve")),
)


def matching_channels(param_name: str) -> List[TextureChannel]:
    lowered = (param_name or "").lower()
    return [
        channel
        for channel, needles in CHANNEL_RULES
        if any(needle in lowered for needle in needles)
    ]


@dataclass
class MaterialChannels:
    base_color: Optional[str] = None
    normal: Optional[str] = None
    metallic_roughness: Optional[str] = None
    opacity: Optional[str] = None

    def get(self, channel: TextureChannel) -> Optional[str]:
        return getattr(self, channel.value)

    def assign(self, channel: TextureChannel, key: str) -> None:
        setattr(self, channel.value, key)


def assign_material_channels(
    material: SourceMaterial,
    lookup: Optional[MaterialLookup],
    source: AssetSource,
    model_virtual_path: str,
    cache: TextureCache,
) -> MaterialChannels:
    """Map a material's texture slots onto PBR channels, recording each
    resolved texture's virtual path in *cache* for lazy loading."""
    channels = MaterialChannels()
    first_resolved: Optional[str] = None

    for slot in material.textures:
        resolved_path = resolve_slot_path(slot, lookup, source.uses_flat_params)
        if not resolved_path or not resolved_path.strip():
            continue

        virtual_path = source.texture_virtual_path(model_virtual_path, resolved_path.lower())
        key = normalize_texture_key(virtual_path)
        if not key:
            continue

        cache.record_virtual_path(key, virtual_path)
        if first_resolved is None:
            first_resolved = key

        for channel in matching_channels(slot.param_name):
            if channels.get(channel) is None:
                channels.assign(channel, key)
                break

    if channels.base_color is None and first_resolved is not None:
        channels.base_color = first_resolved

    return channels
