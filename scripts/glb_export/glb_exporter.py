#!/usr/bin/env python3
"""
glb_exporter.py
===============

Convert a parsed FLVER-style model into a self-contained GLB (glTF Binary)
with embedded PNG textures.

The library entry point is ``export_model``; it never raises for per-texture
or per-material problems, collecting human-readable warnings instead, and
returns a ``GlbExportResult``.

Usage (model dump produced by the host tooling, see model_json.py):
    python3 glb_exporter.py \\
        --model dumps/c1000.json \\
        --asset-root extracted/ \\
        --output-dir exports/ \\
        --include-folder --verbose \\
        --report exports/c1000_report.json
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from asset_source import AssetSource, DirectoryAssetSource
from geometry_packer import FaceSetMode, pack_mesh
from glb_assembler import AccessorIndex, GlbBuilder, MaterialIndex, TextureIndex, parse_glb
from material_classifier import AlphaMode, MaterialClassifier
from material_params import MaterialLookup
from source_model import SourceMaterial, SourceModel, TextureReference
from texture_resolver import (
    TextureCache,
    assign_material_channels,
    material_key_for_shader,
)
from texture_synthesizer import TextureSynthesizer

NO_GEOMETRY_ERROR = "No exportable mesh data was found."
EXPORT_FAILED_ERROR = "GLB export failed."
SKELETON_WARNING = "Skeleton export is not implemented yet; exporting static mesh only."
PNG_ONLY_WARNING = "Only embedded PNG textures are supported in this exporter."

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass
class ExportOptions:
    include_folder: bool = False
    embed_png_textures: bool = True
    export_skeleton: bool = False
    face_set_mode: FaceSetMode = FaceSetMode.FIRST_ONLY


@dataclass(frozen=True)
class GlbExportResult:
    success: bool
    output_path: Path
    error: str = ""
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, output_path: Path, warnings: List[str]) -> "GlbExportResult":
        return cls(True, output_path, "", list(warnings))

    @classmethod
    def fail(cls, output_path: Path, error: str, warnings: List[str]) -> "GlbExportResult":
        return cls(False, output_path, error, list(warnings))


def collect_warning(warnings: List[str], message: str) -> None:
    logging.warning("%s", message)
    warnings.append(message)


def sanitize_file_name(name: Optional[str]) -> str:
    result = INVALID_FILENAME_CHARS.sub("_", name or "model")
    return result if result.strip() else "model"


def build_material_lookup(
    source: AssetSource,
    model: SourceModel,
    references: Sequence[TextureReference],
) -> Dict[str, MaterialLookup]:
    """Material documents by material key: bank first, texture list second."""
    lookup: Dict[str, MaterialLookup] = {}

    for material in model.materials:
        key = material_key_for_shader(material.shader)
        if not key or key in lookup:
            continue
        legacy = source.legacy_params(key)
        flat = source.flat_params(key) if source.uses_flat_params else None
        if legacy is not None or flat is not None:
            lookup[key] = MaterialLookup(legacy, flat)

    for reference in references:
        key = material_key_for_shader(reference.material_string)
        if key and key not in lookup:
            lookup[key] = MaterialLookup(reference.legacy, reference.flat)

    return lookup


class ExportSession:
    """All per-call state for one model export."""

    def __init__(
        self,
        source: AssetSource,
        model_virtual_path: str,
        model: SourceModel,
        references: Sequence[TextureReference],
        options: ExportOptions,
        warnings: List[str],
    ) -> None:
        self.source = source
        self.model_virtual_path = model_virtual_path
        self.model = model
        self.options = options
        self.warnings = warnings

        self.textures = TextureCache(source, self.warn)
        self.textures.load_references(references)
        self.material_lookup = build_material_lookup(source, model, references)
        self.synthesizer = TextureSynthesizer(self.textures, self.warn)
        self.classifier = MaterialClassifier(self.textures)
        self.builder = GlbBuilder()

    def warn(self, message: str) -> None:
        collect_warning(self.warnings, message)

    def _texture_index(self, key: Optional[str]) -> Optional[TextureIndex]:
        texture = self.textures.resolve(key)
        if texture is None:
            return None
        return self.builder.texture_for(texture.key, texture.png_bytes, texture.content_hash)

    def _export_material(self, index: int, material: SourceMaterial) -> MaterialIndex:
        name = material.name if material.name and material.name.strip() else f"Material_{index}"
        lookup = self.material_lookup.get(material_key_for_shader(material.shader))

        channels = assign_material_channels(
            material, lookup, self.source, self.model_virtual_path, self.textures
        )
        base_color_key = channels.base_color
        normal_key = channels.normal
        mr_key = channels.metallic_roughness
        opacity_key = channels.opacity

        if normal_key:
            normal_source = self.textures.resolve(normal_key)
            if normal_source is not None:
                derived = self.synthesizer.derive_normal(normal_key, normal_source)
                if derived.normal_key:
                    normal_key = derived.normal_key
                if not mr_key and derived.has_packed_roughness:
                    mr_key = derived.roughness_key

        if opacity_key:
            base_color_key = self.synthesizer.composite_opacity(base_color_key, opacity_key)

        alpha_mode, cutoff = self.classifier.classify(material, lookup, base_color_key, opacity_key)

        material_def: Dict[str, object] = {"name": name}
        if alpha_mode is not AlphaMode.OPAQUE:
            material_def["alphaMode"] = alpha_mode.value
            if alpha_mode is AlphaMode.MASK:
                material_def["alphaCutoff"] = cutoff

        pbr: Dict[str, object] = {"metallicFactor": 0.0, "roughnessFactor": 1.0}
        base_color_texture = self._texture_index(base_color_key)
        if base_color_texture is not None:
            pbr["baseColorTexture"] = {"index": base_color_texture}
        mr_texture = self._texture_index(mr_key)
        if mr_texture is not None:
            pbr["metallicRoughnessTexture"] = {"index": mr_texture}
        material_def["pbrMetallicRoughness"] = pbr

        normal_texture = self._texture_index(normal_key)
        if normal_texture is not None:
            material_def["normalTexture"] = {"index": normal_texture}

        logging.debug(
            "Material '%s': alpha=%s base=%s normal=%s mr=%s opacity=%s",
            name,
            alpha_mode.value,
            base_color_key,
            normal_key,
            mr_key,
            opacity_key,
        )
        return self.builder.add_material(material_def)

    def run(self, model_name: str) -> Optional[bytes]:
        """Return GLB bytes, or None when no mesh produced a primitive."""
        for index, material in enumerate(self.model.materials):
            self._export_material(index, material)

        material_count = len(self.builder.materials)
        for mesh in self.model.meshes:
            packed = pack_mesh(mesh, self.options.face_set_mode, self.warn)
            if packed is None:
                continue

            attributes: Dict[str, AccessorIndex] = {
                "POSITION": self.builder.add_float_accessor(
                    packed.positions, bounds=(packed.bounds_min, packed.bounds_max)
                )
            }
            if packed.normals is not None:
                attributes["NORMAL"] = self.builder.add_float_accessor(packed.normals)
            if packed.texcoords is not None:
                attributes["TEXCOORD_0"] = self.builder.add_float_accessor(packed.texcoords)
            indices = self.builder.add_index_accessor(packed.indices)

            material: Optional[MaterialIndex] = None
            if 0 <= packed.material_index < material_count:
                material = MaterialIndex(packed.material_index)
            self.builder.add_primitive(attributes, indices, material)

        if not self.builder.primitives:
            return None
        return self.builder.build(model_name)


def export_model(
    source: AssetSource,
    model_virtual_path: str,
    model: SourceModel,
    texture_references: Sequence[TextureReference],
    output_dir: Path,
    model_name: str,
    options: Optional[ExportOptions] = None,
) -> GlbExportResult:
    """Export *model* to ``<output_dir>[/<name>]/<name>.glb``."""
    options = options or ExportOptions()
    warnings: List[str] = []
    safe_name = sanitize_file_name(model_name)
    write_dir = output_dir / safe_name if options.include_folder else output_dir
    output_path = write_dir / f"{safe_name}.glb"

    if options.export_skeleton:
        collect_warning(warnings, SKELETON_WARNING)
    if not options.embed_png_textures:
        collect_warning(warnings, PNG_ONLY_WARNING)

    try:
        session = ExportSession(
            source, model_virtual_path, model, texture_references, options, warnings
        )
        glb_bytes = session.run(safe_name)
        if glb_bytes is None:
            return GlbExportResult.fail(output_path, NO_GEOMETRY_ERROR, warnings)

        write_dir.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(glb_bytes)
    except Exception as exc:
        logging.error("GLB export failed for %s: %s", model_virtual_path, exc)
        warnings.append(str(exc))
        return GlbExportResult.fail(output_path, EXPORT_FAILED_ERROR, warnings)

    logging.debug("Exported %s -> %s (%d bytes)", model_virtual_path, output_path, len(glb_bytes))
    return GlbExportResult.ok(output_path, warnings)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def write_report(result: GlbExportResult, report_path: Path) -> None:
    report: Dict[str, object] = {
        "success": result.success,
        "output_path": str(result.output_path),
        "error": result.error,
        "warnings": result.warnings,
    }
    if result.success:
        document, bin_chunk = parse_glb(result.output_path.read_bytes())
        report["summary"] = {
            "materials": len(document.get("materials", [])),
            "textures": len(document.get("textures", [])),
            "primitives": sum(len(mesh["primitives"]) for mesh in document.get("meshes", [])),
            "binary_bytes": len(bin_chunk),
        }
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2), encoding="utf-8")


def main(argv: Optional[Sequence[str]] = None) -> int:
    from model_json import ModelDumpError, load_model_dump

    parser = argparse.ArgumentParser(
        description="Convert a FLVER model dump into a GLB with embedded PNG textures."
    )
    parser.add_argument("--model", type=Path, required=True, help="JSON model dump")
    parser.add_argument(
        "--asset-root", type=Path, required=True,
        help="Directory that virtual texture paths are resolved against",
    )
    parser.add_argument("--output-dir", type=Path, required=True, help="Output directory")
    parser.add_argument("--name", default=None, help="Output base name (default: model name)")
    parser.add_argument(
        "--include-folder", action="store_true",
        help="Write the GLB into a subfolder named after the model",
    )
    parser.add_argument(
        "--no-embed-png", action="store_true",
        help="Request non-embedded textures (unsupported; only emits a warning)",
    )
    parser.add_argument(
        "--export-skeleton", action="store_true",
        help="Request skeleton export (unsupported; only emits a warning)",
    )
    parser.add_argument("--report", type=Path, default=None, help="Path for JSON export report")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("PIL").setLevel(logging.INFO)

    if not args.asset_root.is_dir():
        logging.error("Asset root directory not found: %s", args.asset_root)
        return 1

    try:
        dump = load_model_dump(args.model)
    except ModelDumpError as exc:
        logging.error("Invalid model dump %s: %s", args.model, exc)
        return 1

    source = DirectoryAssetSource(
        args.asset_root,
        legacy_by_key=dump.legacy_by_key,
        flat_by_key=dump.flat_by_key,
        uses_flat_params=dump.uses_flat_params,
    )
    options = ExportOptions(
        include_folder=args.include_folder,
        embed_png_textures=not args.no_embed_png,
        export_skeleton=args.export_skeleton,
    )
    result = export_model(
        source,
        dump.virtual_path,
        dump.model,
        dump.texture_references,
        args.output_dir,
        args.name or dump.name,
        options,
    )

    if result.success:
        logging.info("Wrote %s (%d warnings)", result.output_path, len(result.warnings))
    else:
        logging.error("%s (%s)", result.error, result.output_path)

    if args.report is not None:
        write_report(result, args.report)

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
