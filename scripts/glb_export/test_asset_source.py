#!/usr/bin/env python3
import json
import tempfile
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import asset_source
import glb_assembler as assembler
import glb_exporter as exporter
import glb_fixtures as fixtures
import model_json
import texture_resolver as resolver


def _write(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)


def _dump(**overrides):
    dump = {
        "name": "c1000",
        "virtual_path": "chr/c1000.flver",
        "materials": [
            {
                "name": "Body",
                "shader": "N:\\shader\\C[D].mtd",
                "textures": [{"param": "g_DiffuseTexture", "path": "N:\\tex\\Body_a.tga"}],
            }
        ],
        "meshes": [
            {
                "material_index": 0,
                "vertices": [
                    {"position": [0, 0, 0], "normal": [0, 0, 1], "uvs": [[0, 0]]},
                    {"position": [1, 0, 0], "normal": [0, 0, 1], "uvs": [[1, 0]]},
                    {"position": [0, 1, 0], "normal": [0, 0, 1], "uvs": [[0, 1]]},
                ],
                "face_sets": [{"indices": [0, 1, 2]}],
            }
        ],
        "texture_references": [{"name": "Body_a.tga", "virtual_path": "chr/c1000.zip"}],
        "material_bank": {
            "legacy": {"C[D]": {"params": {"g_BlendMode": 2}, "textures": []}},
            "flat": {"c[d]": {"params": {"AlphaTest": True}, "samplers": [{"type": "A__B"}]}},
        },
    }
    dump.update(overrides)
    return dump


class DirectoryAssetSourceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_case_insensitive_lookup_and_traversal_guard(self) -> None:
        _write(self.root / "Chr" / "Body.DDS", b"DDS data")
        source = asset_source.DirectoryAssetSource(self.root)

        self.assertEqual(source.read_file("chr/body.dds"), b"DDS data")
        self.assertEqual(source.read_file("chr\\BODY.dds"), b"DDS data")
        self.assertIsNone(source.read_file("chr/missing.dds"))
        self.assertIsNone(source.read_file("../etc/passwd"))

    def test_container_kinds_and_texture_entries(self) -> None:
        source = asset_source.DirectoryAssetSource(self.root)
        dds = fixtures.make_dds(fixtures.solid_rgba(1, 1, (1, 2, 3, 4)))

        self.assertIs(source.container_kind("chr/c1000.ZIP"), asset_source.ContainerKind.ARCHIVE)
        self.assertIs(source.container_kind("chr/body.dds"), asset_source.ContainerKind.NONE)
        self.assertEqual(list(source.iter_container_textures(dds, "chr\\Body.dds")), [("Body.dds", dds)])
        self.assertEqual(
            list(source.iter_container_textures(fixtures.make_zip({"a.dds": dds}), "c.tpf")),
            [("a.dds", dds)],
        )
        with self.assertRaises(asset_source.MalformedContainerError):
            source.iter_container_textures(b"????", "c.tpf")
        with self.assertRaises(asset_source.MalformedContainerError):
            source.iter_archive_entries(b"PK\x03\x04 truncated")

    def test_texture_virtual_path_sits_beside_model(self) -> None:
        source = asset_source.DirectoryAssetSource(self.root)
        self.assertEqual(source.texture_virtual_path("chr/c1000.flver", "n:\\tex\\body_a.tga"), "chr/body_a.dds")
        self.assertEqual(source.texture_virtual_path("c1000.flver", "body"), "body.dds")

    def test_material_bank_keys_are_case_insensitive(self) -> None:
        dump = model_json.parse_model_dump(_dump())
        source = asset_source.DirectoryAssetSource(self.root, legacy_by_key=dump.legacy_by_key)
        self.assertIsNotNone(source.legacy_params("C[D]"))
        self.assertIsNone(source.flat_params("c[d]"))

    def test_archive_texture_is_found_through_resolver(self) -> None:
        dds = fixtures.make_dds(fixtures.solid_rgba(2, 2, (1, 2, 3, 255)))
        archive = fixtures.make_zip({"c1000.tpf": fixtures.make_zip({"Body_a.dds": dds})})
        _write(self.root / "chr" / "c1000.zip", archive)
        source = asset_source.DirectoryAssetSource(self.root)

        self.assertEqual(resolver.read_texture_dds(source, "chr/c1000.zip", "body_a"), dds)


class ModelDumpTests(unittest.TestCase):
    def test_parse_builds_model_references_and_bank(self) -> None:
        dump = model_json.parse_model_dump(_dump())

        self.assertEqual(dump.name, "c1000")
        self.assertEqual(dump.model.materials[0].textures[0].param_name, "g_DiffuseTexture")
        self.assertEqual(dump.model.meshes[0].vertices[1].position, (1.0, 0.0, 0.0))
        self.assertEqual(dump.model.meshes[0].vertices[2].uvs, [(0.0, 1.0)])
        self.assertFalse(dump.model.meshes[0].face_sets[0].triangle_strip)
        self.assertEqual(dump.texture_references[0].virtual_path, "chr/c1000.zip")
        self.assertEqual(dump.legacy_by_key["c[d]"].params[0].value.as_int(), 2)
        self.assertTrue(dump.flat_by_key["c[d]"].params[0].value.as_bool())
        self.assertEqual(dump.flat_by_key["c[d]"].samplers[0].path, "")
        self.assertFalse(dump.uses_flat_params)

    def test_name_defaults_to_model_stem(self) -> None:
        self.assertEqual(model_json.parse_model_dump(_dump(name="")).name, "c1000")

    def test_malformed_dumps_raise(self) -> None:
        bad_vertex = _dump()
        bad_vertex["meshes"][0]["vertices"][0]["position"] = [0, 0]
        bad_indices = _dump()
        bad_indices["meshes"][0]["face_sets"][0]["indices"] = [0, -1, 2]

        bad_param = _dump(material_bank={"legacy": {"x": {"params": {"p": "s"}}}})

        for raw in ([], _dump(materials={}), bad_vertex, bad_indices, bad_param):
            with self.assertRaises(model_json.ModelDumpError):
                model_json.parse_model_dump(raw)


class CommandLineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.work = Path(self._tmp.name)
        self.assets = self.work / "assets"
        self.assets.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_cli_exports_glb_and_report(self) -> None:
        dds = fixtures.make_dds(fixtures.solid_rgba(2, 2, (1, 2, 3, 255)))
        textures = fixtures.make_zip({"c1000.tpf": fixtures.make_zip({"Body_a.dds": dds})})
        _write(self.assets / "chr" / "c1000.zip", textures)
        _write(self.assets / "chr" / "body_a.dds", dds)
        model_path = self.work / "c1000.json"
        model_path.write_text(json.dumps(_dump()), encoding="utf-8")
        report_path = self.work / "report.json"

        exit_code = exporter.main(
            [
                "--model", str(model_path),
                "--asset-root", str(self.assets),
                "--output-dir", str(self.work / "out"),
                "--include-folder",
                "--report", str(report_path),
            ]
        )

        self.assertEqual(exit_code, 0)
        output = self.work / "out" / "c1000" / "c1000.glb"
        document, _ = assembler.parse_glb(output.read_bytes())
        self.assertEqual(document["materials"][0]["alphaMode"], "BLEND")
        self.assertEqual(
            set(document["meshes"][0]["primitives"][0]["attributes"]),
            {"POSITION", "NORMAL", "TEXCOORD_0"},
        )
        report = json.loads(report_path.read_text(encoding="utf-8"))
        self.assertTrue(report["success"])
        self.assertEqual(report["summary"]["textures"], 1)
        self.assertEqual(report["summary"]["primitives"], 1)

    def test_cli_rejects_bad_dump(self) -> None:
        model_path = self.work / "broken.json"
        model_path.write_text("{not json", encoding="utf-8")
        with self.assertLogs(level="ERROR"):
            exit_code = exporter.main(
                ["--model", str(model_path), "--asset-root", str(self.assets), "--output-dir", str(self.work)]
            )
        self.assertEqual(exit_code, 1)


if __name__ == "__main__":
    unittest.main()
