#!/usr/bin/env python3
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import glb_fixtures as fixtures
import material_classifier as classifier
import material_params as params
import source_model as model
import texture_resolver as resolver


def _legacy(**values) -> params.MaterialLookup:
    return params.MaterialLookup(
        legacy=params.LegacyMaterialParams(
            params=[params.MaterialParam(name, params.ParamValue.from_python(v)) for name, v in values.items()]
        )
    )


def _png_with_alpha(values) -> bytes:
    pixels = fixtures.solid_rgba(len(values), 1, (128, 128, 128, 255))
    pixels[0, :, 3] = values
    return fixtures.make_png(pixels)


class AlphaHelpersTests(unittest.TestCase):
    def test_cutoff_normalization(self) -> None:
        self.assertAlmostEqual(classifier.normalize_alpha_cutoff(128), 128 / 255, places=4)
        self.assertAlmostEqual(classifier.normalize_alpha_cutoff(0.3), 0.3)
        self.assertEqual(classifier.normalize_alpha_cutoff(300), 1.0)
        self.assertEqual(classifier.normalize_alpha_cutoff(-2.0), 0.0)
        self.assertEqual(classifier.normalize_alpha_cutoff(1.0), 1.0)

    def test_binary_alpha_is_mask_eligible(self) -> None:
        analysis = classifier.analyze_alpha(_png_with_alpha([0, 255, 0, 255]))
        self.assertTrue(analysis.has_transparency)
        self.assertTrue(analysis.is_binary_alpha)

    def test_intermediate_alpha_is_blend_eligible(self) -> None:
        analysis = classifier.analyze_alpha(_png_with_alpha([0, 128, 255]))
        self.assertTrue(analysis.has_transparency)
        self.assertFalse(analysis.is_binary_alpha)

    def test_solid_alpha_has_no_transparency(self) -> None:
        analysis = classifier.analyze_alpha(_png_with_alpha([255, 255]))
        self.assertFalse(analysis.has_transparency)
        self.assertFalse(analysis.is_binary_alpha)

    def test_alpha_test_cutoff_last_value_wins(self) -> None:
        lookup = _legacy(g_AlphaTestCutoff=64, g_AlphaClipThreshold=0.25)
        self.assertAlmostEqual(classifier.find_alpha_test(lookup), 0.25)
        self.assertEqual(classifier.find_alpha_test(_legacy(g_AlphaTest=True)), 0.5)
        self.assertIsNone(classifier.find_alpha_test(_legacy(g_AlphaTest=False)))


class ClassifierRuleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cache = resolver.TextureCache(fixtures.MemoryAssetSource(), lambda _: None)
        self.classifier = classifier.MaterialClassifier(self.cache)
        self.material = model.SourceMaterial("Body", "C[D].mtd")

    def _classify(self, lookup=None, base=None, opacity=None, material=None):
        return self.classifier.classify(material or self.material, lookup, base, opacity)

    def test_default_is_opaque(self) -> None:
        self.assertEqual(self._classify(), (classifier.AlphaMode.OPAQUE, 0.5))

    def test_blend_modes(self) -> None:
        self.assertEqual(self._classify(_legacy(g_BlendMode=1))[0], classifier.AlphaMode.MASK)
        self.assertEqual(self._classify(_legacy(g_BlendMode=33))[0], classifier.AlphaMode.MASK)
        self.assertEqual(self._classify(_legacy(g_BlendMode=2))[0], classifier.AlphaMode.BLEND)
        self.assertEqual(self._classify(_legacy(g_BlendMode=0))[0], classifier.AlphaMode.OPAQUE)

    def test_normal_blend_mode_falls_through_to_alpha_test(self) -> None:
        decision = self._classify(_legacy(g_BlendMode=32, g_AlphaTestCutoff=128))
        self.assertEqual(decision[0], classifier.AlphaMode.MASK)
        self.assertAlmostEqual(decision[1], 128 / 255, places=4)

    def test_opacity_channel_uses_mask_hints(self) -> None:
        self.assertEqual(self._classify(opacity="o")[0], classifier.AlphaMode.BLEND)
        cutout = model.SourceMaterial("Leaves_Cutout", "C[D].mtd")
        self.assertEqual(self._classify(opacity="o", material=cutout)[0], classifier.AlphaMode.MASK)

        flat_hint = params.MaterialLookup(flat=params.FlatMaterialParams(shader_path="Shader/TexEdge.spx"))
        self.assertEqual(self._classify(flat_hint, opacity="o")[0], classifier.AlphaMode.MASK)

    def test_base_color_alpha_scan(self) -> None:
        self.cache.add(resolver.TextureData("binary", _png_with_alpha([0, 255])))
        self.cache.add(resolver.TextureData("soft", _png_with_alpha([40, 255])))
        self.cache.add(resolver.TextureData("solid", _png_with_alpha([255, 255])))

        self.assertEqual(self._classify(base="binary")[0], classifier.AlphaMode.MASK)
        self.assertEqual(self._classify(base="soft")[0], classifier.AlphaMode.BLEND)
        self.assertEqual(self._classify(base="solid")[0], classifier.AlphaMode.OPAQUE)
        self.assertEqual(self._classify(base="unknown")[0], classifier.AlphaMode.OPAQUE)

    def test_alpha_analysis_is_memoized(self) -> None:
        self.cache.add(resolver.TextureData("binary", _png_with_alpha([0, 255])))
        self.assertIs(self.classifier.alpha_analysis("binary"), self.classifier.alpha_analysis("binary"))


if __name__ == "__main__":
    unittest.main()
