#!/usr/bin/env python3
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import material_params as params
import source_model as model


class ParamValueTests(unittest.TestCase):
    def test_int_widening(self) -> None:
        value = params.ParamValue.of_int(3)
        self.assertEqual(value.as_int(), 3)
        self.assertEqual(value.as_float(), 3.0)
        self.assertTrue(value.as_bool())
        self.assertFalse(params.ParamValue.of_int(0).as_bool())

    def test_float_truncates_to_int(self) -> None:
        self.assertEqual(params.ParamValue.of_float(2.9).as_int(), 2)
        self.assertFalse(params.ParamValue.of_float(-0.5).as_bool())

    def test_bool_coerces_to_zero_or_one(self) -> None:
        self.assertEqual(params.ParamValue.of_bool(True).as_int(), 1)
        self.assertEqual(params.ParamValue.of_bool(False).as_float(), 0.0)
        self.assertIs(params.ParamValue.of_bool(True).as_bool(), True)

    def test_arrays_use_first_element(self) -> None:
        self.assertEqual(params.ParamValue.of_ints([7, 8]).as_int(), 7)
        self.assertAlmostEqual(params.ParamValue.of_floats([0.25, 1.0]).as_float(), 0.25)
        self.assertIsNone(params.ParamValue.of_floats([]).as_float())
        self.assertIsNone(params.ParamValue.of_ints([]).as_bool())

    def test_every_kind_widens_to_int_float_and_bool(self) -> None:
        cases = [
            (params.ParamValue.of_int(2), 2, 2.0, True),
            (params.ParamValue.of_float(1.75), 1, 1.75, True),
            (params.ParamValue.of_bool(False), 0, 0.0, False),
            (params.ParamValue.of_ints([0, 5]), 0, 0.0, False),
            (params.ParamValue.of_floats([-3.5]), -3, -3.5, False),
        ]
        for value, as_int, as_float, as_bool in cases:
            with self.subTest(kind=value.kind):
                self.assertEqual(value.as_int(), as_int)
                self.assertEqual(value.as_float(), as_float)
                self.assertIs(value.as_bool(), as_bool)

    def test_from_python_checks_bool_before_int(self) -> None:
        self.assertIs(params.ParamValue.from_python(True).kind, params.ParamKind.BOOL)
        self.assertIs(params.ParamValue.from_python(4).kind, params.ParamKind.INT)
        self.assertIs(params.ParamValue.from_python(0.5).kind, params.ParamKind.FLOAT)
        self.assertIs(params.ParamValue.from_python([1, 2]).kind, params.ParamKind.INT_ARRAY)
        self.assertIs(params.ParamValue.from_python([1, 2.5]).kind, params.ParamKind.FLOAT_ARRAY)
        self.assertIsNone(params.ParamValue.from_python("text"))

    def test_iter_material_params_yields_legacy_then_flat_and_skips_blank_names(self) -> None:
        lookup = params.MaterialLookup(
            legacy=params.LegacyMaterialParams(
                params=[
                    params.MaterialParam("g_BlendMode", params.ParamValue.of_int(1)),
                    params.MaterialParam("  ", params.ParamValue.of_int(2)),
                ]
            ),
            flat=params.FlatMaterialParams(
                params=[params.MaterialParam("AlphaTest", params.ParamValue.of_bool(True))]
            ),
        )
        names = [param.name for param in params.iter_material_params(lookup)]
        self.assertEqual(names, ["g_BlendMode", "AlphaTest"])
        self.assertEqual(list(params.iter_material_params(None)), [])


class StripTriangulationTests(unittest.TestCase):
    def test_triangle_list_is_returned_unchanged(self) -> None:
        face_set = model.FaceSet([0, 1, 2, 2, 1, 3])
        self.assertEqual(face_set.triangulate(allow_primitive_restarts=True), [0, 1, 2, 2, 1, 3])

    def test_strip_alternates_orientation(self) -> None:
        face_set = model.FaceSet([0, 1, 2, 3], triangle_strip=True)
        self.assertEqual(face_set.triangulate(allow_primitive_restarts=True), [0, 1, 2, 3, 2, 1])

    def test_degenerate_triangles_are_dropped_but_keep_parity(self) -> None:
        triangles = model.triangulate_strip([0, 1, 1, 2, 3], allow_primitive_restarts=True)
        # (0,1,1) and (1,1,2) are degenerate; (1,2,3) lands on an even step.
        self.assertEqual(triangles, [1, 2, 3])

    def test_restart_resets_orientation(self) -> None:
        indices = [0, 1, 2, model.PRIMITIVE_RESTART, 3, 4, 5]
        triangles = model.triangulate_strip(indices, allow_primitive_restarts=True)
        self.assertEqual(triangles, [0, 1, 2, 3, 4, 5])

    def test_restart_value_is_a_vertex_when_restarts_disallowed(self) -> None:
        indices = [0, 1, model.PRIMITIVE_RESTART]
        triangles = model.triangulate_strip(indices, allow_primitive_restarts=False)
        self.assertEqual(triangles, [0, 1, model.PRIMITIVE_RESTART])


if __name__ == "__main__":
    unittest.main()
