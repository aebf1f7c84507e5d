#!/usr/bin/env python3
import unittest
from pathlib import Path
import sys

import numpy as np
from PIL import Image


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import glb_fixtures as fixtures
import texture_decoder as decoder


class TextureDecoderTests(unittest.TestCase):
    def test_uncompressed_dds_decodes_to_png_with_same_pixels(self) -> None:
        pixels = fixtures.solid_rgba(4, 2, (10, 20, 30, 255))
        pixels[0, 0] = (200, 100, 50, 0)

        png = decoder.dds_to_png(fixtures.make_dds(pixels))

        self.assertTrue(png.startswith(b"\x89PNG"))
        self.assertEqual(decoder.png_size(png), (4, 2))
        decoded = decoder.load_rgba_array(png)
        np.testing.assert_array_equal(decoded, pixels)

    def test_non_dds_payload_is_rejected(self) -> None:
        with self.assertRaises(decoder.TextureDecodeError):
            decoder.dds_to_png(b"not a texture")

    def test_truncated_dds_is_rejected(self) -> None:
        data = fixtures.make_dds(fixtures.solid_rgba(8, 8, (0, 0, 0, 255)))
        with self.assertRaises(decoder.TextureDecodeError):
            decoder.dds_to_png(data[:140])

    def test_oversized_declared_dimensions_are_rejected(self) -> None:
        with self.assertRaises(decoder.TextureDecodeError):
            decoder.dds_to_png(fixtures.make_dds_header(16384, 16384))

    def test_unsupported_pixel_layout_raises_subclass(self) -> None:
        image = Image.new("I", (2, 2))
        with self.assertRaises(decoder.UnsupportedFormatError) as ctx:
            decoder.raster_to_png(image)
        self.assertIsInstance(ctx.exception, decoder.TextureDecodeError)

    def test_luminance_rasters_are_accepted(self) -> None:
        for mode in ("L", "LA", "RGB"):
            png = decoder.raster_to_png(Image.new(mode, (3, 5)))
            self.assertEqual(decoder.png_size(png), (3, 5))


if __name__ == "__main__":
    unittest.main()
