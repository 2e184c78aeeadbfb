"""
Tests for the color distance keyer and Pixel parsing.
"""

import numpy as np
import pytest

from stopmo.compositing.keyer import (
    MAX_DISTANCE,
    Pixel,
    color_distance,
    key_mask,
    should_key_out,
)

GREEN = Pixel(0, 255, 0)


class TestPixel:
    """Tests for Pixel construction and hex conversion."""

    def test_channels_clamped(self):
        """Out-of-range channel values are clamped to 0-255."""
        pixel = Pixel(-20, 300, 128.6)
        assert pixel.rgb == (0, 255, 129)
        assert pixel.a == 255

    def test_from_hex(self):
        assert Pixel.from_hex("#00ff00") == GREEN
        assert Pixel.from_hex("1A2b3C").rgb == (0x1A, 0x2B, 0x3C)

    def test_from_hex_invalid_falls_back_to_green(self):
        """Unparseable hex strings yield pure green."""
        assert Pixel.from_hex("not-a-color") == GREEN
        assert Pixel.from_hex("#fff") == GREEN

    def test_to_hex(self):
        assert Pixel(255, 136, 0).to_hex() == "#ff8800"


class TestColorDistance:
    """Tests for scalar distance and key decisions."""

    def test_distance_is_euclidean(self):
        assert color_distance(Pixel(3, 4, 0), Pixel(0, 0, 0)) == pytest.approx(5.0)

    def test_distance_ignores_alpha(self):
        assert color_distance(Pixel(1, 2, 3, a=0), Pixel(1, 2, 3, a=255)) == 0

    def test_max_distance(self):
        assert color_distance(Pixel(0, 0, 0), Pixel(255, 255, 255)) == pytest.approx(MAX_DISTANCE)

    def test_near_green_is_keyed(self):
        """(10, 250, 5) is about 12.2 from green: keyed out at tolerance 100."""
        assert should_key_out(Pixel(10, 250, 5), GREEN, 100)

    def test_far_color_is_kept(self):
        """(200, 50, 10) is about 286.6 from green: kept at tolerance 100."""
        assert color_distance(Pixel(200, 50, 10), GREEN) == pytest.approx(286.6, abs=0.1)
        assert not should_key_out(Pixel(200, 50, 10), GREEN, 100)

    def test_boundary_is_kept(self):
        """A pixel exactly at the tolerance distance is not keyed."""
        pixel = Pixel(30, 255, 40)  # distance exactly 50
        assert color_distance(pixel, GREEN) == 50
        assert not should_key_out(pixel, GREEN, 50)
        assert should_key_out(pixel, GREEN, 50.0001)

    def test_zero_tolerance_keys_nothing(self):
        assert not should_key_out(GREEN, GREEN, 0)

    def test_large_tolerance_keys_distant_colors(self):
        assert should_key_out(Pixel(255, 0, 0), GREEN, MAX_DISTANCE)
        assert not should_key_out(Pixel(255, 255, 255), Pixel(0, 0, 0), 441.0)


class TestKeyMask:
    """Tests for the vectorised keyer."""

    def test_mask_matches_scalar_keyer(self):
        """Every pixel of the mask agrees with should_key_out."""
        rng = np.random.default_rng(7)
        image = rng.integers(0, 256, size=(12, 16, 3), dtype=np.uint8)
        mask = key_mask(image, GREEN, 180)

        for y in range(image.shape[0]):
            for x in range(image.shape[1]):
                pixel = Pixel(*(int(v) for v in image[y, x]))
                assert mask[y, x] == should_key_out(pixel, GREEN, 180)

    def test_mask_boundary_matches_scalar(self):
        image = np.array([[[30, 255, 40], [0, 255, 0]]], dtype=np.uint8)
        mask = key_mask(image, GREEN, 50)
        assert mask.tolist() == [[False, True]]

    def test_mask_accepts_rgba(self):
        image = np.zeros((2, 2, 4), dtype=np.uint8)
        image[..., 1] = 255
        assert key_mask(image, GREEN, 1).all()

    def test_mask_shape(self):
        image = np.zeros((5, 7, 3), dtype=np.uint8)
        mask = key_mask(image, GREEN, 10)
        assert mask.shape == (5, 7)
        assert mask.dtype == bool
