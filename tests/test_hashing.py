# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pytest",
#     "pillow",
#     "imagehash",
#     "numpy",
# ]
# ///
"""
Unit tests for cover fingerprinting in utils/hashing.py.

Tests for:
- hamming_distance: bit difference between 64-bit hashes
- dhash_from_luma / ahash_from_luma: bit layout of the hashes
- center_crop: crop view geometry
- compute_fingerprint: checksum, records and error handling
"""

import hashlib
import io
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest
from PIL import Image

from coverscan.models import FingerprintCrop, FingerprintKind
from coverscan.utils.hashing import (
    CropView,
    DecodeFailed,
    FingerprintError,
    ProcessingError,
    ahash_from_luma,
    center_crop,
    compute_fingerprint,
    compute_sha256,
    dhash_from_luma,
    hamming_distance,
    hash_to_hex,
)

ALL_ONES = (1 << 64) - 1


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def solid_image(width=64, height=96, color=(120, 60, 200)) -> bytes:
    return png_bytes(Image.new("RGB", (width, height), color))


def hash_of(result, kind, crop) -> int:
    return {(k, c): v for k, c, v in result.records}[(kind, crop)]


def falling_gradient(width=360, height=120) -> bytes:
    """Bright on the left, dark on the right."""
    row = np.array([255 - x * 255 // (width - 1) for x in range(width)], dtype=np.uint8)
    pixels = np.tile(row, (height, 1))
    return png_bytes(Image.fromarray(pixels).convert("RGB"))


class TestHammingDistance:
    """Tests for hamming_distance."""

    def test_self_distance_is_zero(self):
        for h in [0, 1, 0xDEADBEEF, ALL_ONES, 1 << 63]:
            assert hamming_distance(h, h) == 0

    def test_symmetric(self):
        pairs = [(0, 1), (0xF0F0, 0x0F0F), (ALL_ONES, 0), (1 << 63, 5)]
        for a, b in pairs:
            assert hamming_distance(a, b) == hamming_distance(b, a)

    def test_counts_differing_bits(self):
        assert hamming_distance(0, 0b111) == 3
        assert hamming_distance(0b1010, 0b0101) == 4
        assert hamming_distance(0, ALL_ONES) == 64

    def test_hash_to_hex_is_zero_padded(self):
        assert hash_to_hex(0) == "0" * 16
        assert hash_to_hex(1 << 63) == "8000000000000000"
        assert hash_to_hex(ALL_ONES) == "f" * 16


class TestLumaHashes:
    """Bit layout of dHash and aHash: MSB first, row-major."""

    def test_dhash_rising_rows_is_zero(self):
        """Each pixel darker than its right neighbour sets no bits."""
        pixels = np.tile(np.arange(9, dtype=np.uint32) * 20, (8, 1))
        assert dhash_from_luma(pixels) == 0

    def test_dhash_falling_rows_sets_all_bits(self):
        pixels = np.tile(200 - np.arange(9, dtype=np.uint32) * 20, (8, 1))
        assert dhash_from_luma(pixels) == ALL_ONES

    def test_dhash_first_comparison_is_most_significant_bit(self):
        pixels = np.zeros((8, 9), dtype=np.uint32)
        pixels[0, 0] = 10
        assert dhash_from_luma(pixels) == 1 << 63

    def test_dhash_last_comparison_is_least_significant_bit(self):
        pixels = np.zeros((8, 9), dtype=np.uint32)
        pixels[7, 7] = 10
        assert dhash_from_luma(pixels) == 1

    def test_dhash_equal_neighbours_set_no_bit(self):
        pixels = np.full((8, 9), 128, dtype=np.uint32)
        assert dhash_from_luma(pixels) == 0

    def test_ahash_uniform_is_zero(self):
        """No pixel is strictly brighter than the mean."""
        pixels = np.full((8, 8), 77, dtype=np.uint32)
        assert ahash_from_luma(pixels) == 0

    def test_ahash_single_bright_pixel(self):
        pixels = np.zeros((8, 8), dtype=np.uint32)
        pixels[0, 0] = 255
        assert ahash_from_luma(pixels) == 1 << 63

        pixels = np.zeros((8, 8), dtype=np.uint32)
        pixels[7, 7] = 255
        assert ahash_from_luma(pixels) == 1

    def test_ahash_uses_integer_mean(self):
        """Mean of 32x1 and 32x2 is 1.5, floored to 1: only the 2s are above it."""
        pixels = np.array([1] * 32 + [2] * 32, dtype=np.uint32).reshape(8, 8)
        assert ahash_from_luma(pixels) == (1 << 32) - 1

    def test_wrong_grid_shape_raises(self):
        """Grids of the wrong size are a processing error, not a silent hash."""
        with pytest.raises(ProcessingError) as exc:
            dhash_from_luma(np.zeros((8, 8), dtype=np.uint32))
        assert exc.value.code == "luma"

        with pytest.raises(ProcessingError) as exc:
            ahash_from_luma(np.zeros((8, 9), dtype=np.uint32))
        assert exc.value.code == "luma"

    def test_ahash_top_half_bright(self):
        pixels = np.zeros((8, 8), dtype=np.uint32)
        pixels[:4, :] = 200
        assert ahash_from_luma(pixels) == ALL_ONES ^ ((1 << 32) - 1)


class TestCenterCrop:
    """Tests for crop view geometry."""

    def test_center_90(self):
        buffer = Image.new("RGBA", (100, 200))
        view = center_crop(buffer, 0.90)
        assert (view.width, view.height) == (90, 180)
        assert (view.left, view.top) == (5, 10)
        assert view.box == (5, 10, 95, 190)

    def test_center_75_rounds_down(self):
        buffer = Image.new("RGBA", (3, 3))
        view = center_crop(buffer, 0.75)
        assert (view.width, view.height) == (2, 2)
        assert (view.left, view.top) == (0, 0)

    def test_minimum_size_is_one_pixel(self):
        buffer = Image.new("RGBA", (1, 1))
        view = center_crop(buffer, 0.75)
        assert (view.width, view.height) == (1, 1)
        assert view.box == (0, 0, 1, 1)

    def test_full_scale_covers_buffer(self):
        buffer = Image.new("RGBA", (37, 21))
        view = center_crop(buffer, 1.0)
        assert view.box == (0, 0, 37, 21)

    def test_view_references_parent(self):
        """Views share the parent buffer instead of copying it."""
        buffer = Image.new("RGBA", (50, 50))
        views = [center_crop(buffer, s) for s in (1.0, 0.9, 0.75)]
        assert all(v.buffer is buffer for v in views)
        assert isinstance(views[0], CropView)


class TestComputeFingerprint:
    """Tests for compute_fingerprint."""

    def test_checksum_is_sha256_of_input(self):
        data = solid_image()
        result = compute_fingerprint(data)
        assert result.checksum == hashlib.sha256(data).digest()
        assert result.checksum == compute_sha256(data)
        assert len(result.checksum) == 32

    def test_deterministic(self):
        data = falling_gradient()
        first = compute_fingerprint(data)
        second = compute_fingerprint(bytes(data))
        assert first.checksum == second.checksum
        assert first.records == second.records
        assert first.aspect_ratio == second.aspect_ratio

    def test_six_records_in_crop_then_kind_order(self):
        result = compute_fingerprint(solid_image())
        layout = [(kind, crop) for kind, crop, _ in result.records]
        assert layout == [
            (FingerprintKind.DHASH, FingerprintCrop.FULL),
            (FingerprintKind.AHASH, FingerprintCrop.FULL),
            (FingerprintKind.DHASH, FingerprintCrop.CENTER90),
            (FingerprintKind.AHASH, FingerprintCrop.CENTER90),
            (FingerprintKind.DHASH, FingerprintCrop.CENTER75),
            (FingerprintKind.AHASH, FingerprintCrop.CENTER75),
        ]

    def test_hashes_fit_in_64_bits(self):
        result = compute_fingerprint(falling_gradient())
        for _, _, value in result.records:
            assert 0 <= value <= ALL_ONES

    def test_aspect_ratio(self):
        result = compute_fingerprint(solid_image(width=200, height=100))
        assert result.aspect_ratio == pytest.approx(2.0)

    def test_solid_color_hashes_are_zero(self):
        result = compute_fingerprint(solid_image())
        assert all(value == 0 for _, _, value in result.records)

    def test_falling_gradient_dhash_sets_all_bits(self):
        result = compute_fingerprint(falling_gradient())
        for crop in FingerprintCrop:
            assert hash_of(result, FingerprintKind.DHASH, crop) == ALL_ONES

    def test_falling_gradient_ahash_marks_left_half(self):
        """Left columns are brighter than average, right columns are not."""
        result = compute_fingerprint(falling_gradient())
        row_bits = 0b11110000
        expected = 0
        for _ in range(8):
            expected = (expected << 8) | row_bits
        assert hash_of(result, FingerprintKind.AHASH, FingerprintCrop.FULL) == expected

    def test_same_pixels_in_other_mode_match(self):
        """A grayscale PNG and its RGB rendering hash the same."""
        gray = Image.open(io.BytesIO(falling_gradient())).convert("L")
        from_gray = compute_fingerprint(png_bytes(gray))
        from_rgb = compute_fingerprint(falling_gradient())
        assert from_gray.records == from_rgb.records
        assert from_gray.checksum != from_rgb.checksum

    def test_palette_and_alpha_images_decode(self):
        rgba = Image.new("RGBA", (40, 30), (10, 200, 30, 128))
        palette = Image.new("RGB", (40, 30), (10, 200, 30)).convert("P")
        for img in (rgba, palette):
            result = compute_fingerprint(png_bytes(img))
            assert len(result.records) == 6

    def test_tiny_image(self):
        result = compute_fingerprint(solid_image(width=1, height=1))
        assert len(result.records) == 6
        assert result.aspect_ratio == 1.0

    def test_garbage_bytes_raise_decode_failed(self):
        with pytest.raises(DecodeFailed):
            compute_fingerprint(b"definitely not an image")

    def test_empty_bytes_raise_decode_failed(self):
        with pytest.raises(DecodeFailed):
            compute_fingerprint(b"")

    def test_truncated_image_raises_decode_failed(self):
        data = falling_gradient()
        with pytest.raises(DecodeFailed):
            compute_fingerprint(data[: len(data) // 2])

    def test_error_hierarchy(self):
        assert issubclass(DecodeFailed, FingerprintError)
        assert issubclass(ProcessingError, FingerprintError)
        err = ProcessingError("scale", "boom")
        assert err.code == "scale"
        assert "boom" in str(err)
