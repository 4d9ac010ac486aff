"""SHA256 and perceptual hashing of cover thumbnails."""

import hashlib
import io
from dataclasses import dataclass

import imagehash
import numpy as np
from PIL import Image

from ..models import FingerprintCrop, FingerprintKind, FingerprintResult


class FingerprintError(Exception):
    """A thumbnail could not be fingerprinted."""


class DecodeFailed(FingerprintError):
    """The bytes are not a decodable image, or it has no pixels."""


class ProcessingError(FingerprintError):
    """An internal conversion or scaling step failed."""

    def __init__(self, code: str, detail: str = ""):
        self.code = code
        super().__init__(f"{code}: {detail}" if detail else code)


# Integer luma weights for R, G, B (≈ BT.601), applied with a divisor of 256.
# Alpha is ignored.
LUMA_WEIGHTS = np.array([77, 150, 29], dtype=np.uint32)
LUMA_DIVISOR = 256

CROP_SCALES = [
    (FingerprintCrop.FULL, 1.0),
    (FingerprintCrop.CENTER90, 0.90),
    (FingerprintCrop.CENTER75, 0.75),
]


def compute_sha256(data: bytes) -> bytes:
    """Compute the SHA256 digest of raw bytes."""
    return hashlib.sha256(data).digest()


def hamming_distance(hash1: int, hash2: int) -> int:
    """
    Calculate hamming distance between two 64-bit hash values.

    Lower distance = more similar images.
    """
    return bin(hash1 ^ hash2).count("1")


def hash_to_hex(value: int) -> str:
    """Render a 64-bit hash as 16 hex digits."""
    return f"{value:016x}"


@dataclass(frozen=True)
class CropView:
    """
    A rectangular region of a pixel buffer.

    Holds a reference to the parent image and never copies pixels; scaling
    reads the region straight out of the parent.
    """

    buffer: Image.Image
    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.left + self.width, self.top + self.height)


def center_crop(buffer: Image.Image, scale: float) -> CropView:
    """Centered view covering `scale` of each dimension (rounded down, min 1x1)."""
    w, h = buffer.size
    cw = max(1, int(w * scale))
    ch = max(1, int(h * scale))
    x = max(0, (w - cw) // 2)
    y = max(0, (h - ch) // 2)
    return CropView(buffer, x, y, cw, ch)


def decode_image(data: bytes) -> Image.Image:
    """Decode thumbnail bytes into a loaded Pillow image."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeFailed(str(e)) from e

    width, height = img.size
    if width <= 0 or height <= 0:
        raise DecodeFailed(f"empty image {width}x{height}")
    return img


def make_rgba_buffer(img: Image.Image) -> Image.Image:
    """Render the image into one 32-bit premultiplied-alpha buffer."""
    try:
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return img.convert("RGBa")
    except (OSError, ValueError, MemoryError) as e:
        raise ProcessingError("convert", str(e)) from e


def scaled_luma(view: CropView, width: int, height: int) -> np.ndarray:
    """
    Downscale a crop view and convert it to 8-bit luma.

    Returns a (height, width) array.
    """
    try:
        scaled = view.buffer.resize((width, height), Image.Resampling.LANCZOS, box=view.box)
    except (OSError, ValueError, MemoryError) as e:
        raise ProcessingError("scale", str(e)) from e

    pixels = np.asarray(scaled, dtype=np.uint32)
    if pixels.shape != (height, width, 4):
        raise ProcessingError("luma", f"unexpected buffer shape {pixels.shape}")
    return (pixels[:, :, :3] @ LUMA_WEIGHTS) // LUMA_DIVISOR


def bits_to_int(bits: np.ndarray) -> int:
    """Pack a boolean grid MSB-first, row-major."""
    return int(str(imagehash.ImageHash(bits)), 16)


def dhash_from_luma(pixels: np.ndarray) -> int:
    """
    Difference hash from a 9x8 luma grid.

    One bit per horizontally adjacent pair: set when the left pixel is
    brighter than the right one.
    """
    if pixels.shape != (8, 9):
        raise ProcessingError("luma", f"dHash needs an 8x9 grid, got {pixels.shape}")
    return bits_to_int(pixels[:, :-1] > pixels[:, 1:])


def ahash_from_luma(pixels: np.ndarray) -> int:
    """Average hash from an 8x8 luma grid, against the integer mean."""
    if pixels.shape != (8, 8):
        raise ProcessingError("luma", f"aHash needs an 8x8 grid, got {pixels.shape}")
    mean = int(pixels.sum()) // pixels.size
    return bits_to_int(pixels > mean)


def compute_dhash(view: CropView) -> int:
    return dhash_from_luma(scaled_luma(view, 9, 8))


def compute_ahash(view: CropView) -> int:
    return ahash_from_luma(scaled_luma(view, 8, 8))


def compute_fingerprint(thumbnail_bytes: bytes) -> FingerprintResult:
    """
    Fingerprint a cover thumbnail.

    Computes the SHA256 of the raw bytes, then a dHash and an aHash for each
    of the full, center-90% and center-75% crops.

    Raises:
        DecodeFailed: bytes are not an image, or it is empty
        ProcessingError: conversion or scaling failed
    """
    checksum = compute_sha256(thumbnail_bytes)

    with decode_image(thumbnail_bytes) as img:
        width, height = img.size
        aspect_ratio = width / height
        buffer = make_rgba_buffer(img)

    # All crops are views into the same buffer
    with buffer:
        crops = [(crop, center_crop(buffer, scale)) for crop, scale in CROP_SCALES]

        records = []
        for crop, view in crops:
            records.append((FingerprintKind.DHASH, crop, compute_dhash(view)))
            records.append((FingerprintKind.AHASH, crop, compute_ahash(view)))

    return FingerprintResult(aspect_ratio=aspect_ratio, checksum=checksum, records=records)


def compute_fingerprint_file(file_path) -> FingerprintResult:
    """Fingerprint a thumbnail stored on disk."""
    with open(file_path, "rb") as f:
        return compute_fingerprint(f.read())
