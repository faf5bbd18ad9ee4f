#!/usr/bin/env python3
"""
Pixel access for decoded rasters.

Normalizes bit depth, channel count and palette indirection into plain 8-bit RGB.
The container decoder (Pillow here) only hands us width, height, samples and
an optional palette; nothing in this module parses image files itself.
"""

import base64
import io
import math
from dataclasses import dataclass
from functools import cached_property
from typing import Optional

import numpy as np
from PIL import Image


# =============================================================================
# Constants
# =============================================================================

SIXTEEN_BIT_SCALE = 257  # 65535 / 255, exact linear map onto 0-255

# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side

DATA_URI_PREFIX = 'data:image/png;base64,'


# =============================================================================
# Errors
# =============================================================================

class InvalidImage(ValueError):
    """Raster has no usable pixels (zero dimensions, empty or short buffer)."""


class IndexOutOfBounds(IndexError):
    """Pixel coordinates fall outside the raster."""


# =============================================================================
# Colors
# =============================================================================

def clamp_channel(value) -> int:
    """Round half up and clamp to 0-255. NaN and infinities become 0."""
    value = float(value)
    if not math.isfinite(value):
        return 0
    return max(0, min(255, math.floor(value + 0.5)))


def rgb_to_hex(r, g, b) -> str:
    """Format channel values as #rrggbb, clamping anything out of range."""
    return '#' + ''.join(f"{clamp_channel(v):02x}" for v in (r, g, b))


@dataclass(frozen=True)
class RGBColor:
    """An 8-bit RGB color."""
    r: int
    g: int
    b: int

    @classmethod
    def from_floats(cls, r, g, b) -> 'RGBColor':
        return cls(clamp_channel(r), clamp_channel(g), clamp_channel(b))

    @classmethod
    def from_hex(cls, value: str) -> 'RGBColor':
        """Parse '#rrggbb' or '#rgb' (leading '#' optional)."""
        digits = value.strip().lstrip('#')
        if len(digits) == 3:
            digits = ''.join(ch * 2 for ch in digits)
        if len(digits) != 6:
            raise ValueError(f"Invalid hex color: {value!r}")
        try:
            return cls(int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
        except ValueError:
            raise ValueError(f"Invalid hex color: {value!r}")

    @classmethod
    def coerce(cls, value) -> 'RGBColor':
        """Accept an RGBColor, an (r, g, b) sequence or a hex string."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.from_hex(value)
        r, g, b = value
        return cls.from_floats(r, g, b)

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.r, self.g, self.b)

    def as_tuple(self) -> tuple:
        return (self.r, self.g, self.b)


# =============================================================================
# Raster
# =============================================================================

@dataclass
class DecodedRaster:
    """A decoded image as handed over by the container decoder."""
    width: int
    height: int
    bit_depth: int
    channels: int
    samples: object  # bytes-like or np.ndarray, one element per sample
    palette: Optional[list] = None  # [(r, g, b[, a]), ...]

    @property
    def is_indexed(self) -> bool:
        return self.palette is not None and self.channels == 1

    @cached_property
    def values(self) -> np.ndarray:
        """Flat array of sample elements (16-bit byte buffers are big-endian)."""
        if isinstance(self.samples, np.ndarray):
            return self.samples.reshape(-1)
        if not isinstance(self.samples, (bytes, bytearray, memoryview)):
            return np.asarray(self.samples, dtype=np.int64).reshape(-1)
        raw = np.frombuffer(self.samples, dtype=np.uint8)
        if self.bit_depth == 16 and not self.is_indexed:
            return raw[:len(raw) - len(raw) % 2].view('>u2')
        return raw


def validate_raster(raster: DecodedRaster) -> None:
    """
    Check that a raster can be sampled.

    Raises:
        InvalidImage: On zero dimensions, an empty or short sample buffer,
            or a channel count outside 1-4.
    """
    width, height = raster.width, raster.height
    length = 0 if raster.samples is None else len(raster.values)

    if not width or not height or width < 0 or height < 0 or length == 0:
        raise InvalidImage(
            f"Invalid raster data: width={width}, height={height}, dataLength={length}"
        )
    if raster.channels not in (1, 2, 3, 4):
        raise InvalidImage(f"Unsupported channel count: {raster.channels}")

    expected = width * height * raster.channels
    if length < expected:
        raise InvalidImage(
            f"Sample buffer too short: {length} values, expected {expected}"
        )


# =============================================================================
# Per-pixel access
# =============================================================================

def scale_value(value, bit_depth: int):
    """Scale one raw channel value to 0-255. Only 16-bit input is rescaled."""
    if bit_depth == 16:
        return int(np.floor(value / SIXTEEN_BIT_SCALE + 0.5))
    return int(value)


def palette_lookup(palette: list, index: int) -> tuple:
    """Return (r, g, b) for a palette index; missing entries read as black."""
    if 0 <= index < len(palette):
        entry = palette[index]
        if entry is not None:
            entry = list(entry)
            return tuple(int(entry[i]) if i < len(entry) else 0 for i in range(3))
    return (0, 0, 0)


def get_pixel(raster: DecodedRaster, x: int, y: int):
    """
    Read one pixel as an 8-bit RGB color.

    Palette rasters are resolved through their palette first; grayscale is
    replicated across r, g, b; alpha is read but dropped.

    Raises:
        IndexOutOfBounds: If (x, y) is outside the raster.
    """
    if not (0 <= x < raster.width and 0 <= y < raster.height):
        raise IndexOutOfBounds(
            f"Pixel ({x}, {y}) outside {raster.width}x{raster.height} raster"
        )

    data = raster.values
    idx = (y * raster.width + x) * raster.channels

    if raster.is_indexed:
        return RGBColor(*palette_lookup(raster.palette, int(data[idx])))

    if raster.channels in (1, 2):
        gray = scale_value(data[idx], raster.bit_depth)
        return RGBColor(gray, gray, gray)

    return RGBColor(
        scale_value(data[idx], raster.bit_depth),
        scale_value(data[idx + 1], raster.bit_depth),
        scale_value(data[idx + 2], raster.bit_depth),
    )


# =============================================================================
# Whole-raster access
# =============================================================================

def palette_table(palette: list, size: int) -> np.ndarray:
    """Build a (size, 3) lookup table; indices the palette lacks map to black."""
    table = np.zeros((size, 3), dtype=np.float64)
    for i in range(min(size, len(palette))):
        table[i] = palette_lookup(palette, i)
    return table


def pixel_view(raster: DecodedRaster) -> np.ndarray:
    """(height, width, channels) view of the raw samples. No copy, no scaling."""
    validate_raster(raster)
    h, w, c = raster.height, raster.width, raster.channels
    return raster.values[:h * w * c].reshape(h, w, c)


def normalize(data: np.ndarray, raster: DecodedRaster) -> np.ndarray:
    """
    Convert a (rows, cols, channels) block of raw samples to 0-255 float RGB.

    Applies the same rules as get_pixel, vectorized. Slice the pixel_view
    before calling this; only the block passed in is converted.
    """
    if raster.is_indexed:
        indices = data[:, :, 0].astype(np.int64)
        table = palette_table(raster.palette, len(raster.palette))
        known = (indices >= 0) & (indices < len(table))
        rgb = np.zeros(indices.shape + (3,), dtype=np.float64)
        rgb[known] = table[indices[known]]
        return rgb

    gray = data.shape[2] < 3
    data = (data[:, :, :1] if gray else data[:, :, :3]).astype(np.float64)
    if raster.bit_depth == 16:
        data = np.floor(data / SIXTEEN_BIT_SCALE + 0.5)

    if gray:
        return np.repeat(data, 3, axis=2)
    return data


def rgb_array(raster: DecodedRaster, rows: slice = slice(None), cols: slice = slice(None)) -> np.ndarray:
    """
    Normalize a raster, or a strided region of it, to an (h, w, 3) float array.

    rows and cols select from the raw samples before conversion, so a
    sampled region costs memory in proportion to its size only.
    """
    return normalize(pixel_view(raster)[rows, cols], raster)


# =============================================================================
# Decoder adapter (Pillow)
# =============================================================================

def raster_from_image(img: Image.Image) -> DecodedRaster:
    """Wrap a Pillow image as a DecodedRaster without re-encoding its pixels."""
    width, height = img.size
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValueError(
            f"Image dimensions {width}x{height} exceed maximum "
            f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ValueError(
            f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
        )

    mode = img.mode
    if mode == 'P':
        flat = img.getpalette() or []
        palette = [tuple(flat[i:i + 3]) for i in range(0, len(flat), 3)]
        samples = np.asarray(img, dtype=np.uint8)
        return DecodedRaster(width, height, 8, 1, samples, palette)

    # Older Pillow opens 16-bit grayscale PNGs as 32-bit 'I'
    if mode == 'I' or mode.startswith('I;16'):
        samples = np.clip(np.asarray(img, dtype=np.int64), 0, 65535).astype(np.uint16)
        return DecodedRaster(width, height, 16, 1, samples)

    channels = {'L': 1, 'LA': 2, 'RGB': 3, 'RGBA': 4}.get(mode)
    if channels is None:
        img = img.convert('RGBA')
        channels = 4

    samples = np.asarray(img, dtype=np.uint8)
    return DecodedRaster(width, height, 8, channels, samples)


def load_raster(image_path: str) -> DecodedRaster:
    """
    Decode an image file into a DecodedRaster.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
        img.load()
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}")

    return raster_from_image(img)


def raster_from_base64(encoded: str) -> DecodedRaster:
    """Decode a base64 PNG, with or without a data URI prefix."""
    if encoded.startswith(DATA_URI_PREFIX):
        encoded = encoded[len(DATA_URI_PREFIX):]
    try:
        img = Image.open(io.BytesIO(base64.b64decode(encoded)))
        img.load()
    except Exception as e:
        raise ValueError(f"Could not decode image: {e}")

    return raster_from_image(img)
