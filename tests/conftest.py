import numpy as np
import pytest

from pixels import DecodedRaster


def solid_raster(width, height, color, channels=3):
    """An 8-bit raster filled with one color (alpha 255 when channels == 4)."""
    pixel = {
        1: [color[0]],
        2: [color[0], 255],
        3: list(color),
        4: list(color) + [255],
    }[channels]
    samples = bytes(pixel * (width * height))
    return DecodedRaster(width, height, 8, channels, samples)


def rgb_raster(rows):
    """Build an 8-bit RGB raster from a list of rows of (r, g, b) tuples."""
    data = np.array(rows, dtype=np.uint8)
    height, width = data.shape[:2]
    return DecodedRaster(width, height, 8, 3, data.tobytes())


@pytest.fixture
def make_solid():
    return solid_raster


@pytest.fixture
def make_rgb():
    return rgb_raster
