#!/usr/bin/env python3
"""
Representative colors for a decoded raster.

Two independent analyses over the same pixel accessor:
  - Edge report: per-border averages, pooled edge average, length-weighted average
  - Image colors: whole-image average and quantized dominant color, optionally
    discounting a known background color
"""

import argparse
import json
import sys
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from pixels import (
    DecodedRaster, RGBColor, InvalidImage, IndexOutOfBounds,
    load_raster, rgb_array, rgb_to_hex, get_pixel,
)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_SAMPLE_RATE = 10  # Sample every N pixels
DEFAULT_EDGE_DEPTH = 10  # Rows/columns sampled from each border
DEFAULT_COLOR_TOLERANCE = 30.0  # RGB distance treated as "same as excluded"
DEFAULT_CONTRAST_BOOST = 1.0

QUANTIZE_STEP = 16  # 16 buckets per channel, 4096 total
MAX_RGB_DISTANCE = 441  # sqrt(255^2 * 3), black to white

Diagnostics = Callable[[str, dict], None]

__all__ = [
    'AnalysisOptions', 'EdgeReport', 'ImageColorReport', 'RGBColor',
    'DecodedRaster', 'InvalidImage', 'IndexOutOfBounds',
    'compute_edge_report', 'compute_image_colors',
    'average_color', 'color_distance', 'quantize', 'rgb_to_hex', 'get_pixel',
]


# =============================================================================
# Options and results
# =============================================================================

@dataclass(frozen=True)
class AnalysisOptions:
    """Sampling and exclusion policy shared by both analyses."""
    sample_rate: int = DEFAULT_SAMPLE_RATE
    edge_depth: int = DEFAULT_EDGE_DEPTH
    exclude_color: Optional[RGBColor] = None  # RGBColor, (r, g, b) or hex
    color_tolerance: float = DEFAULT_COLOR_TOLERANCE
    contrast_boost: float = DEFAULT_CONTRAST_BOOST

    def __post_init__(self):
        if int(self.sample_rate) < 1:
            raise ValueError(f"sample_rate must be >= 1, got {self.sample_rate}")
        if int(self.edge_depth) < 1:
            raise ValueError(f"edge_depth must be >= 1, got {self.edge_depth}")
        if not self.color_tolerance >= 0:
            raise ValueError(f"color_tolerance must be >= 0, got {self.color_tolerance}")
        if not self.contrast_boost >= 0:
            raise ValueError(f"contrast_boost must be >= 0, got {self.contrast_boost}")
        if self.exclude_color is not None:
            object.__setattr__(self, 'exclude_color', RGBColor.coerce(self.exclude_color))


@dataclass(frozen=True)
class EdgeReport:
    top: RGBColor
    bottom: RGBColor
    left: RGBColor
    right: RGBColor
    dominant: RGBColor  # pooled mean of all border samples, not quantized
    average_all: RGBColor  # border averages weighted by border length

    def to_dict(self) -> dict:
        return {
            'top': self.top.hex,
            'bottom': self.bottom.hex,
            'left': self.left.hex,
            'right': self.right.hex,
            'dominant': self.dominant.hex,
            'averageAll': self.average_all.hex,
        }


@dataclass(frozen=True)
class ImageColorReport:
    dominant: RGBColor
    average: RGBColor

    def to_dict(self) -> dict:
        return {'dominant': self.dominant.hex, 'average': self.average.hex}


# =============================================================================
# Color Utilities
# =============================================================================

def average_color(samples: np.ndarray) -> np.ndarray:
    """Channel-wise mean of an (n, 3) sample array. Empty input gives black."""
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 3)
    if len(samples) == 0:
        return np.zeros(3)
    return samples.mean(axis=0)


def color_distance(a, b) -> np.ndarray:
    """Euclidean RGB distance (0-441). Broadcasts over leading axes."""
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return np.sqrt(np.sum(diff ** 2, axis=-1))


def quantize(values: np.ndarray) -> np.ndarray:
    """Round each channel to the nearest multiple of QUANTIZE_STEP (half up)."""
    return np.floor(np.asarray(values, dtype=np.float64) / QUANTIZE_STEP + 0.5) * QUANTIZE_STEP


def _to_color(values) -> RGBColor:
    return RGBColor.from_floats(values[0], values[1], values[2])


def _resolve(options: Optional[AnalysisOptions]) -> AnalysisOptions:
    return options if options is not None else AnalysisOptions()


# =============================================================================
# Edge analysis
# =============================================================================

def sample_edges(raster: DecodedRaster, sample_rate: int, edge_depth: int) -> dict:
    """
    Collect border samples as (n, 3) arrays.

    Top/bottom bands span edge_depth rows sampled every sample_rate columns;
    left/right bands span edge_depth columns sampled every sample_rate rows.
    Bands are clamped to the image, so small images overlap themselves.
    Only the band samples are normalized.
    """
    h, w = raster.height, raster.width
    bands = {
        'top': (slice(0, min(edge_depth, h)), slice(None, None, sample_rate)),
        'bottom': (slice(max(h - edge_depth, 0), h), slice(None, None, sample_rate)),
        'left': (slice(None, None, sample_rate), slice(0, min(edge_depth, w))),
        'right': (slice(None, None, sample_rate), slice(max(w - edge_depth, 0), w)),
    }
    return {
        name: rgb_array(raster, rows, cols).reshape(-1, 3)
        for name, (rows, cols) in bands.items()
    }


def compute_edge_report(
    raster: DecodedRaster,
    options: Optional[AnalysisOptions] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> EdgeReport:
    """
    Average the colors along each border of the raster.

    Raises:
        InvalidImage: If the raster has no usable pixels.
    """
    options = _resolve(options)
    w, h = raster.width, raster.height

    edges = sample_edges(raster, int(options.sample_rate), int(options.edge_depth))
    averages = {name: average_color(samples) for name, samples in edges.items()}

    pooled = np.concatenate(list(edges.values()))
    dominant = average_color(pooled)

    weighted = (
        averages['top'] * w + averages['bottom'] * w
        + averages['left'] * h + averages['right'] * h
    ) / (2 * w + 2 * h)

    if diagnostics is not None:
        diagnostics('edge_report', {
            'width': w,
            'height': h,
            'bit_depth': raster.bit_depth,
            'channels': raster.channels,
            'indexed': raster.is_indexed,
            'samples': {name: len(s) for name, s in edges.items()},
        })

    return EdgeReport(
        top=_to_color(averages['top']),
        bottom=_to_color(averages['bottom']),
        left=_to_color(averages['left']),
        right=_to_color(averages['right']),
        dominant=_to_color(dominant),
        average_all=_to_color(weighted),
    )


# =============================================================================
# Whole-image analysis
# =============================================================================

def sample_grid(raster: DecodedRaster, sample_rate: int) -> np.ndarray:
    """Every sample_rate-th pixel on both axes, in row-major scan order."""
    stride = slice(None, None, sample_rate)
    return rgb_array(raster, stride, stride).reshape(-1, 3)


def exclude_background(samples: np.ndarray, exclude_color, tolerance: float) -> np.ndarray:
    """Drop samples within tolerance (inclusive) of exclude_color."""
    if exclude_color is None or len(samples) == 0:
        return samples
    distances = color_distance(samples, RGBColor.coerce(exclude_color).as_tuple())
    return samples[distances > tolerance]


def dominant_bucket(
    samples: np.ndarray,
    exclude_color: Optional[RGBColor] = None,
    contrast_boost: float = DEFAULT_CONTRAST_BOOST,
) -> tuple[np.ndarray, float, int]:
    """
    Pick the highest scoring quantization bucket.

    Score is the bucket's sample count, boosted by the bucket color's distance
    from exclude_color when one is given. Ties go to the bucket seen first in
    scan order.

    Returns:
        (color, score, bucket_count) where color is the mean of the winning
        bucket's samples; black with zero score when empty.
    """
    if len(samples) == 0:
        return np.zeros(3), 0.0, 0

    buckets = quantize(samples)
    unique, first_seen, inverse, counts = np.unique(
        buckets, axis=0, return_index=True, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)

    scores = counts.astype(np.float64)
    if exclude_color is not None:
        contrast = color_distance(unique, RGBColor.coerce(exclude_color).as_tuple()) / MAX_RGB_DISTANCE
        scores = scores * (1 + contrast * contrast_boost)

    # np.unique sorts buckets by value, so break ties on first scan position
    tied = np.flatnonzero(scores == scores.max())
    best = int(tied[np.argmin(first_seen[tied])])

    color = average_color(samples[inverse == best])
    return color, float(scores[best]), len(unique)


def compute_image_colors(
    raster: DecodedRaster,
    options: Optional[AnalysisOptions] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> ImageColorReport:
    """
    Compute the dominant and average color over the whole raster.

    Raises:
        InvalidImage: If the raster has no usable pixels.
    """
    options = _resolve(options)
    sampled = sample_grid(raster, int(options.sample_rate))
    retained = exclude_background(sampled, options.exclude_color, options.color_tolerance)

    average = average_color(retained)
    dominant, score, bucket_count = dominant_bucket(
        retained, options.exclude_color, options.contrast_boost
    )

    if diagnostics is not None:
        diagnostics('image_colors', {
            'width': raster.width,
            'height': raster.height,
            'bit_depth': raster.bit_depth,
            'channels': raster.channels,
            'sampled': len(sampled),
            'excluded': len(sampled) - len(retained),
            'unique_colors': bucket_count,
            'dominant_score': score,
            'dominant': rgb_to_hex(*dominant),
            'average': rgb_to_hex(*average),
        })

    return ImageColorReport(dominant=_to_color(dominant), average=_to_color(average))


# =============================================================================
# CLI
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description='Compute representative colors for an image.'
    )
    parser.add_argument('--input', '-i', required=True, help='Path to the image file')
    parser.add_argument('--edges', action='store_true',
                        help='Report border colors instead of whole-image colors')
    parser.add_argument('--sample-rate', type=int, default=DEFAULT_SAMPLE_RATE,
                        help='Sample every N pixels (default: %(default)s)')
    parser.add_argument('--edge-depth', type=int, default=DEFAULT_EDGE_DEPTH,
                        help='Rows/columns sampled from each border (default: %(default)s)')
    parser.add_argument('--exclude', default=None,
                        help='Background color to discount, as hex (e.g. #ffffff)')
    parser.add_argument('--tolerance', type=float, default=DEFAULT_COLOR_TOLERANCE,
                        help='RGB distance treated as background (default: %(default)s)')
    parser.add_argument('--contrast-boost', type=float, default=DEFAULT_CONTRAST_BOOST,
                        help='Weight toward colors far from the background (default: %(default)s)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Print raster metadata and sampling totals to stderr')

    args = parser.parse_args()

    def report(event, details):
        print(f"{event}: {json.dumps(details)}", file=sys.stderr)

    try:
        options = AnalysisOptions(
            sample_rate=args.sample_rate,
            edge_depth=args.edge_depth,
            exclude_color=args.exclude,
            color_tolerance=args.tolerance,
            contrast_boost=args.contrast_boost,
        )
        raster = load_raster(args.input)
        analyze = compute_edge_report if args.edges else compute_image_colors
        result = analyze(raster, options, diagnostics=report if args.verbose else None)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error analyzing image: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2))


if __name__ == '__main__':
    main()
