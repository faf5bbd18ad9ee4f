#!/usr/bin/env python3
"""Validate that images have a solid-colored left edge."""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from edge_colors import average_color, color_distance
from pixels import DecodedRaster, RGBColor, InvalidImage, load_raster, rgb_array


LEFT_EDGE_WIDTH = 10  # Columns checked from the left border
PERCEPTUAL_COLOR_THRESHOLD = 30.0  # Max RGB distance from the edge mean
SOLID_EDGE_PERCENTAGE = 0.95  # Share of edge pixels that must be within threshold

NUMBERED_PNG = re.compile(r'^(\d+)\.png$')


@dataclass
class EdgeValidationResult:
    is_valid: bool
    max_distance: float
    avg_color: RGBColor
    percentage_within: float


def check_left_edge(
    raster: DecodedRaster,
    edge_width: int = LEFT_EDGE_WIDTH,
    threshold: float = PERCEPTUAL_COLOR_THRESHOLD,
    required: float = SOLID_EDGE_PERCENTAGE,
) -> EdgeValidationResult:
    """
    Check that the leftmost columns are one solid color.

    Every pixel of the band is compared against the band's mean color; the
    edge is solid when at least `required` of them lie within `threshold`.
    An unusable raster is reported as invalid rather than raised.
    """
    try:
        band = rgb_array(raster, cols=slice(0, min(edge_width, raster.width))).reshape(-1, 3)
    except InvalidImage:
        return EdgeValidationResult(False, 0.0, RGBColor(0, 0, 0), 0.0)

    mean = average_color(band)
    distances = color_distance(band, mean)

    within = float(np.count_nonzero(distances <= threshold)) / len(band)

    return EdgeValidationResult(
        is_valid=within >= required,
        max_distance=float(distances.max()),
        avg_color=RGBColor.from_floats(*mean),
        percentage_within=within,
    )


def find_numbered_images(directory: Path) -> list[Path]:
    """Find N.png files in directory, sorted numerically."""
    images = [p for p in directory.iterdir() if NUMBERED_PNG.match(p.name)]
    return sorted(images, key=lambda p: int(NUMBERED_PNG.match(p.name).group(1)))


def main():
    parser = argparse.ArgumentParser(
        description='Check generated images for a solid left edge.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Directory of post folders, each holding numbered PNGs'
    )
    parser.add_argument(
        '--threshold',
        type=float,
        default=PERCEPTUAL_COLOR_THRESHOLD,
        help='Max RGB distance from the edge mean (default: %(default)s)'
    )

    args = parser.parse_args()
    root = Path(args.input)

    if not root.is_dir():
        print(f"Error: Input directory not found: {root}", file=sys.stderr)
        sys.exit(2)

    total = 0
    invalid = []

    for post_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        images = find_numbered_images(post_dir)
        if not images:
            continue

        print(f"\n{post_dir.name}: {len(images)} PNG files")
        for image_path in images:
            total += 1
            try:
                result = check_left_edge(load_raster(str(image_path)), threshold=args.threshold)
            except (FileNotFoundError, ValueError) as e:
                print(f"  {image_path.name} - ERROR: {e}", file=sys.stderr)
                invalid.append((post_dir.name, image_path.name, float('nan')))
                continue

            pct = result.percentage_within * 100
            if result.is_valid:
                print(f"  {image_path.name} - valid ({pct:.1f}% within threshold, "
                      f"max: {result.max_distance:.1f})")
            else:
                print(f"  {image_path.name} - INVALID ({pct:.1f}% within threshold, "
                      f"need {SOLID_EDGE_PERCENTAGE * 100:.0f}%, max: {result.max_distance:.1f})")
                invalid.append((post_dir.name, image_path.name, result.max_distance))

    print()
    print(f"Total images: {total}")
    print(f"Valid: {total - len(invalid)}")
    print(f"Invalid: {len(invalid)}")
    if invalid:
        print("Images that need regeneration:")
        for post, name, distance in invalid:
            print(f"  - {post}/{name} (max distance: {distance:.1f})")
        sys.exit(1)


if __name__ == '__main__':
    main()
