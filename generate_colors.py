#!/usr/bin/env python3
"""Extract dominant/average colors for every post's generated images."""

import argparse
import json
import sys
import time
from pathlib import Path

from edge_colors import AnalysisOptions, compute_image_colors, DEFAULT_SAMPLE_RATE
from pixels import load_raster
from validate_edges import find_numbered_images


COLORS_FILE = 'colors.json'


def extract_post_colors(post_dir: Path, options: AnalysisOptions) -> list[dict]:
    """
    Compute colors for each numbered image in a post folder, in order.

    Raises:
        ValueError: If any image fails to decode or has no usable pixels.
    """
    colors = []
    for image_path in find_numbered_images(post_dir):
        report = compute_image_colors(load_raster(str(image_path)), options)
        colors.append(report.to_dict())
    return colors


def main():
    parser = argparse.ArgumentParser(
        description='Write colors.json for every post folder of generated images.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Directory of post folders, each holding numbered PNGs'
    )
    parser.add_argument(
        '--sample-rate',
        type=int,
        default=DEFAULT_SAMPLE_RATE,
        help='Sample every N pixels (default: %(default)s)'
    )
    parser.add_argument(
        '--exclude',
        default=None,
        help='Background color to discount, as hex'
    )

    args = parser.parse_args()
    root = Path(args.input)

    if not root.is_dir():
        print(f"Error: Input directory not found: {root}", file=sys.stderr)
        sys.exit(2)

    try:
        options = AnalysisOptions(sample_rate=args.sample_rate, exclude_color=args.exclude)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    processed = 0
    skipped = 0
    failed = []

    batch_start = time.perf_counter()

    for post_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        if not find_numbered_images(post_dir):
            print(f"Skipping: {post_dir.name} (no images)")
            skipped += 1
            continue

        try:
            start = time.perf_counter()
            colors = extract_post_colors(post_dir, options)
            elapsed = time.perf_counter() - start
        except (FileNotFoundError, ValueError) as e:
            error_msg = f"{type(e).__name__}: {e}"
            print(f"{post_dir.name} → ERROR: {error_msg}", file=sys.stderr)
            failed.append((post_dir.name, error_msg))
            continue

        output_file = post_dir / COLORS_FILE
        output_file.write_text(json.dumps(colors, indent=2) + '\n')
        print(f"{post_dir.name} → {len(colors)} images ({elapsed:.2f}s)")
        for i, color in enumerate(colors):
            print(f"  Image {i}: dominant={color['dominant']} average={color['average']}")
        processed += 1

    batch_elapsed = time.perf_counter() - batch_start

    print()
    print(f"Processed: {processed}, skipped: {skipped}, failed: {len(failed)} "
          f"in {batch_elapsed:.2f}s")
    if failed:
        print(f"Failed ({len(failed)}):")
        for name, error in failed:
            print(f"  - {name}: {error}")
        sys.exit(1)


if __name__ == '__main__':
    main()
