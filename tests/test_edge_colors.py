import json
import sys
import tracemalloc

import numpy as np
import pytest
from PIL import Image

from edge_colors import (
    AnalysisOptions, EdgeReport, ImageColorReport, RGBColor, DecodedRaster,
    InvalidImage, compute_edge_report, compute_image_colors, main,
    average_color, color_distance, quantize,
)


# =============================================================================
# Options
# =============================================================================

def test_default_options():
    options = AnalysisOptions()
    assert options.sample_rate == 10
    assert options.edge_depth == 10
    assert options.exclude_color is None
    assert options.color_tolerance == 30
    assert options.contrast_boost == 1


@pytest.mark.parametrize('kwargs', [
    {'sample_rate': 0},
    {'edge_depth': 0},
    {'color_tolerance': -1},
    {'contrast_boost': -0.5},
    {'color_tolerance': float('nan')},
])
def test_invalid_options(kwargs):
    with pytest.raises(ValueError):
        AnalysisOptions(**kwargs)


@pytest.mark.parametrize('value', ['#ffffff', 'fff', (255, 255, 255), RGBColor(255, 255, 255)])
def test_exclude_color_coerced(value):
    assert AnalysisOptions(exclude_color=value).exclude_color == RGBColor(255, 255, 255)


# =============================================================================
# Helpers
# =============================================================================

def test_average_color_empty_is_black():
    assert average_color(np.empty((0, 3))).tolist() == [0, 0, 0]


def test_color_distance_black_to_white():
    assert color_distance((0, 0, 0), (255, 255, 255)) == pytest.approx(441.67, abs=0.01)


def test_quantize_rounds_half_up_to_multiples_of_16():
    assert quantize([0, 7, 8, 24, 200, 255]).tolist() == [0, 0, 16, 32, 208, 256]


# =============================================================================
# Edge report
# =============================================================================

@pytest.mark.parametrize('size', [(1, 1), (3, 7), (25, 40), (64, 16)])
@pytest.mark.parametrize('channels', [3, 4])
def test_edge_report_uniform_image(make_solid, size, channels):
    color = RGBColor(12, 200, 99)
    raster = make_solid(*size, color.as_tuple(), channels=channels)
    report = compute_edge_report(raster, AnalysisOptions(sample_rate=3, edge_depth=2))
    for value in (report.top, report.bottom, report.left, report.right,
                  report.dominant, report.average_all):
        assert value == color


def test_edge_report_distinguishes_borders(make_rgb):
    # 4x4 frame: red top row, blue bottom row, green everywhere else
    red, green, blue = (255, 0, 0), (0, 255, 0), (0, 0, 255)
    rows = [[red] * 4] + [[green] * 4 for _ in range(2)] + [[blue] * 4]
    options = AnalysisOptions(sample_rate=1, edge_depth=1)
    report = compute_edge_report(make_rgb(rows), options)

    assert report.top == RGBColor(*red)
    assert report.bottom == RGBColor(*blue)
    # left/right columns: one red, two green, one blue
    assert report.left == RGBColor(64, 128, 64)
    assert report.right == report.left
    # pooled over 16 samples: 6 red, 4 green, 6 blue
    assert report.dominant == RGBColor.from_floats(255 * 6 / 16, 255 * 4 / 16, 255 * 6 / 16)


def test_edge_report_average_all_weights_by_length(make_rgb):
    # 8 wide, 2 tall; top row white, bottom row black
    rows = [[(255, 255, 255)] * 8, [(0, 0, 0)] * 8]
    report = compute_edge_report(make_rgb(rows), AnalysisOptions(sample_rate=1, edge_depth=1))

    top, bottom, side = 255.0, 0.0, 127.5
    expected = (top * 8 + bottom * 8 + side * 2 + side * 2) / (2 * 8 + 2 * 2)
    assert report.average_all == RGBColor.from_floats(expected, expected, expected)
    assert report.left == RGBColor(128, 128, 128)


def test_edge_report_to_dict(make_solid):
    report = compute_edge_report(make_solid(4, 4, (200, 50, 50)))
    assert report.to_dict() == {
        'top': '#c83232', 'bottom': '#c83232', 'left': '#c83232',
        'right': '#c83232', 'dominant': '#c83232', 'averageAll': '#c83232',
    }


def test_edge_report_invalid_image():
    with pytest.raises(InvalidImage):
        compute_edge_report(DecodedRaster(0, 0, 8, 3, b''))


def test_edge_report_diagnostics(make_solid):
    events = []
    compute_edge_report(make_solid(20, 10, (1, 2, 3)),
                        AnalysisOptions(sample_rate=5, edge_depth=2),
                        diagnostics=lambda event, details: events.append((event, details)))
    assert len(events) == 1
    event, details = events[0]
    assert event == 'edge_report'
    assert details['samples'] == {'top': 8, 'bottom': 8, 'left': 4, 'right': 4}


# =============================================================================
# Image colors
# =============================================================================

def test_uniform_scenario(make_solid):
    report = compute_image_colors(make_solid(4, 4, (200, 50, 50)), AnalysisOptions(sample_rate=1))
    assert report.dominant == RGBColor(200, 50, 50)
    assert report.average == RGBColor(200, 50, 50)


def test_two_by_two_scenario(make_rgb):
    rows = [[(255, 0, 0), (255, 0, 0)], [(0, 255, 0), (0, 0, 0)]]
    report = compute_image_colors(make_rgb(rows), AnalysisOptions(sample_rate=1))
    assert report.average == RGBColor(128, 64, 0)
    assert report.dominant == RGBColor(255, 0, 0)


@pytest.mark.parametrize('tolerance', [0, 5, 30])
def test_excluding_only_color_leaves_black(make_solid, tolerance):
    options = AnalysisOptions(sample_rate=1, exclude_color=(40, 80, 120), color_tolerance=tolerance)
    report = compute_image_colors(make_solid(6, 6, (40, 80, 120)), options)
    assert report.average == RGBColor(0, 0, 0)
    assert report.dominant == RGBColor(0, 0, 0)


@pytest.mark.parametrize('rate', [1, 2, 4, 8, 16])
def test_sample_rate_does_not_move_uniform_dominant(make_solid, rate):
    report = compute_image_colors(make_solid(32, 32, (90, 10, 240)), AnalysisOptions(sample_rate=rate))
    assert report.dominant == RGBColor(90, 10, 240)


def test_exclusion_removes_background_from_average(make_rgb):
    white, navy = (255, 255, 255), (0, 0, 128)
    rows = [[white, white, white, navy] for _ in range(4)]
    raster = make_rgb(rows)

    plain = compute_image_colors(raster, AnalysisOptions(sample_rate=1))
    assert plain.dominant == RGBColor(*white)

    excluded = compute_image_colors(raster, AnalysisOptions(sample_rate=1, exclude_color='#ffffff'))
    assert excluded.dominant == RGBColor(*navy)
    assert excluded.average == RGBColor(*navy)


def test_contrast_boost_prefers_distinct_color(make_rgb):
    # Background white excluded; light grey is more frequent, black contrasts more
    white, light, black = (255, 255, 255), (200, 200, 200), (0, 0, 0)
    rows = [[white] * 10 for _ in range(4)] + [[light] * 6 + [black] * 4]
    raster = make_rgb(rows)

    no_boost = AnalysisOptions(sample_rate=1, exclude_color=white, contrast_boost=0)
    assert compute_image_colors(raster, no_boost).dominant == RGBColor(*light)

    boosted = AnalysisOptions(sample_rate=1, exclude_color=white, contrast_boost=5)
    assert compute_image_colors(raster, boosted).dominant == RGBColor(*black)


def test_contrast_boost_inert_without_exclusion(make_rgb):
    rows = [[(200, 200, 200)] * 3 + [(0, 0, 0)] * 2]
    options = AnalysisOptions(sample_rate=1, contrast_boost=100)
    assert compute_image_colors(make_rgb(rows), options).dominant == RGBColor(200, 200, 200)


def test_ties_keep_first_bucket_in_scan_order(make_rgb):
    a, b = (250, 10, 10), (10, 10, 250)
    options = AnalysisOptions(sample_rate=1)
    assert compute_image_colors(make_rgb([[b, a, a, b]]), options).dominant == RGBColor(*b)
    assert compute_image_colors(make_rgb([[a, b, b, a]]), options).dominant == RGBColor(*a)


def test_dominant_is_mean_of_bucket_members(make_rgb):
    rows = [[(100, 100, 100), (102, 98, 100), (0, 0, 0)]]
    report = compute_image_colors(make_rgb(rows), AnalysisOptions(sample_rate=1))
    assert report.dominant == RGBColor(101, 99, 100)


def test_sample_rate_strides_both_axes(make_rgb):
    red, blue = (255, 0, 0), (0, 0, 255)
    rows = [[red if (x % 2 == 0 and y % 2 == 0) else blue for x in range(6)] for y in range(6)]
    report = compute_image_colors(make_rgb(rows), AnalysisOptions(sample_rate=2))
    assert report.average == RGBColor(*red)


def test_sixteen_bit_and_palette_rasters_agree():
    wide = DecodedRaster(2, 2, 16, 3, np.array([65535, 0, 0] * 4, dtype=np.uint16))
    indexed = DecodedRaster(2, 2, 8, 1, bytes([0, 0, 0, 0]), [(255, 0, 0)])
    options = AnalysisOptions(sample_rate=1)
    assert compute_image_colors(wide, options) == compute_image_colors(indexed, options)


def test_image_colors_report_types(make_solid):
    report = compute_image_colors(make_solid(3, 3, (0, 0, 0)))
    assert isinstance(report, ImageColorReport)
    assert report.to_dict() == {'dominant': '#000000', 'average': '#000000'}
    assert isinstance(compute_edge_report(make_solid(3, 3, (0, 0, 0))), EdgeReport)


def test_image_colors_diagnostics(make_solid):
    events = []
    options = AnalysisOptions(sample_rate=1, exclude_color=(5, 5, 5), color_tolerance=0)
    compute_image_colors(make_solid(3, 2, (5, 5, 5)), options,
                         diagnostics=lambda event, details: events.append(details))
    assert events[0]['sampled'] == 6
    assert events[0]['excluded'] == 6
    assert events[0]['unique_colors'] == 0


def test_image_colors_invalid_image():
    with pytest.raises(InvalidImage):
        compute_image_colors(DecodedRaster(3, 3, 8, 3, bytes(4)))


# =============================================================================
# Memory
# =============================================================================

@pytest.mark.parametrize('analyze', [compute_image_colors, compute_edge_report])
def test_sampling_converts_only_sampled_pixels(analyze):
    width = height = 2000
    samples = bytes(width * height * 4)
    raster = DecodedRaster(width, height, 8, 4, samples)

    tracemalloc.start()
    try:
        analyze(raster, AnalysisOptions())
        _, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()

    # a full float64 copy of the raster would be 8x the input
    assert peak < len(samples) // 2


# =============================================================================
# CLI
# =============================================================================

@pytest.fixture
def framed_png(tmp_path):
    path = tmp_path / 'framed.png'
    img = Image.new('RGB', (20, 20), (255, 255, 255))
    for x in range(5, 15):
        for y in range(5, 15):
            img.putpixel((x, y), (0, 0, 128))
    img.save(path)
    return path


def test_cli_prints_image_colors(framed_png, monkeypatch, capsys):
    monkeypatch.setattr(sys, 'argv', [
        'edge_colors.py', '-i', str(framed_png), '--sample-rate', '1', '--exclude', '#ffffff',
    ])
    main()
    assert json.loads(capsys.readouterr().out) == {'dominant': '#000080', 'average': '#000080'}


def test_cli_edges_with_verbose_diagnostics(framed_png, monkeypatch, capsys):
    monkeypatch.setattr(sys, 'argv', [
        'edge_colors.py', '-i', str(framed_png), '--edges', '--edge-depth', '2', '--verbose',
    ])
    main()
    captured = capsys.readouterr()
    report = json.loads(captured.out)
    assert report['top'] == '#ffffff'
    assert report['averageAll'] == '#ffffff'
    assert captured.err.startswith('edge_report: ')


@pytest.mark.parametrize('extra', [[], ['--sample-rate', '0']])
def test_cli_errors_exit_1(tmp_path, framed_png, monkeypatch, capsys, extra):
    target = framed_png if extra else tmp_path / 'missing.png'
    monkeypatch.setattr(sys, 'argv', ['edge_colors.py', '-i', str(target)] + extra)
    with pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 1
    assert capsys.readouterr().err.startswith('Error')
