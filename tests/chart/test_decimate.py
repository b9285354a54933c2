"""Tests for pixel-space decimation."""

from __future__ import annotations

import math

from rulecharts.chart.decimate import decimate, decimate_indices
from rulecharts.pivot.series import Point


def _pts(pairs):
    return [Point(x, y) for x, y in pairs]


def test_decimate_drops_points_within_min_distance() -> None:
    pts = _pts([(0, 0), (1, 0), (10, 0), (10.5, 0), (20, 0)])
    assert decimate(pts, 5) == _pts([(0, 0), (10, 0), (20, 0)])
    assert decimate_indices(pts, 5) == [0, 2, 4]


def test_non_positive_distance_returns_input() -> None:
    pts = _pts([(0, 0), (0, 0), (1, 1)])
    assert decimate(pts, 0) == pts
    assert decimate(pts, -1) == pts
    assert decimate(pts, 0) is not pts


def test_empty_input() -> None:
    assert decimate([], 5) == []


def test_output_is_subsequence_with_spacing() -> None:
    pts = _pts([(i * 0.7, math.sin(i) * 3) for i in range(200)])
    kept = decimate(pts, 4)
    assert kept[0] == pts[0]
    positions = [pts.index(p) for p in kept]
    assert positions == sorted(positions)
    for a, b in zip(kept, kept[1:]):
        assert math.hypot(b.x - a.x, b.y - a.y) > 4


def test_distance_is_measured_from_last_kept_point() -> None:
    # each step is 3 px; with t=5 every other point is kept
    pts = _pts([(3 * i, 0) for i in range(7)])
    assert decimate_indices(pts, 5) == [0, 2, 4, 6]


def test_non_finite_points_are_skipped() -> None:
    nan = float("nan")
    pts = _pts([(nan, 0), (0, 0), (1, 0), (nan, 5), (10, 0)])
    assert decimate_indices(pts, 5) == [0, 1, 4]
