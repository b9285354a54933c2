"""Tests for the scale and axis model."""

from __future__ import annotations

import math

import pytest

from rulecharts.chart.scale import (
    ScaleKind,
    clamp_domain,
    format_tick,
    is_power_of_ten,
    lower_bound,
    make_scale,
    nice_ticks,
    round_upper_bound,
)


@pytest.mark.parametrize("v, expected", [(83, 90), (7500, 8000), (5, 10), (1, 10), (9.99, 10), (120, 200)])
def test_round_upper_bound(v: float, expected: float) -> None:
    assert round_upper_bound(v) == expected


@pytest.mark.parametrize("v", [0.37, 1.0, 2.5, 83.0, 99.0, 1234.5, 1e6])
def test_round_upper_bound_never_below_input(v: float) -> None:
    assert round_upper_bound(v) >= v


def test_round_upper_bound_without_logarithm() -> None:
    assert round_upper_bound(0) == 10
    assert round_upper_bound(-5) == 10


def test_lower_bound() -> None:
    assert lower_bound("linear", -5) == 0
    assert lower_bound("linear", 3) == 3
    assert lower_bound("log", 0) == 1
    assert lower_bound(ScaleKind.LOG, 50) == 50
    assert lower_bound(ScaleKind.LOG) == 1
    assert lower_bound(ScaleKind.LINEAR) == 0


def test_nice_ticks() -> None:
    assert nice_ticks(0, 100, 10) == [0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
    assert nice_ticks(0, 1, 5) == [0, 0.2, 0.4, 0.6, 0.8, 1.0]
    assert nice_ticks(100, 0, 10)[0] == 100


def test_linear_forward_and_invert() -> None:
    scale = make_scale("linear", (0, 100), (0, 500))
    assert scale(50) == 250
    assert scale.invert(250) == 50


def test_y_scale_runs_bottom_to_top() -> None:
    scale = make_scale("linear", (0, 100), (400, 0))
    assert scale(0) == 400
    assert scale(100) == 0


def test_log_forward() -> None:
    scale = make_scale("log", (1, 1000), (0, 300))
    assert scale(10) == pytest.approx(100)
    assert scale.invert(200) == pytest.approx(100)
    assert math.isnan(scale(0))
    assert math.isnan(scale(-1))


def test_tick_count_follows_pixel_span() -> None:
    scale = make_scale("linear", (0, 100), (0, 500))
    assert scale.ticks(100) == [0, 20, 40, 60, 80, 100]
    narrow = make_scale("linear", (0, 100), (0, 50))
    # never fewer than two ticks requested
    assert len(narrow.ticks(100)) >= 2


def test_log_ticks_powers_of_ten() -> None:
    scale = make_scale("log", (1, 1000), (0, 600))
    assert scale.ticks(100) == [1, 10, 100, 1000]
    all_ticks = scale.ticks(100, powers_of_ten_only=False)
    assert 2 in all_ticks and 20 in all_ticks
    assert len(all_ticks) > 4


def test_ticks_predicate() -> None:
    scale = make_scale("linear", (0, 100), (0, 500))
    assert scale.ticks(100, predicate=lambda t: t >= 50) == [60, 80, 100]


def test_degenerate_domains_are_clamped() -> None:
    assert clamp_domain("linear", (5, 5)) == (5, 6)
    assert clamp_domain("log", (0, 0)) == (1, 10)
    assert clamp_domain("log", (-3, 100)) == (1, 100)
    scale = make_scale("linear", (7, 7), (0, 100))
    assert scale(7) == 0


def test_is_power_of_ten() -> None:
    assert is_power_of_ten(1000)
    assert is_power_of_ten(0.01)
    assert not is_power_of_ten(200)
    assert not is_power_of_ten(0)


def test_format_tick() -> None:
    assert format_tick(5) == "5"
    assert format_tick(0.5) == "0.5"
    assert format_tick(1000) == "1000"
    assert format_tick(10000) == "10<sup>4</sup>"
    assert format_tick(25000) == "2.5×10<sup>4</sup>"
