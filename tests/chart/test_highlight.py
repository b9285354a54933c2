"""Tests for rule highlight partitioning."""

from __future__ import annotations

from rulecharts.chart.highlight import partition
from rulecharts.pivot.series import DataPoint


def _data():
    return [
        DataPoint(0, 1, "a", 1),
        DataPoint(1, 2, "b", 1),
        DataPoint(2, 3, None, 1),
        DataPoint(3, 4, "a", 1),
    ]


def test_no_selection_highlights_everything() -> None:
    parts = partition(_data(), None)
    assert parts.highlighted == _data()
    assert parts.dimmed == []


def test_selected_rule_splits_points() -> None:
    parts = partition(_data(), "a")
    assert [p.x for p in parts.highlighted] == [0, 3]
    assert [p.x for p in parts.dimmed] == [1, 2]


def test_unknown_rule_dims_everything() -> None:
    parts = partition(_data(), "zzz")
    assert parts.highlighted == []
    assert len(parts.dimmed) == 4
