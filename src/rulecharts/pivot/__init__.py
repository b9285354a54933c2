"""Pivoting long-format experiment logs into wide tables and chart series."""

from rulecharts.pivot.ordered_set import set_add, set_has, set_intersect
from rulecharts.pivot.pivot_table import (
    KeySchema,
    PivotTable,
    PivotTableBuilder,
    build,
    map_rows,
)
from rulecharts.pivot.series import INDEX_COLUMN, DataPoint, Extent, Point, points, series_extent

__all__ = [
    "INDEX_COLUMN",
    "DataPoint",
    "Extent",
    "KeySchema",
    "PivotTable",
    "PivotTableBuilder",
    "Point",
    "build",
    "map_rows",
    "points",
    "series_extent",
    "set_add",
    "set_has",
    "set_intersect",
]
