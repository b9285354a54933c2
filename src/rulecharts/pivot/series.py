"""Chart series extraction from pivot tables.

Turns a PivotTable plus an x/y column choice into DataPoints. Values are
coerced to numbers here (not in the pivot): unparsable or missing cells become
NaN, which extent computations ignore and renderers skip.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from rulecharts.pivot.pivot_table import PivotTable, rule_of

# Pseudo-column: the row's position in the table.
INDEX_COLUMN = "index"


@dataclass(frozen=True)
class Point:
    """An (x, y) pair in chart space or pixel space depending on the stage."""
    x: float
    y: float


@dataclass(frozen=True)
class DataPoint:
    """A chart-space point tagged with the rule and dataset it came from."""
    x: float
    y: float
    rule: Optional[str]
    dataset_id: int

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)


@dataclass(frozen=True)
class Extent:
    """Min/max of x and y over a set of points."""
    x_min: float
    x_max: float
    y_min: float
    y_max: float


def column_values(table: PivotTable, col: str) -> pd.Series:
    """Numeric values of one column in row order (NaN where absent or unparsable)."""
    if col == INDEX_COLUMN:
        return pd.Series(np.arange(len(table), dtype=float))
    raw = [row.get(col) for row in table.rows()]
    return pd.to_numeric(pd.Series(raw, dtype=object), errors="coerce").astype(float)


def points(table: Optional[PivotTable], x_col: str = INDEX_COLUMN, y_col: str = "cost") -> list[DataPoint]:
    """Build one DataPoint per pivot row.

    Args:
        table: Source table; None yields no points.
        x_col: Column for x, or "index" for the row position.
        y_col: Column for y, or "index" for the row position.
    """
    if table is None:
        return []
    xs = column_values(table, x_col).tolist()
    ys = column_values(table, y_col).tolist()
    rules = [rule_of(row) for row in table.rows()]
    return [
        DataPoint(x=float(x), y=float(y), rule=rule, dataset_id=table.dataset_id)
        for x, y, rule in zip(xs, ys, rules)
    ]


def series_extent(data: Iterable[DataPoint]) -> Optional[Extent]:
    """Extent of the finite coordinates, or None if there are none.

    x and y are reduced independently, so a point with a NaN y still counts
    toward the x extent.
    """
    arr = np.array([(p.x, p.y) for p in data], dtype=float).reshape(-1, 2)
    xs = arr[:, 0][np.isfinite(arr[:, 0])]
    ys = arr[:, 1][np.isfinite(arr[:, 1])]
    if xs.size == 0 or ys.size == 0:
        return None
    return Extent(
        x_min=float(xs.min()),
        x_max=float(xs.max()),
        y_min=float(ys.min()),
        y_max=float(ys.max()),
    )
