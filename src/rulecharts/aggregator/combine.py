"""Combine steps folded over per-dataset results.

Each combine receives ``(dataset_id, value)`` pairs for the datasets that are
currently successful, and must not depend on their order: it reruns after
every single completion, not once after all of them.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Callable, Collection, Optional, Sequence

from rulecharts.pivot.ordered_set import set_intersect
from rulecharts.pivot.pivot_table import PivotTable
from rulecharts.pivot.series import Extent, points, series_extent

Results = Sequence[tuple[int, PivotTable]]


def shared_columns(results: Results) -> Optional[list[str]]:
    """Value names present in every successful dataset.

    The fold starts unconstrained (None), so a single loaded dataset yields its
    own columns and an empty result set yields None rather than [].
    """
    acc: Optional[list[str]] = None
    for _dataset_id, table in results:
        acc = set_intersect(acc, table.value_names)
    return acc


def merge_extents(a: Optional[Extent], b: Optional[Extent]) -> Optional[Extent]:
    """Union of two extents; None is the identity."""
    if a is None:
        return b
    if b is None:
        return a
    return Extent(
        x_min=min(a.x_min, b.x_min),
        x_max=max(a.x_max, b.x_max),
        y_min=min(a.y_min, b.y_min),
        y_max=max(a.y_max, b.y_max),
    )


def global_extent(
    results: Sequence[tuple[int, Optional[Extent]]],
    selected: Collection[int],
) -> Optional[Extent]:
    """Column-wise min/max over the selected datasets' series extents."""
    acc: Optional[Extent] = None
    for dataset_id, extent in results:
        if dataset_id in selected:
            acc = merge_extents(acc, extent)
    return acc


@lru_cache(maxsize=64)
def extent_selector(x_col: str, y_col: str) -> Callable[[PivotTable], Optional[Extent]]:
    """Per-table selector computing the (x_col, y_col) series extent.

    The same function object is returned for the same columns, so aggregator
    memoization by selector stays effective.
    """

    def _select(table: PivotTable) -> Optional[Extent]:
        return series_extent(points(table, x_col, y_col))

    return _select


def rule_lists(results: Results) -> dict[int, list[str]]:
    """Rule labels per successful dataset."""
    return {dataset_id: table.rules() for dataset_id, table in results}
