"""Pixel-space point decimation.

Dense series are thinned by dropping any point that lands within
``min_distance`` pixels of the last point kept. Because the input is already
scaled, how much is dropped follows the current zoom and viewport rather than
the raw data density.
"""

from __future__ import annotations

import math
from typing import Protocol, Sequence, TypeVar


class _XY(Protocol):
    x: float
    y: float


P = TypeVar("P", bound=_XY)


def decimate_indices(points: Sequence[_XY], min_distance: float) -> list[int]:
    """Positions of the points decimate() would keep.

    The first point is always kept. Later points with a non-finite coordinate
    are not drawable and are dropped; a non-finite first point never becomes
    the reference, so the next finite point is kept.
    """
    if min_distance <= 0:
        return list(range(len(points)))
    if not points:
        return []

    kept = [0]
    ref = points[0] if math.isfinite(points[0].x) and math.isfinite(points[0].y) else None
    for i in range(1, len(points)):
        p = points[i]
        if not (math.isfinite(p.x) and math.isfinite(p.y)):
            continue
        if ref is None or math.hypot(p.x - ref.x, p.y - ref.y) > min_distance:
            kept.append(i)
            ref = p
    return kept


def decimate(points: Sequence[P], min_distance: float) -> list[P]:
    """Order-preserving subsequence with consecutive kept points > min_distance apart.

    The first point is always kept. With ``min_distance <= 0`` the input is
    returned unchanged (as a list).

    Args:
        points: Points in pixel space (anything with ``x`` and ``y``).
        min_distance: Minimum Euclidean pixel distance between kept points.
    """
    if min_distance <= 0:
        return list(points)
    return [points[i] for i in decimate_indices(points, min_distance)]
