"""Chart options: immutable configuration plus pure update functions.

ChartOptions is a frozen dataclass. Every change goes through a function of
the form ``(old_options, change) -> new_options``; callers detect a change by
comparing values, never by mutating a shared object.

The axis range is either automatic (tracks the observed data maximum, rounded
up to a nice bound) or locked to user-pinned bounds. Each pinned bound is
optional and falls back to the automatic one.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from rulecharts.chart.scale import Scale, ScaleKind, lower_bound, make_scale, round_upper_bound
from rulecharts.chart.dimensions import ChartDimensions
from rulecharts.pivot.series import INDEX_COLUMN
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_AUTO_MAX = 100.0


class Axis(Enum):
    X = "x"
    Y = "y"


@dataclass(frozen=True)
class AxisRange:
    """Optional pinned (min, max) for one axis; None means "use automatic"."""
    min: Optional[float] = None
    max: Optional[float] = None

    def to_list(self) -> list[Optional[float]]:
        return [self.min, self.max]

    @classmethod
    def from_list(cls, data: Any) -> "AxisRange":
        if not isinstance(data, (list, tuple)) or len(data) != 2:
            return cls()
        try:
            return cls(*(None if v is None else float(v) for v in data))
        except (TypeError, ValueError):
            logger.warning(f"Invalid axis range {data!r}, using automatic")
            return cls()


@dataclass(frozen=True)
class ChartOptions:
    """Configuration of one chart.

    Data maxima come from the aggregator's global extent; the automatic range
    of an axis is ``(lower_bound(kind), round_upper_bound(data_max))``.
    """
    scale_type_x: ScaleKind = ScaleKind.LINEAR
    scale_type_y: ScaleKind = ScaleKind.LINEAR
    tick_spacing_x: float = 100.0      # pixels per tick
    tick_spacing_y: float = 100.0
    draw_line: bool = True
    x_col: str = INDEX_COLUMN
    y_col: str = "cost"
    locked: bool = False
    user_range_x: AxisRange = AxisRange()
    user_range_y: AxisRange = AxisRange()
    data_max_x: Optional[float] = None
    data_max_y: Optional[float] = None
    min_dist: float = 5.0              # decimation distance in pixels

    def scale_type(self, axis: Axis) -> ScaleKind:
        return self.scale_type_x if axis is Axis.X else self.scale_type_y

    def user_range(self, axis: Axis) -> AxisRange:
        return self.user_range_x if axis is Axis.X else self.user_range_y

    def tick_spacing(self, axis: Axis) -> float:
        return self.tick_spacing_x if axis is Axis.X else self.tick_spacing_y

    def column(self, axis: Axis) -> str:
        return self.x_col if axis is Axis.X else self.y_col

    def to_dict(self) -> dict[str, Any]:
        return {
            "scale_type": {"x": self.scale_type_x.value, "y": self.scale_type_y.value},
            "tick_spacing": {"x": self.tick_spacing_x, "y": self.tick_spacing_y},
            "draw_line": self.draw_line,
            "columns": {"x": self.x_col, "y": self.y_col},
            "locked": self.locked,
            "user_range": {"x": self.user_range_x.to_list(), "y": self.user_range_y.to_list()},
            "data_max": {"x": self.data_max_x, "y": self.data_max_y},
            "min_dist": self.min_dist,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartOptions":
        """Tolerant loader: missing or invalid entries fall back to defaults."""
        d = cls()

        def _pair(name: str) -> dict[str, Any]:
            v = data.get(name)
            return v if isinstance(v, dict) else {}

        def _kind(v: Any, default: ScaleKind) -> ScaleKind:
            try:
                return ScaleKind(v)
            except ValueError:
                if v is not None:
                    logger.warning(f"Unknown scale type {v!r}, using {default.value!r}")
                return default

        def _opt_float(v: Any) -> Optional[float]:
            try:
                return None if v is None else float(v)
            except (TypeError, ValueError):
                return None

        def _float_or(v: Any, default: float) -> float:
            f = _opt_float(v)
            return default if f is None or not math.isfinite(f) else f

        scale_type = _pair("scale_type")
        spacing = _pair("tick_spacing")
        columns = _pair("columns")
        user_range = _pair("user_range")
        data_max = _pair("data_max")
        return cls(
            scale_type_x=_kind(scale_type.get("x"), d.scale_type_x),
            scale_type_y=_kind(scale_type.get("y"), d.scale_type_y),
            tick_spacing_x=_float_or(spacing.get("x"), d.tick_spacing_x),
            tick_spacing_y=_float_or(spacing.get("y"), d.tick_spacing_y),
            draw_line=bool(data.get("draw_line", d.draw_line)),
            x_col=str(columns.get("x", d.x_col)),
            y_col=str(columns.get("y", d.y_col)),
            locked=bool(data.get("locked", d.locked)),
            user_range_x=AxisRange.from_list(user_range.get("x")),
            user_range_y=AxisRange.from_list(user_range.get("y")),
            data_max_x=_opt_float(data_max.get("x")),
            data_max_y=_opt_float(data_max.get("y")),
            min_dist=_float_or(data.get("min_dist"), d.min_dist),
        )


# -----------------------------
# Ranges
# -----------------------------
def automatic_range(options: ChartOptions, axis: Axis) -> tuple[float, float]:
    """Range that tracks the data: floor of the scale kind up to the rounded data maximum."""
    kind = options.scale_type(axis)
    data_max = options.data_max_x if axis is Axis.X else options.data_max_y
    hi = DEFAULT_AUTO_MAX if data_max is None else round_upper_bound(data_max)
    return lower_bound(kind), hi


def effective_range(options: ChartOptions, axis: Axis) -> tuple[float, float]:
    """Displayed range: automatic, or pinned bounds with automatic fallbacks when locked."""
    auto_lo, auto_hi = automatic_range(options, axis)
    if not options.locked:
        return auto_lo, auto_hi
    pinned = options.user_range(axis)
    lo = auto_lo if pinned.min is None else pinned.min
    hi = auto_hi if pinned.max is None else pinned.max
    return lower_bound(options.scale_type(axis), lo), hi


def axis_scale(options: ChartOptions, axis: Axis, dims: ChartDimensions) -> Scale:
    """Scale for one axis over the bounded chart area (y runs bottom-to-top)."""
    pixel_range = dims.x_pixel_range() if axis is Axis.X else dims.y_pixel_range()
    return make_scale(options.scale_type(axis), effective_range(options, axis), pixel_range)


# -----------------------------
# Pure updates
# -----------------------------
def lock_range(options: ChartOptions, locked: bool) -> ChartOptions:
    """Toggle the range lock.

    Locking seeds both pinned ranges from the automatic ranges shown right
    now, so the display does not move. Unlocking keeps the pinned values.
    """
    if locked == options.locked:
        return options
    if not locked:
        return replace(options, locked=False)
    x_lo, x_hi = automatic_range(options, Axis.X)
    y_lo, y_hi = automatic_range(options, Axis.Y)
    return replace(
        options,
        locked=True,
        user_range_x=AxisRange(x_lo, x_hi),
        user_range_y=AxisRange(y_lo, y_hi),
    )


def set_user_bound(
    options: ChartOptions,
    axis: Axis,
    *,
    min: Optional[float] = None,
    max: Optional[float] = None,
    clear: bool = False,
) -> ChartOptions:
    """Pin one or both bounds of an axis; ``clear=True`` unpins both first."""
    current = AxisRange() if clear else options.user_range(axis)
    new = AxisRange(
        min=current.min if min is None else float(min),
        max=current.max if max is None else float(max),
    )
    if axis is Axis.X:
        return replace(options, user_range_x=new)
    return replace(options, user_range_y=new)


def with_data_max(options: ChartOptions, x_max: Optional[float], y_max: Optional[float]) -> ChartOptions:
    """Record the observed data maxima (None keeps the default automatic bound)."""
    if options.data_max_x == x_max and options.data_max_y == y_max:
        return options
    return replace(options, data_max_x=x_max, data_max_y=y_max)


def set_scale_type(options: ChartOptions, axis: Axis, kind: ScaleKind | str) -> ChartOptions:
    kind = ScaleKind(kind) if not isinstance(kind, ScaleKind) else kind
    if axis is Axis.X:
        return replace(options, scale_type_x=kind)
    return replace(options, scale_type_y=kind)


def set_columns(options: ChartOptions, *, x_col: Optional[str] = None, y_col: Optional[str] = None) -> ChartOptions:
    return replace(
        options,
        x_col=options.x_col if x_col is None else x_col,
        y_col=options.y_col if y_col is None else y_col,
    )


def set_tick_spacing(options: ChartOptions, axis: Axis, spacing: float) -> ChartOptions:
    if axis is Axis.X:
        return replace(options, tick_spacing_x=float(spacing))
    return replace(options, tick_spacing_y=float(spacing))


def set_min_dist(options: ChartOptions, min_dist: float) -> ChartOptions:
    return replace(options, min_dist=max(0.0, float(min_dist)))


def set_draw_line(options: ChartOptions, draw_line: bool) -> ChartOptions:
    return replace(options, draw_line=bool(draw_line))
