"""Scales, chart options, decimation and figure building."""

from rulecharts.chart.chart_options import (
    Axis,
    AxisRange,
    ChartOptions,
    automatic_range,
    axis_scale,
    effective_range,
    lock_range,
    set_user_bound,
    with_data_max,
)
from rulecharts.chart.decimate import decimate, decimate_indices
from rulecharts.chart.dimensions import ChartDimensions
from rulecharts.chart.figure_generator import FigureGenerator
from rulecharts.chart.highlight import HighlightPartition, partition
from rulecharts.chart.scale import (
    Scale,
    ScaleKind,
    format_tick,
    lower_bound,
    make_scale,
    round_upper_bound,
)

__all__ = [
    "Axis",
    "AxisRange",
    "ChartDimensions",
    "ChartOptions",
    "FigureGenerator",
    "HighlightPartition",
    "Scale",
    "ScaleKind",
    "automatic_range",
    "axis_scale",
    "decimate",
    "decimate_indices",
    "effective_range",
    "format_tick",
    "lock_range",
    "lower_bound",
    "make_scale",
    "partition",
    "round_upper_bound",
    "set_user_bound",
    "with_data_max",
]
