"""Plotly figure generation for rule charts.

Builds a Plotly figure dict from per-dataset pivot tables and ChartOptions.
Axis ranges and tick values come from the Scale model, series are decimated
in pixel space, and a selected rule splits a dataset's points into a
highlighted trace and a dimmed one.
"""

from __future__ import annotations

import math
from typing import Collection, Mapping, Optional, Sequence

import plotly.graph_objects as go
from plotly.colors import qualitative

from rulecharts.chart.chart_options import Axis, ChartOptions, axis_scale
from rulecharts.chart.decimate import decimate_indices
from rulecharts.chart.dimensions import ChartDimensions
from rulecharts.chart.highlight import partition
from rulecharts.chart.scale import Scale, ScaleKind, format_tick
from rulecharts.pivot.pivot_table import PivotTable
from rulecharts.pivot.series import DataPoint, Point, points
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

DIMMED_COLOR = "rgba(150, 150, 150, 0.35)"
DATASET_COLORS = qualitative.Plotly

DEFAULT_DIMENSIONS = ChartDimensions(width=900, height=500)


def dataset_color(dataset_id: int) -> str:
    return DATASET_COLORS[dataset_id % len(DATASET_COLORS)]


def visible_points(data: Sequence[DataPoint], x_scale: Scale, y_scale: Scale, min_dist: float) -> list[DataPoint]:
    """Data-space points that survive pixel-space decimation.

    Points that do not map to a finite pixel (NaN values, non-positive values
    on a log axis) are dropped.
    """
    pixels = [Point(x_scale(p.x), y_scale(p.y)) for p in data]
    kept = []
    for i in decimate_indices(pixels, min_dist):
        px = pixels[i]
        if math.isfinite(px.x) and math.isfinite(px.y):
            kept.append(data[i])
    return kept


def _axis_layout(scale: Scale, spacing: float, title: str) -> dict:
    ticks = scale.ticks(spacing)
    d0, d1 = scale.domain
    if scale.kind is ScaleKind.LOG:
        axis_type = "log"
        axis_range = [math.log10(d0), math.log10(d1)]
    else:
        axis_type = "linear"
        axis_range = [d0, d1]
    return dict(
        type=axis_type,
        range=axis_range,
        tickmode="array",
        tickvals=ticks,
        ticktext=[format_tick(t) for t in ticks],
        title=dict(text=title),
        zeroline=False,
    )


class FigureGenerator:
    """Generates Plotly figure dictionaries from pivot tables and chart options.

    Attributes:
        dims: Viewport used for scales and decimation.
    """

    def __init__(self, dims: ChartDimensions = DEFAULT_DIMENSIONS) -> None:
        self.dims = dims

    def scales(self, options: ChartOptions) -> tuple[Scale, Scale]:
        return axis_scale(options, Axis.X, self.dims), axis_scale(options, Axis.Y, self.dims)

    def make_figure(
        self,
        tables: Sequence[tuple[int, PivotTable]],
        options: ChartOptions,
        *,
        selected: Optional[Collection[int]] = None,
        selected_rules: Optional[Mapping[int, Optional[str]]] = None,
        labels: Optional[Mapping[int, str]] = None,
    ) -> dict:
        """Generate a Plotly figure dictionary.

        Args:
            tables: (dataset_id, table) for successful datasets only.
            options: Axis, column and decimation settings.
            selected: Dataset ids to draw; None draws all of ``tables``.
            selected_rules: Highlighted rule per dataset id (None or missing
                means no highlight).
            labels: Legend label per dataset id.

        Returns:
            Plotly figure dictionary.
        """
        selected_rules = selected_rules or {}
        labels = labels or {}
        x_scale, y_scale = self.scales(options)

        fig = go.Figure()
        n_drawn = 0
        for dataset_id, table in tables:
            if selected is not None and dataset_id not in selected:
                continue
            label = labels.get(dataset_id, f"dataset {dataset_id}")
            color = dataset_color(dataset_id)
            data = points(table, options.x_col, options.y_col)
            kept = visible_points(data, x_scale, y_scale, options.min_dist)
            logger.debug(f"dataset {dataset_id}: {len(kept)}/{len(data)} points after decimation")

            if options.draw_line and kept:
                fig.add_trace(go.Scatter(
                    x=[p.x for p in kept],
                    y=[p.y for p in kept],
                    mode="lines",
                    name=f"{label} (line)",
                    line=dict(color=color, width=1),
                    showlegend=False,
                    hoverinfo="skip",
                ))

            rule = selected_rules.get(dataset_id)
            parts = partition(kept, rule)
            if parts.dimmed:
                fig.add_trace(self._marker_trace(parts.dimmed, f"{label} (other rules)", DIMMED_COLOR, legend=False))
            fig.add_trace(self._marker_trace(
                parts.highlighted,
                label if rule is None else f"{label}: {rule}",
                color,
                legend=True,
            ))
            n_drawn += 1

        fig.update_layout(
            width=self.dims.width,
            height=self.dims.height,
            margin=dict(
                l=self.dims.margin_left,
                r=self.dims.margin_right,
                t=self.dims.margin_top,
                b=self.dims.margin_bottom,
            ),
            xaxis=_axis_layout(x_scale, options.tick_spacing(Axis.X), options.x_col),
            yaxis=_axis_layout(y_scale, options.tick_spacing(Axis.Y), options.y_col),
            showlegend=n_drawn > 0,
            uirevision="keep",
        )
        logger.debug(f"Figure generated: {n_drawn} dataset(s), {len(fig.data)} traces")
        return fig.to_dict()

    @staticmethod
    def _marker_trace(data: Sequence[DataPoint], name: str, color: str, *, legend: bool) -> go.Scatter:
        return go.Scatter(
            x=[p.x for p in data],
            y=[p.y for p in data],
            mode="markers",
            name=name,
            customdata=[p.rule or "" for p in data],
            marker=dict(size=5, color=color),
            showlegend=legend,
            hovertemplate="rule=%{customdata}<br>x=%{x}<br>y=%{y}<extra></extra>",
        )
