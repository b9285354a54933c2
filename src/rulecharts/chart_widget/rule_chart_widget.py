"""Rule chart widget.

NiceGUI host for the aggregator: a dataset checkbox list with load status and
a per-dataset rule select, shared-column x/y selects, scale and lock controls,
and a ui.plotly chart. The widget subscribes to the aggregator and rebuilds
the figure on every transition. Uses Plotly dicts only for ui.plotly.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from nicegui import ui

from rulecharts.aggregator.aggregator import DatasetResult, MultiSourceAggregator, QueryStatus
from rulecharts.aggregator.combine import extent_selector, global_extent, shared_columns
from rulecharts.chart.chart_options import (
    Axis,
    ChartOptions,
    lock_range,
    set_columns,
    set_draw_line,
    set_scale_type,
    with_data_max,
)
from rulecharts.chart.dimensions import ChartDimensions
from rulecharts.chart.figure_generator import DEFAULT_DIMENSIONS, FigureGenerator
from rulecharts.chart.scale import ScaleKind
from rulecharts.pivot.series import INDEX_COLUMN
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

SCALE_OPTIONS = [k.value for k in ScaleKind]

OnOptionsChange = Callable[[ChartOptions], None]
OnSelectionChange = Callable[[set[int], dict[int, Optional[str]]], None]


def _safe_call(func: Callable, *args, **kwargs) -> None:
    """Safely call a function, catching 'client deleted' RuntimeErrors only."""
    try:
        func(*args, **kwargs)
    except RuntimeError as e:
        if "deleted" not in str(e).lower():
            raise


def status_text(result: Optional[DatasetResult]) -> str:
    """Short status shown next to a dataset checkbox."""
    if result is None or result.status is QueryStatus.PENDING:
        return "loading..."
    if result.status is QueryStatus.ERROR:
        return f"error: {result.error}"
    n = len(result.table) if result.table is not None else 0
    suffix = " (refreshing)" if result.fetching else ""
    return f"{n} rows{suffix}"


class RuleChartWidget:
    """Interactive chart over every dataset the aggregator knows.

    Args:
        aggregator: Source of per-dataset tables and combine cells.
        options: Initial chart options.
        dims: Chart viewport used for scales and decimation.
        selected: Initially selected dataset ids.
        selected_rules: Initially highlighted rule per dataset id.
        on_options_change: Called with the new ChartOptions after every change.
        on_selection_change: Called with (selected ids, selected rules) after
            a dataset is toggled or a rule is picked.
    """

    def __init__(
        self,
        aggregator: MultiSourceAggregator,
        *,
        options: Optional[ChartOptions] = None,
        dims: ChartDimensions = DEFAULT_DIMENSIONS,
        selected: Optional[Iterable[int]] = None,
        selected_rules: Optional[dict[int, Optional[str]]] = None,
        on_options_change: Optional[OnOptionsChange] = None,
        on_selection_change: Optional[OnSelectionChange] = None,
    ) -> None:
        self._agg = aggregator
        self._options = options if options is not None else ChartOptions()
        self._generator = FigureGenerator(dims)
        self._selected: set[int] = set(selected) if selected is not None else set()
        self._selected_rules: dict[int, Optional[str]] = dict(selected_rules or {})
        self._on_options_change = on_options_change
        self._on_selection_change = on_selection_change
        self._columns_cell = aggregator.add_cell(shared_columns)
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._updating_programmatically = False

        self._dataset_column: Optional[Any] = None
        self._x_select: Optional[ui.select] = None
        self._y_select: Optional[ui.select] = None
        self._plot: Optional[ui.plotly] = None

    # -----------------------------
    # State
    # -----------------------------
    @property
    def options(self) -> ChartOptions:
        return self._options

    @property
    def selected(self) -> set[int]:
        return set(self._selected)

    @property
    def selected_rules(self) -> dict[int, Optional[str]]:
        return dict(self._selected_rules)

    def column_options(self) -> list[str]:
        """Choices for the x/y selects: row index plus the columns every loaded dataset has."""
        shared = self._columns_cell.value or []
        cols = [INDEX_COLUMN] + [c for c in shared if c != INDEX_COLUMN]
        for current in (self._options.x_col, self._options.y_col):
            if current not in cols:
                cols.append(current)
        return cols

    def figure(self) -> dict:
        labels = {e.dataset_id: e.display_path for e in self._agg.entries}
        return self._generator.make_figure(
            self._agg.successful(),
            self._options,
            selected=self._selected,
            selected_rules=self._selected_rules,
            labels=labels,
        )

    def _set_options(self, options: ChartOptions) -> None:
        if options == self._options:
            return
        self._options = options
        if self._on_options_change is not None:
            try:
                self._on_options_change(options)
            except Exception:
                logger.exception("on_options_change callback failed")

    def _selection_changed(self) -> None:
        if self._on_selection_change is None:
            return
        try:
            self._on_selection_change(self.selected, self.selected_rules)
        except Exception:
            logger.exception("on_selection_change callback failed")

    def _sync_data_max(self) -> None:
        select = extent_selector(self._options.x_col, self._options.y_col)
        extent = self._agg.combine(lambda results: global_extent(results, self._selected), select)
        if extent is None:
            self._set_options(with_data_max(self._options, None, None))
        else:
            self._set_options(with_data_max(self._options, extent.x_max, extent.y_max))

    # -----------------------------
    # User actions
    # -----------------------------
    def toggle_dataset(self, dataset_id: int, checked: bool) -> None:
        if checked:
            self._selected.add(dataset_id)
        else:
            self._selected.discard(dataset_id)
        logger.debug(f"dataset {dataset_id} selected={checked}")
        self._selection_changed()
        self.refresh()

    def select_rule(self, dataset_id: int, rule: Optional[str]) -> None:
        self._selected_rules[dataset_id] = rule or None
        self._selection_changed()
        self.refresh()

    def set_columns(self, *, x_col: Optional[str] = None, y_col: Optional[str] = None) -> None:
        self._set_options(set_columns(self._options, x_col=x_col, y_col=y_col))
        self.refresh()

    def set_scale_type(self, axis: Axis, kind: str) -> None:
        self._set_options(set_scale_type(self._options, axis, kind))
        self.refresh()

    def set_locked(self, locked: bool) -> None:
        self._set_options(lock_range(self._options, bool(locked)))
        self.refresh()

    def set_draw_line(self, draw_line: bool) -> None:
        self._set_options(set_draw_line(self._options, draw_line))
        self.refresh()

    def refetch(self, dataset_id: int) -> None:
        self._agg.refetch(dataset_id)

    # -----------------------------
    # UI
    # -----------------------------
    def render(self) -> None:
        """Create the widget inside the current container and start listening to the aggregator."""
        with ui.row().classes("w-full no-wrap gap-4"):
            with ui.column().classes("w-1/4 gap-1"):
                ui.label("Datasets").classes("text-lg")
                self._dataset_column = ui.column().classes("w-full gap-1")

            with ui.column().classes("flex-1"):
                with ui.row().classes("w-full gap-4 items-center"):
                    self._x_select = ui.select(
                        self.column_options(),
                        value=self._options.x_col,
                        label="x",
                        on_change=lambda e: self._on_column_change(Axis.X, e.value),
                    ).classes("w-40")
                    self._y_select = ui.select(
                        self.column_options(),
                        value=self._options.y_col,
                        label="y",
                        on_change=lambda e: self._on_column_change(Axis.Y, e.value),
                    ).classes("w-40")
                    ui.select(
                        SCALE_OPTIONS,
                        value=self._options.scale_type_x.value,
                        label="x scale",
                        on_change=lambda e: self.set_scale_type(Axis.X, e.value),
                    ).classes("w-28")
                    ui.select(
                        SCALE_OPTIONS,
                        value=self._options.scale_type_y.value,
                        label="y scale",
                        on_change=lambda e: self.set_scale_type(Axis.Y, e.value),
                    ).classes("w-28")
                    ui.switch("Lock range", value=self._options.locked, on_change=lambda e: self.set_locked(e.value))
                    ui.checkbox("Lines", value=self._options.draw_line, on_change=lambda e: self.set_draw_line(e.value))
                self._plot = ui.plotly(self.figure()).classes("w-full")

        self._unsubscribe = self._agg.subscribe(self._on_aggregator_change)
        self.refresh()

    def close(self) -> None:
        """Stop listening to the aggregator."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._agg.remove_cell(self._columns_cell)

    def _on_aggregator_change(self, _aggregator: MultiSourceAggregator) -> None:
        _safe_call(self.refresh)

    def _on_column_change(self, axis: Axis, value: Optional[str]) -> None:
        if self._updating_programmatically or not value:
            return
        if axis is Axis.X:
            self.set_columns(x_col=value)
        else:
            self.set_columns(y_col=value)

    def refresh(self) -> None:
        """Recompute the data maxima, then redraw the dataset list, selects and chart."""
        self._sync_data_max()
        self._rebuild_dataset_list()
        self._update_column_selects()
        if self._plot is not None:
            self._plot.figure = self.figure()
            self._plot.update()

    def _rebuild_dataset_list(self) -> None:
        if self._dataset_column is None:
            return
        self._dataset_column.clear()
        results = self._agg.results()
        with self._dataset_column:
            if self._agg.listing_error is not None:
                ui.label(f"listing failed: {self._agg.listing_error}").classes("text-negative")
            for entry in self._agg.entries:
                result = results.get(entry.dataset_id)
                self._render_dataset_row(entry.dataset_id, entry.display_path, result)

    def _render_dataset_row(self, dataset_id: int, label: str, result: Optional[DatasetResult]) -> None:
        with ui.row().classes("w-full items-center gap-2"):
            ui.checkbox(
                label,
                value=dataset_id in self._selected,
                on_change=lambda e, i=dataset_id: self.toggle_dataset(i, e.value),
            )
            ui.label(status_text(result)).classes("text-xs text-gray-500")
            if result is not None and result.status is QueryStatus.ERROR:
                ui.button("Retry", on_click=lambda i=dataset_id: self.refetch(i)).props("flat dense")
        if result is not None and result.is_success:
            rules = result.table.rules()
            current = self._selected_rules.get(dataset_id)
            ui.select(
                rules,
                value=current if current in rules else None,
                label="rule",
                clearable=True,
                on_change=lambda e, i=dataset_id: self.select_rule(i, e.value),
            ).classes("w-full")

    def _update_column_selects(self) -> None:
        options = self.column_options()
        self._updating_programmatically = True
        try:
            for select, value in ((self._x_select, self._options.x_col), (self._y_select, self._options.y_col)):
                if select is None:
                    continue
                select.options = options
                select.value = value
                select.update()
        finally:
            self._updating_programmatically = False
