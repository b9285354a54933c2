"""
rulecharts: Charts of rewrite-rule experiment logs with NiceGUI.

This package provides:
- PivotTable: long-format (key..., name, value) rows reshaped into wide rows
- MultiSourceAggregator: concurrent fetch-and-pivot per dataset with combine cells
- Scale / ChartOptions / FigureGenerator: axes, range lock, decimation, Plotly figures
- RuleChartWidget: NiceGUI host tying the pieces together
- Logging utilities for library and application use

For logging configuration in standalone scripts/demos:
    ```python
    from rulecharts.utils.logging import configure_logging
    configure_logging(level="DEBUG")
    ```

When used as a library (imported by other applications), logging is
automatically handled by the parent application's configuration.
"""

import logging

from rulecharts.utils.logging import configure_logging, get_logger

from rulecharts.aggregator import DatasetClient, MultiSourceAggregator, QueryStatus
from rulecharts.chart import ChartDimensions, ChartOptions, FigureGenerator, ScaleKind, make_scale
from rulecharts.chart_widget import RuleChartWidget
from rulecharts.errors import FetchError, MalformedRecordError, RuleChartsError
from rulecharts.pivot import PivotTable, build

# Ensure rulecharts logger has NullHandler so logs don't propagate to root
# when no application has configured logging. Applications/demos call
# configure_logging() to replace this with a real handler.
_logger = logging.getLogger("rulecharts")
if not _logger.handlers:
    _logger.addHandler(logging.NullHandler())

__all__ = [
    "ChartDimensions",
    "ChartOptions",
    "DatasetClient",
    "FetchError",
    "FigureGenerator",
    "MalformedRecordError",
    "MultiSourceAggregator",
    "PivotTable",
    "QueryStatus",
    "RuleChartWidget",
    "RuleChartsError",
    "ScaleKind",
    "build",
    "configure_logging",
    "get_logger",
    "make_scale",
]

__version__ = "0.1.0"
