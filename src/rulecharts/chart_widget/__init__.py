"""NiceGUI widget charting every dataset the aggregator knows."""

from rulecharts.chart_widget.rule_chart_widget import RuleChartWidget

__all__ = ["RuleChartWidget"]
