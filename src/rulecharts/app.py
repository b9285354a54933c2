"""Rule charts app: standalone NiceGUI application around RuleChartWidget.

Reads the server port, cache token, chart options and last selection from
AppConfig, and writes them back as they change. Uses @ui.page("/") pattern.

Run:
    uv run python -m rulecharts.app

Env vars:
    RULECHARTS_GUI_RELOAD: 1/0 (default 0)
    RULECHARTS_LOG_LEVEL: logging level (default INFO)
    HOST: bind host (default 127.0.0.1)
    PORT: bind port for the UI (default 8081)
"""

from __future__ import annotations

import os
from typing import Optional

from nicegui import app, ui

from rulecharts.aggregator.aggregator import MultiSourceAggregator
from rulecharts.aggregator.client import DatasetClient
from rulecharts.aggregator.table_cache import JsonTableCache
from rulecharts.app_config import AppConfig
from rulecharts.chart.chart_options import ChartOptions
from rulecharts.chart_widget.rule_chart_widget import RuleChartWidget
from rulecharts.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    """Parse env var as bool; if unset/invalid returns default."""
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    """Parse env var as int; if unset/invalid returns default."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class RuleChartsApp:
    """Owns the config, HTTP client and aggregator shared by every page."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.client = DatasetClient(config.base_url)
        self.aggregator = MultiSourceAggregator(
            self.client,
            cache=JsonTableCache(JsonTableCache.default_cache_dir()),
            buster=config.data.buster,
        )

    def _save(self) -> None:
        try:
            self.config.save()
        except Exception:
            ui.notify("Could not save settings", type="negative")

    def on_options_change(self, options: ChartOptions) -> None:
        if self.config.set_chart_options(options):
            self._save()

    def on_selection_change(self, selected: set[int], rules: dict[int, Optional[str]]) -> None:
        self.config.set_selected_datasets(selected)
        self.config.set_selected_rules(rules)
        self._save()

    async def change_port(self, port: Optional[float]) -> None:
        """Point at a server on another port: new client, new cache token, fresh listing."""
        if port is None or int(port) == self.config.data.port:
            return
        old_client = self.client
        self.config.set_port(int(port))
        buster = self.config.regenerate_buster()
        self._save()
        self.client = DatasetClient(self.config.base_url)
        self.aggregator.reset(self.client, buster=buster)
        await old_client.aclose()
        logger.info(f"switched to {self.config.base_url}")
        await self.aggregator.refresh_listing()

    async def clear_cache(self) -> None:
        """Drop every cached table and reload from the server."""
        buster = self.config.regenerate_buster()
        self._save()
        self.aggregator.reset(buster=buster)
        await self.aggregator.refresh_listing()

    async def shutdown(self) -> None:
        await self.aggregator.aclose()
        await self.client.aclose()

    def build_page(self) -> None:
        with ui.row().classes("w-full items-center gap-4"):
            ui.label("Rule charts").classes("text-2xl font-bold")
            ui.number(
                "Server port",
                value=self.config.data.port,
                format="%d",
                on_change=lambda e: self.change_port(e.value),
            ).classes("w-32")
            ui.button("Reload listing", on_click=self.aggregator.refresh_listing).props("flat")
            ui.button("Clear cache", on_click=self.clear_cache).props("flat")

        widget = RuleChartWidget(
            self.aggregator,
            options=self.config.get_chart_options(),
            selected=self.config.get_selected_datasets(),
            selected_rules=self.config.get_selected_rules(),
            on_options_change=self.on_options_change,
            on_selection_change=self.on_selection_change,
        )
        widget.render()
        ui.context.client.on_disconnect(widget.close)


def main() -> None:
    configure_logging(level=os.getenv("RULECHARTS_LOG_LEVEL", "INFO"))
    config = AppConfig.load(create_if_missing=True)
    rc_app = RuleChartsApp(config)

    app.on_startup(rc_app.aggregator.refresh_listing)
    app.on_shutdown(rc_app.shutdown)

    @ui.page("/")
    def index() -> None:
        rc_app.aggregator.ensure_fresh()
        rc_app.build_page()

    ui.run(
        host=os.getenv("HOST", "127.0.0.1"),
        port=_env_int("PORT", 8081),
        reload=_env_bool("RULECHARTS_GUI_RELOAD", False),
        title="rulecharts",
    )


if __name__ in {"__main__", "__mp_main__"}:
    main()
