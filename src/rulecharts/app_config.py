# src/rulecharts/app_config.py
"""
App config persistence for rulecharts (platformdirs + JSON).

Persisted items (schema v1):
- port, base_url: where the experiment-log server runs
- buster: cache-busting token for the table cache
- chart_options: ChartOptions dict representation (observed data maxima are not stored)
- selected_datasets, selected_rules: last UI selection

Behavior:
- If config file missing or unreadable -> defaults are used
- If schema_version mismatches:
  - default: reset to defaults
  - optional: keep loaded but update version
- Unknown keys in loaded JSON are ignored with warnings
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from platformdirs import user_config_dir

from rulecharts.chart.chart_options import ChartOptions
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

# Increment when you make a breaking change to the on-disk JSON schema.
SCHEMA_VERSION: int = 1

DEFAULT_PORT: int = 8080


def new_buster() -> str:
    """Fresh cache-busting token; every cached table saved under an older token misses."""
    return uuid.uuid4().hex


def base_url_for_port(port: int) -> str:
    return f"http://localhost:{int(port)}"


@dataclass
class AppConfigData:
    """
    JSON-serializable config payload.

    Schema v1:
    - port: int
    - base_url: str ("" means http://localhost:{port})
    - buster: str
    - chart_options: Dict[str, Any] - ChartOptions dict
    - selected_datasets: list[int]
    - selected_rules: Dict[str, str] - dataset id (as str) -> rule
    """
    schema_version: int = SCHEMA_VERSION
    port: int = DEFAULT_PORT
    base_url: str = ""
    buster: str = field(default_factory=new_buster)
    chart_options: Dict[str, Any] = field(default_factory=dict)
    selected_datasets: list[int] = field(default_factory=list)
    selected_rules: Dict[str, str] = field(default_factory=dict)

    def to_json_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "schema_version": self.schema_version,
            "port": self.port,
            "base_url": self.base_url,
            "buster": self.buster,
            "chart_options": self.chart_options,
            "selected_datasets": self.selected_datasets,
            "selected_rules": self.selected_rules,
        }

    @classmethod
    def from_json_dict(cls, d: Dict[str, Any]) -> "AppConfigData":
        """
        Tolerant loader:
        - ignores unknown keys
        - tolerates partially missing or mistyped values
        """
        schema_version = int(d.get("schema_version", -1))

        port = DEFAULT_PORT
        try:
            port = int(d.get("port", DEFAULT_PORT))
        except (TypeError, ValueError):
            logger.warning(f"port {d.get('port')!r} is not an int, using {DEFAULT_PORT}")

        base_url = str(d.get("base_url") or "")

        buster = d.get("buster")
        if not isinstance(buster, str) or not buster:
            buster = new_buster()
            logger.info("No cache buster in app config, generated a new one")

        chart_options = d.get("chart_options", {})
        if not isinstance(chart_options, dict):
            logger.warning("chart_options is not a dict, using defaults")
            chart_options = {}

        selected_datasets: list[int] = []
        raw_selected = d.get("selected_datasets", [])
        if isinstance(raw_selected, list):
            for v in raw_selected:
                try:
                    selected_datasets.append(int(v))
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring non-integer dataset id {v!r} in selected_datasets")
        else:
            logger.warning("selected_datasets is not a list, using empty list")

        selected_rules: Dict[str, str] = {}
        raw_rules = d.get("selected_rules", {})
        if isinstance(raw_rules, dict):
            selected_rules = {str(k): str(v) for k, v in raw_rules.items() if v is not None}
        else:
            logger.warning("selected_rules is not a dict, using empty dict")

        known_keys = {
            "schema_version", "port", "base_url", "buster",
            "chart_options", "selected_datasets", "selected_rules",
        }
        for key in d.keys():
            if key not in known_keys:
                logger.warning(f"Unknown key '{key}' in app config, ignoring")

        return cls(
            schema_version=schema_version,
            port=port,
            base_url=base_url,
            buster=buster,
            chart_options=chart_options,
            selected_datasets=selected_datasets,
            selected_rules=selected_rules,
        )


class AppConfig:
    """
    Manager for loading/saving AppConfigData to disk.
    """

    def __init__(self, *, path: Path, data: Optional[AppConfigData] = None):
        self.path = path
        self.data = data if data is not None else AppConfigData()

    # -----------------------------
    # Construction / persistence
    # -----------------------------
    @staticmethod
    def default_config_path(
        app_name: str = "rulecharts",
        filename: str = "app_config.json",
        app_author: str | None = None,
    ) -> Path:
        """
        Determine OS-appropriate per-user config path.

        macOS:   ~/Library/Application Support/rulecharts/app_config.json
        Linux:   ~/.config/rulecharts/app_config.json
        Windows: %APPDATA%\\rulecharts\\app_config.json
        """
        return Path(user_config_dir(app_name, app_author)) / filename

    @classmethod
    def load(
        cls,
        *,
        config_path: Optional[Path] = None,
        app_name: str = "rulecharts",
        filename: str = "app_config.json",
        app_author: str | None = None,
        schema_version: int = SCHEMA_VERSION,
        reset_on_version_mismatch: bool = True,
        create_if_missing: bool = False,
    ) -> "AppConfig":
        """
        Load config from disk.

        If file doesn't exist or is unreadable -> defaults.
        If schema mismatch:
          - reset_on_version_mismatch=True -> defaults
          - else -> keep loaded but overwrite schema_version

        If create_if_missing=True and file is missing -> immediately write defaults.
        """
        path = config_path or cls.default_config_path(app_name=app_name, filename=filename, app_author=app_author)
        default_data = AppConfigData(schema_version=schema_version)

        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(parsed, dict):
                logger.warning(f"App config file at {path} does not contain a dict, using defaults")
                return cls(path=path, data=default_data)

            loaded = AppConfigData.from_json_dict(parsed)

            if int(loaded.schema_version) != int(schema_version):
                if reset_on_version_mismatch:
                    logger.warning(
                        f"App config schema version mismatch: loaded={loaded.schema_version}, "
                        f"expected={schema_version}, resetting to defaults"
                    )
                    cfg = cls(path=path, data=default_data)
                    if create_if_missing:
                        cfg.save()
                    return cfg
                loaded.schema_version = int(schema_version)

            return cls(path=path, data=loaded)
        except FileNotFoundError:
            logger.debug(f"App config file not found at {path}, using defaults")
            cfg = cls(path=path, data=default_data)
            if create_if_missing:
                cfg.save()
            return cfg
        except json.JSONDecodeError as e:
            logger.warning(f"App config file at {path} is not valid JSON: {e}, using defaults")
            return cls(path=path, data=default_data)
        except Exception as e:
            logger.warning(f"Error loading app config from {path}: {e}, using defaults")
            return cls(path=path, data=default_data)

    def save(self) -> None:
        """Write config to disk."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            json_str = json.dumps(self.data.to_json_dict(), indent=2)
            self.path.write_text(json_str, encoding="utf-8")
            logger.info(f"Saved app config to {self.path}")
        except Exception as e:
            logger.error(f"Error saving app config to {self.path}: {e}")
            raise

    @property
    def base_url(self) -> str:
        return self.data.base_url or base_url_for_port(self.data.port)

    def set_port(self, port: int) -> None:
        self.data.port = int(port)

    def regenerate_buster(self) -> str:
        """Replace the cache-busting token and return the new one."""
        self.data.buster = new_buster()
        logger.info("Regenerated cache buster")
        return self.data.buster

    def get_chart_options(self) -> ChartOptions:
        try:
            return ChartOptions.from_dict(self.data.chart_options)
        except (TypeError, ValueError) as e:
            logger.warning(f"Error deserializing ChartOptions from config: {e}")
            return ChartOptions()

    def set_chart_options(self, options: ChartOptions) -> bool:
        """Store options without the observed data maxima; returns True if the stored dict changed."""
        d = options.to_dict()
        d.pop("data_max", None)
        if d == self.data.chart_options:
            return False
        self.data.chart_options = d
        return True

    def get_selected_rules(self) -> dict[int, str]:
        out: dict[int, str] = {}
        for k, v in self.data.selected_rules.items():
            try:
                out[int(k)] = v
            except ValueError:
                logger.warning(f"Ignoring selected rule for non-integer dataset id {k!r}")
        return out

    def set_selected_rules(self, rules: dict[int, Optional[str]]) -> None:
        self.data.selected_rules = {str(k): v for k, v in rules.items() if v is not None}

    def get_selected_datasets(self) -> list[int]:
        return list(self.data.selected_datasets)

    def set_selected_datasets(self, ids) -> None:
        self.data.selected_datasets = sorted(int(i) for i in ids)
