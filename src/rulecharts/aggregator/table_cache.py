"""On-disk cache of pivot tables (platformdirs + JSON).

Entries are keyed by ``(dataset_id, buster)``: changing the cache-busting
token makes every earlier entry a miss. The cache only stores inert JSON; the
aggregator turns an entry back into a PivotTable with PivotTable.from_dict()
before using it.

Behavior:
- Missing or unreadable entry -> miss (None), logged at debug/warning level
- Entry written under a different buster -> miss
- Write failures are logged and re-raised
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from platformdirs import user_cache_dir

from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

CACHE_SCHEMA_VERSION: int = 1


@dataclass(frozen=True)
class CachedTable:
    """A cache hit: the table's inert form and when it was saved (epoch seconds)."""
    data: dict[str, Any]
    saved_at: float


class TableCache(Protocol):
    def get(self, dataset_id: int, buster: str) -> Optional[CachedTable]: ...

    def put(self, dataset_id: int, buster: str, data: dict[str, Any]) -> None: ...

    def invalidate(self, dataset_id: int) -> None: ...


class MemoryTableCache:
    """In-process TableCache."""

    def __init__(self) -> None:
        self._entries: dict[int, tuple[str, CachedTable]] = {}

    def get(self, dataset_id: int, buster: str) -> Optional[CachedTable]:
        entry = self._entries.get(dataset_id)
        if entry is None or entry[0] != buster:
            return None
        return entry[1]

    def put(self, dataset_id: int, buster: str, data: dict[str, Any]) -> None:
        self._entries[dataset_id] = (buster, CachedTable(data=data, saved_at=time.time()))

    def invalidate(self, dataset_id: int) -> None:
        self._entries.pop(dataset_id, None)


class JsonTableCache:
    """TableCache storing one JSON file per dataset under a cache directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    @staticmethod
    def default_cache_dir(app_name: str = "rulecharts", app_author: str | None = None) -> Path:
        """
        OS-appropriate per-user cache directory.

        macOS:   ~/Library/Caches/rulecharts/tables
        Linux:   ~/.cache/rulecharts/tables
        Windows: %LOCALAPPDATA%\\rulecharts\\Cache\\tables
        """
        return Path(user_cache_dir(app_name, app_author)) / "tables"

    def _path(self, dataset_id: int) -> Path:
        return self.directory / f"dataset_{int(dataset_id)}.json"

    def get(self, dataset_id: int, buster: str) -> Optional[CachedTable]:
        path = self._path(dataset_id)
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug(f"No cached table for dataset {dataset_id} at {path}")
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cached table at {path} is unreadable: {e}, ignoring")
            return None

        if not isinstance(parsed, dict):
            logger.warning(f"Cached table at {path} does not contain a dict, ignoring")
            return None
        try:
            schema_version = int(parsed.get("schema_version", -1))
        except (TypeError, ValueError):
            logger.warning(f"Cached table at {path} has an invalid schema version, ignoring")
            return None
        if schema_version != CACHE_SCHEMA_VERSION:
            logger.info(f"Cached table at {path} has an old schema version, ignoring")
            return None
        if parsed.get("buster") != buster:
            return None
        data = parsed.get("table")
        if not isinstance(data, dict):
            logger.warning(f"Cached table at {path} has no table payload, ignoring")
            return None
        try:
            saved_at = float(parsed.get("saved_at", 0.0))
        except (TypeError, ValueError):
            saved_at = 0.0
        return CachedTable(data=data, saved_at=saved_at)

    def put(self, dataset_id: int, buster: str, data: dict[str, Any]) -> None:
        path = self._path(dataset_id)
        payload = {
            "schema_version": CACHE_SCHEMA_VERSION,
            "buster": buster,
            "saved_at": time.time(),
            "table": data,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload), encoding="utf-8")
            logger.debug(f"Cached dataset {dataset_id} at {path}")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error caching dataset {dataset_id} to {path}: {e}")
            raise

    def invalidate(self, dataset_id: int) -> None:
        path = self._path(dataset_id)
        try:
            path.unlink()
            logger.debug(f"Removed cached table {path}")
        except FileNotFoundError:
            pass
