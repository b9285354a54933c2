"""HTTP client for the experiment-log server.

Endpoints:
- ``GET /available`` -> ``{"paths": [[id, path], ...]}``
- ``GET /download/{id}`` -> ``{"path": ..., "headers": [...], "rows": [[...], ...]}``
- ``GET /download_headers/{id}`` -> ``{"headers": [...]}``, used with
  ``csv_rows=True`` where ``/download/{id}`` serves headerless CSV instead.

Every transport problem (connection error, non-2xx status, undecodable body)
surfaces as FetchError so the aggregator can retry it.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import pandas as pd

from rulecharts.errors import FetchError
from rulecharts.pivot.pivot_table import PivotTable, build
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"


@dataclass(frozen=True)
class DatasetEntry:
    """One entry of the dataset listing."""
    dataset_id: int
    display_path: str


@dataclass(frozen=True)
class RawRows:
    """Header plus string rows for one dataset, as served."""
    headers: list[str]
    rows: list[list[str]] = field(default_factory=list)
    path: Optional[str] = None


def parse_listing(payload: Any) -> list[DatasetEntry]:
    """Parse an ``/available`` payload and sort it ascending by dataset id.

    Raises:
        FetchError: If the payload does not have the expected shape.
    """
    try:
        entries = [DatasetEntry(int(i), str(p)) for i, p in payload["paths"]]
    except (KeyError, TypeError, ValueError) as e:
        raise FetchError(f"unexpected listing payload: {e}") from e
    return sorted(entries, key=lambda entry: entry.dataset_id)


def parse_csv_rows(text: str, headers: list[str]) -> list[list[str]]:
    """Parse headerless CSV into string rows; empty cells become ""."""
    if not text.strip():
        return []
    df = pd.read_csv(io.StringIO(text), header=None, names=headers, dtype=str, keep_default_na=False)
    return df.values.tolist()


class DatasetClient:
    """Async client for listing datasets and downloading their raw rows.

    Args:
        base_url: Server root, e.g. "http://localhost:8080".
        client: Optional pre-built httpx.AsyncClient (tests pass one with a
            MockTransport). When omitted, one is created and owned here.
        timeout: Request timeout in seconds for an owned client.
        csv_rows: Fetch headers separately and parse rows as CSV.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        csv_rows: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.csv_rows = csv_rows
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "DatasetClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, *, dataset_id: Optional[int] = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}", dataset_id=dataset_id) from e
        if response.status_code >= 400:
            raise FetchError(f"GET {url} returned {response.status_code}", dataset_id=dataset_id)
        return response

    async def _get_json(self, path: str, *, dataset_id: Optional[int] = None) -> Any:
        response = await self._get(path, dataset_id=dataset_id)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"invalid JSON from {path}: {e}", dataset_id=dataset_id) from e

    async def list_datasets(self) -> list[DatasetEntry]:
        """Fetch the dataset listing, sorted ascending by id."""
        entries = parse_listing(await self._get_json("/available"))
        logger.debug("listing: %d dataset(s)", len(entries))
        return entries

    async def fetch_raw(self, dataset_id: int) -> RawRows:
        """Download one dataset's header and rows.

        Raises:
            FetchError: On transport failure or a malformed payload.
        """
        if self.csv_rows:
            meta = await self._get_json(f"/download_headers/{dataset_id}", dataset_id=dataset_id)
            headers = meta.get("headers") if isinstance(meta, dict) else None
            if not isinstance(headers, list):
                raise FetchError("header payload has no 'headers' list", dataset_id=dataset_id)
            response = await self._get(f"/download/{dataset_id}", dataset_id=dataset_id)
            try:
                rows = parse_csv_rows(response.text, [str(h) for h in headers])
            except (ValueError, pd.errors.ParserError) as e:
                raise FetchError(f"invalid CSV: {e}", dataset_id=dataset_id) from e
            return RawRows(headers=[str(h) for h in headers], rows=rows)

        data = await self._get_json(f"/download/{dataset_id}", dataset_id=dataset_id)
        try:
            return RawRows(
                headers=[str(h) for h in data["headers"]],
                rows=[list(r) for r in data["rows"]],
                path=data.get("path"),
            )
        except (KeyError, TypeError) as e:
            raise FetchError(f"unexpected download payload: {e}", dataset_id=dataset_id) from e

    async def fetch_table(self, dataset_id: int) -> PivotTable:
        """Download and pivot one dataset.

        Raises:
            FetchError: On transport failure.
            MalformedRecordError: If a row lacks a dimension field.
        """
        raw = await self.fetch_raw(dataset_id)
        table = build(dataset_id, raw.rows, header=raw.headers)
        logger.info("dataset %s: %d row(s), %d value name(s)", dataset_id, len(table), len(table.value_names))
        return table
