# tests/conftest.py
"""Shared fixtures: src on sys.path, sample long-format records, a fake dataset source."""
from __future__ import annotations

import asyncio
import sys
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Optional

import pytest


def pytest_configure() -> None:
    # Ensure rulecharts package is importable when running tests from repo root.
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    if src_dir.exists() and str(src_dir) not in sys.path:
        sys.path.insert(0, str(src_dir))


@pytest.fixture
def records_a() -> list[dict[str, Any]]:
    """Dataset A: value names cost, size."""
    return [
        {"id": 1, "iter": 0, "rule": "a", "when": "before", "name": "cost", "value": "10"},
        {"id": 1, "iter": 0, "rule": "a", "when": "before", "name": "size", "value": "3"},
        {"id": 1, "iter": 1, "rule": "b", "when": "before", "name": "cost", "value": "20"},
        {"id": 1, "iter": 2, "rule": "a", "when": "before", "name": "cost", "value": "30"},
    ]


@pytest.fixture
def records_b() -> list[dict[str, Any]]:
    """Dataset B: value names cost, depth."""
    return [
        {"id": 2, "iter": 0, "rule": "c", "when": "before", "name": "cost", "value": "5"},
        {"id": 2, "iter": 0, "rule": "c", "when": "before", "name": "depth", "value": "7"},
        {"id": 2, "iter": 1, "rule": "c", "when": "before", "name": "cost", "value": "50"},
    ]


class FakeSource:
    """In-memory stand-in for DatasetClient.

    Attributes:
        failures: dataset id -> number of leading fetches that raise FetchError.
        gates: dataset id -> event a fetch waits on before returning.
        malformed: dataset ids whose fetch raises MalformedRecordError.
        calls: dataset id -> number of fetch_table calls.
    """

    def __init__(self, records: dict[int, list[dict[str, Any]]], paths: Optional[dict[int, str]] = None) -> None:
        self.records = records
        self.paths = paths if paths is not None else {i: f"/logs/dataset_{i}.csv" for i in records}
        self.failures: dict[int, int] = {}
        self.listing_failures = 0
        self.gates: dict[int, asyncio.Event] = {}
        self.malformed: set[int] = set()
        self.calls: dict[int, int] = defaultdict(int)
        self.listing_calls = 0

    async def list_datasets(self):
        from rulecharts.aggregator.client import DatasetEntry
        from rulecharts.errors import FetchError

        self.listing_calls += 1
        if self.listing_failures > 0:
            self.listing_failures -= 1
            raise FetchError("listing unavailable")
        return [DatasetEntry(i, p) for i, p in self.paths.items()]

    async def fetch_table(self, dataset_id: int):
        from rulecharts.errors import FetchError, MalformedRecordError
        from rulecharts.pivot.pivot_table import build

        self.calls[dataset_id] += 1
        gate = self.gates.get(dataset_id)
        if gate is not None:
            await gate.wait()
        if self.failures.get(dataset_id, 0) > 0:
            self.failures[dataset_id] -= 1
            raise FetchError("connection refused", dataset_id=dataset_id)
        if dataset_id in self.malformed:
            raise MalformedRecordError({"name": "cost", "value": "1"}, "id")
        return build(dataset_id, self.records[dataset_id])


@pytest.fixture
def source(records_a, records_b) -> FakeSource:
    return FakeSource({1: records_a, 2: records_b})


async def wait_until(predicate: Callable[[], bool], *, max_spins: int = 200) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(max_spins):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def until() -> Callable[..., Any]:
    return wait_until
