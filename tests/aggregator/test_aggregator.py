"""Tests for MultiSourceAggregator: fan-out, retries, removal, combine cells."""

from __future__ import annotations

import asyncio
import json

import pytest

from rulecharts.aggregator.aggregator import MultiSourceAggregator, QueryStatus
from rulecharts.aggregator.combine import shared_columns
from rulecharts.aggregator.table_cache import CACHE_SCHEMA_VERSION, JsonTableCache, MemoryTableCache
from rulecharts.errors import FetchError, MalformedRecordError


def _agg(source, **kwargs) -> MultiSourceAggregator:
    kwargs.setdefault("retry_delay", 0)
    return MultiSourceAggregator(source, **kwargs)


@pytest.mark.asyncio
async def test_all_datasets_load_and_shared_columns(source) -> None:
    agg = _agg(source)
    cell = agg.add_cell(shared_columns)
    assert cell.value is None

    agg.set_known_ids([1, 2])
    assert agg.result(1).status is QueryStatus.PENDING
    await agg.wait_idle()

    assert agg.result(1).status is QueryStatus.SUCCESS
    assert agg.result(2).status is QueryStatus.SUCCESS
    assert cell.value == ["cost"]
    assert [i for i, _ in agg.successful()] == [1, 2]


@pytest.mark.asyncio
async def test_combine_reruns_on_each_out_of_order_completion(source, until) -> None:
    source.gates = {1: asyncio.Event(), 2: asyncio.Event()}
    agg = _agg(source)
    cell = agg.add_cell(shared_columns)
    seen = []
    agg.subscribe(lambda a: seen.append(cell.value))

    agg.set_known_ids([1, 2])
    source.gates[2].set()
    await until(lambda: agg.result(2).is_success)
    assert cell.value == ["cost", "depth"]

    source.gates[1].set()
    await agg.wait_idle()
    assert cell.value == ["cost"]
    assert seen[-2:] == [["cost", "depth"], ["cost"]]


@pytest.mark.asyncio
async def test_retry_then_success(source) -> None:
    source.failures = {1: 1}
    agg = _agg(source, retry=2)
    agg.set_known_ids([1])
    await agg.wait_idle()
    result = agg.result(1)
    assert result.status is QueryStatus.SUCCESS
    assert result.attempts == 2
    assert source.calls[1] == 2


@pytest.mark.asyncio
async def test_retries_exhausted_settles_in_error(source) -> None:
    source.failures = {1: 10}
    agg = _agg(source, retry=2)
    cell = agg.add_cell(shared_columns)
    agg.set_known_ids([1, 2])
    await agg.wait_idle()

    result = agg.result(1)
    assert result.status is QueryStatus.ERROR
    assert isinstance(result.error, FetchError)
    assert result.error.dataset_id == 1
    assert source.calls[1] == 3
    # the failed dataset is excluded, not zero-filled
    assert cell.value == ["cost", "depth"]
    assert agg.known_ids == [1, 2]


@pytest.mark.asyncio
async def test_error_only_cleared_by_refetch(source) -> None:
    source.failures = {1: 10}
    agg = _agg(source, retry=0)
    agg.set_known_ids([1])
    await agg.wait_idle()
    assert agg.result(1).status is QueryStatus.ERROR

    agg.set_known_ids([1])
    agg.ensure_fresh()
    await agg.wait_idle()
    assert agg.result(1).status is QueryStatus.ERROR
    assert source.calls[1] == 1

    source.failures = {}
    agg.refetch(1)
    assert agg.result(1).status is QueryStatus.PENDING
    await agg.wait_idle()
    assert agg.result(1).status is QueryStatus.SUCCESS


@pytest.mark.asyncio
async def test_malformed_records_are_not_retried(source) -> None:
    source.malformed = {2}
    agg = _agg(source, retry=2)
    agg.set_known_ids([1, 2])
    await agg.wait_idle()
    assert source.calls[2] == 1
    assert isinstance(agg.result(2).error, MalformedRecordError)
    assert agg.result(1).is_success


@pytest.mark.asyncio
async def test_removed_id_discards_in_flight_result(source) -> None:
    source.gates = {2: asyncio.Event()}
    agg = _agg(source)
    cell = agg.add_cell(shared_columns)
    agg.set_known_ids([1, 2])
    await asyncio.sleep(0)

    agg.set_known_ids([1])
    source.gates[2].set()
    await agg.wait_idle()
    await asyncio.sleep(0)

    assert agg.result(2) is None
    assert 2 not in agg.results()
    assert cell.value == ["cost", "size"]


@pytest.mark.asyncio
async def test_removed_success_leaves_combines(source) -> None:
    agg = _agg(source)
    cell = agg.add_cell(shared_columns)
    agg.set_known_ids([1, 2])
    await agg.wait_idle()
    assert cell.value == ["cost"]

    agg.set_known_ids([2])
    assert cell.value == ["cost", "depth"]
    agg.set_known_ids([])
    assert cell.value is None


@pytest.mark.asyncio
async def test_listener_errors_are_logged_not_raised(source) -> None:
    agg = _agg(source)
    calls = []

    def _bad(_agg) -> None:
        raise RuntimeError("listener bug")

    agg.subscribe(_bad)
    unsubscribe = agg.subscribe(lambda a: calls.append(len(a.successful())))
    agg.set_known_ids([1])
    await agg.wait_idle()
    assert calls[-1] == 1

    unsubscribe()
    n = len(calls)
    agg.set_known_ids([1, 2])
    await agg.wait_idle()
    assert len(calls) == n


@pytest.mark.asyncio
async def test_selector_output_is_memoized(source) -> None:
    agg = _agg(source)
    agg.set_known_ids([1, 2])
    await agg.wait_idle()
    calls = []

    def names(table):
        calls.append(table.dataset_id)
        return table.value_names

    assert agg.successful(names) == [(1, ("cost", "size")), (2, ("cost", "depth"))]
    agg.successful(names)
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_refresh_listing_sets_known_ids(source) -> None:
    source.paths = {2: "/b.csv", 1: "/a.csv"}
    agg = _agg(source)
    entries = await agg.refresh_listing()
    assert [e.dataset_id for e in entries] == [1, 2]
    assert agg.known_ids == [1, 2]
    await agg.wait_idle()
    assert len(agg.successful()) == 2


@pytest.mark.asyncio
async def test_listing_failure_keeps_known_set(source) -> None:
    agg = _agg(source, retry=1)
    await agg.refresh_listing()
    await agg.wait_idle()

    source.listing_failures = 5
    entries = await agg.refresh_listing()
    assert source.listing_calls == 3
    assert isinstance(agg.listing_error, FetchError)
    assert [e.dataset_id for e in entries] == [1, 2]
    assert agg.known_ids == [1, 2]


@pytest.mark.asyncio
async def test_stale_success_is_refetched_keeping_old_table(source) -> None:
    now = [1000.0]
    agg = _agg(source, stale_after=10, clock=lambda: now[0])
    agg.set_known_ids([1])
    await agg.wait_idle()
    first = agg.result(1).table

    agg.ensure_fresh()
    assert source.calls[1] == 1

    now[0] += 60
    source.gates = {1: asyncio.Event()}
    agg.ensure_fresh()
    await asyncio.sleep(0)
    result = agg.result(1)
    assert result.is_success and result.fetching
    assert result.table is first

    source.gates[1].set()
    await agg.wait_idle()
    assert source.calls[1] == 2
    assert agg.result(1).table is not first
    assert not agg.result(1).fetching


@pytest.mark.asyncio
async def test_cache_hit_skips_fetch(source) -> None:
    cache = MemoryTableCache()
    first = _agg(source, cache=cache, buster="v1")
    first.set_known_ids([1])
    await first.wait_idle()
    assert source.calls[1] == 1

    second = _agg(source, cache=cache, buster="v1")
    second.set_known_ids([1])
    await second.wait_idle()
    assert source.calls[1] == 1
    assert second.result(1).from_cache
    assert second.result(1).table.value_names == ("cost", "size")

    busted = _agg(source, cache=cache, buster="v2")
    busted.set_known_ids([1])
    await busted.wait_idle()
    assert source.calls[1] == 2


@pytest.mark.asyncio
async def test_invalid_cache_entry_is_a_miss(source) -> None:
    cache = MemoryTableCache()
    cache.put(1, "v1", {"dataset_id": 1, "rows": "garbage"})
    agg = _agg(source, cache=cache, buster="v1")
    agg.set_known_ids([1])
    await agg.wait_idle()
    assert source.calls[1] == 1
    assert agg.result(1).is_success
    assert not agg.result(1).from_cache


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"schema_version": "v1"},
        {"schema_version": None},
        {"schema_version": CACHE_SCHEMA_VERSION, "buster": "v1", "table": {
            "dataset_id": 1, "key_fields": ["id", "iter", "rule"], "value_names": ["cost"], "rows": [[["x"], 5]],
        }},
    ],
)
async def test_corrupt_cache_file_does_not_block_other_datasets(source, tmp_path, payload) -> None:
    cache = JsonTableCache(tmp_path)
    (tmp_path / "dataset_1.json").write_text(json.dumps(payload), encoding="utf-8")
    agg = _agg(source, cache=cache, buster="v1")
    agg.set_known_ids([1, 2])
    await agg.wait_idle()
    assert agg.result(1).is_success
    assert agg.result(2).is_success
    assert not agg.result(1).from_cache
    assert source.calls[1] == 1
    assert source.calls[2] == 1


@pytest.mark.asyncio
async def test_reset_forgets_everything(source) -> None:
    agg = _agg(source)
    await agg.refresh_listing()
    await agg.wait_idle()
    agg.reset(buster="new")
    assert agg.known_ids == []
    assert agg.entries == []
    assert agg.buster == "new"
