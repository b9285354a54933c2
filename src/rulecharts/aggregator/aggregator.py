"""Multi-source asynchronous aggregator.

One asyncio task per known dataset id fetches raw rows and pivots them. Each
dataset owns a slot whose published DatasetResult moves through
``pending -> success | error``; combine cells fold over the successful results
and are recomputed after every transition, in whatever order the fetches
complete.

Typical use:

    agg = MultiSourceAggregator(DatasetClient(base_url))
    columns = agg.add_cell(shared_columns)
    agg.subscribe(lambda a: print(columns.value))
    await agg.refresh_listing()
    await agg.wait_idle()

Removing an id from the known set bumps the slot generation and cancels its
task; any result that still arrives for an old generation is discarded.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Generic, Iterable, Optional, Protocol, TypeVar

from rulecharts.aggregator.client import DatasetEntry
from rulecharts.aggregator.table_cache import TableCache
from rulecharts.errors import FetchError, MalformedRecordError
from rulecharts.pivot.pivot_table import PivotTable
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRY = 2
DEFAULT_RETRY_DELAY = 0.5        # seconds, multiplied by the attempt number
DEFAULT_STALE_AFTER = 300.0      # seconds


class DatasetSource(Protocol):
    async def list_datasets(self) -> list[DatasetEntry]: ...

    async def fetch_table(self, dataset_id: int) -> PivotTable: ...


class QueryStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DatasetResult:
    """Published state of one dataset.

    Attributes:
        table: Last successful table. Kept while a background refresh runs.
        error: Last failure, if any.
        attempts: Fetch attempts made by the most recent fetch.
        updated_at: Epoch seconds when ``table`` was fetched (or cached).
        fetching: A fetch is in flight for this dataset.
        from_cache: ``table`` was restored from the table cache.
    """
    dataset_id: int
    status: QueryStatus = QueryStatus.PENDING
    table: Optional[PivotTable] = None
    error: Optional[Exception] = None
    attempts: int = 0
    updated_at: Optional[float] = None
    fetching: bool = False
    from_cache: bool = False

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS and self.table is not None


Selector = Callable[[PivotTable], Any]
Combine = Callable[[list[tuple[int, Any]]], T]


class CombineCell(Generic[T]):
    """Derived value folded over successful results; ``value`` is kept current."""

    def __init__(self, fn: Combine[T], select: Optional[Selector] = None) -> None:
        self.fn = fn
        self.select = select
        self.value: Optional[T] = None


class _Slot:
    __slots__ = ("generation", "task", "result")

    def __init__(self, dataset_id: int) -> None:
        self.generation = 0
        self.task: Optional[asyncio.Task[None]] = None
        self.result = DatasetResult(dataset_id=dataset_id)


class MultiSourceAggregator:
    """Fan out fetch-and-pivot per dataset id and fold the partial results.

    Args:
        source: Provides ``list_datasets()`` and ``fetch_table(dataset_id)``
            (see DatasetClient).
        retry: Extra attempts after a failed fetch before settling in error.
        retry_delay: Base delay between attempts, in seconds.
        stale_after: Age in seconds after which a success is re-fetched.
        cache: Optional TableCache consulted before fetching.
        buster: Cache-busting token; cache entries under another token miss.
        clock: Time source returning epoch seconds.

    Methods that start fetches must be called with an event loop running.
    """

    def __init__(
        self,
        source: DatasetSource,
        *,
        retry: int = DEFAULT_RETRY,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        stale_after: float = DEFAULT_STALE_AFTER,
        cache: Optional[TableCache] = None,
        buster: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self.retry = max(0, int(retry))
        self.retry_delay = retry_delay
        self.stale_after = stale_after
        self._cache = cache
        self.buster = buster
        self._clock = clock

        self._slots: dict[int, _Slot] = {}
        self._entries: list[DatasetEntry] = []
        self.listing_error: Optional[Exception] = None
        self._cells: list[CombineCell[Any]] = []
        self._listeners: list[Callable[["MultiSourceAggregator"], None]] = []
        self._memo: dict[tuple[int, Selector], tuple[PivotTable, Any]] = {}

    # -----------------------------
    # Read side
    # -----------------------------
    @property
    def entries(self) -> list[DatasetEntry]:
        """Last successful listing, ascending by id."""
        return list(self._entries)

    @property
    def known_ids(self) -> list[int]:
        return sorted(self._slots)

    def result(self, dataset_id: int) -> Optional[DatasetResult]:
        slot = self._slots.get(dataset_id)
        return None if slot is None else slot.result

    def results(self) -> dict[int, DatasetResult]:
        return {i: self._slots[i].result for i in sorted(self._slots)}

    def successful(self, select: Optional[Selector] = None) -> list[tuple[int, Any]]:
        """(dataset_id, selected value) for every successful dataset, ascending by id.

        Without a selector the value is the PivotTable itself. Selector output
        is memoized per dataset until that dataset's table changes.
        """
        out: list[tuple[int, Any]] = []
        for dataset_id in sorted(self._slots):
            result = self._slots[dataset_id].result
            if not result.is_success:
                continue
            table = result.table
            if select is None:
                out.append((dataset_id, table))
                continue
            key = (dataset_id, select)
            hit = self._memo.get(key)
            if hit is not None and hit[0] is table:
                out.append((dataset_id, hit[1]))
                continue
            value = select(table)
            self._memo[key] = (table, value)
            out.append((dataset_id, value))
        return out

    def combine(self, fn: Combine[T], select: Optional[Selector] = None) -> T:
        """Evaluate a combine once over the current successful results."""
        return fn(self.successful(select))

    # -----------------------------
    # Derived cells and listeners
    # -----------------------------
    def add_cell(self, fn: Combine[T], select: Optional[Selector] = None) -> CombineCell[T]:
        """Register a combine cell, compute it now, and keep it current."""
        cell: CombineCell[T] = CombineCell(fn, select)
        self._cells.append(cell)
        self._compute_cell(cell)
        return cell

    def remove_cell(self, cell: CombineCell[Any]) -> None:
        if cell in self._cells:
            self._cells.remove(cell)

    def subscribe(self, listener: Callable[["MultiSourceAggregator"], None]) -> Callable[[], None]:
        """Call ``listener(aggregator)`` after every transition; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def recompute(self) -> None:
        """Recompute all cells and notify listeners (e.g. after a selection change)."""
        self._transition()

    def _compute_cell(self, cell: CombineCell[Any]) -> None:
        try:
            cell.value = self.combine(cell.fn, cell.select)
        except Exception:
            logger.exception("combine cell %r failed; keeping previous value", cell.fn)

    def _transition(self) -> None:
        for cell in list(self._cells):
            self._compute_cell(cell)
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("aggregator listener failed")

    # -----------------------------
    # Known set
    # -----------------------------
    def set_known_ids(self, ids: Iterable[int]) -> None:
        """Replace the known set: start fetches for new ids, drop removed ones.

        Successful results older than ``stale_after`` are re-fetched as well.
        """
        if self._apply_known_ids(ids):
            self._transition()

    def _apply_known_ids(self, ids: Iterable[int]) -> bool:
        wanted = {int(i) for i in ids}
        current = set(self._slots)
        changed = False
        for dataset_id in sorted(current - wanted):
            self._drop(dataset_id)
            changed = True
        for dataset_id in sorted(wanted - current):
            self._add(dataset_id)
            changed = True
        for dataset_id in sorted(current & wanted):
            if self._refresh_if_stale(dataset_id):
                changed = True
        return changed

    def _add(self, dataset_id: int) -> None:
        slot = _Slot(dataset_id)
        self._slots[dataset_id] = slot
        cached = self._restore_from_cache(dataset_id)
        if cached is not None:
            slot.result = cached
            if not self._is_stale(cached):
                logger.debug("dataset %s: restored from cache", dataset_id)
                return
        self._start(dataset_id)

    def _drop(self, dataset_id: int) -> None:
        slot = self._slots.pop(dataset_id)
        slot.generation += 1
        if slot.task is not None and not slot.task.done():
            slot.task.cancel()
        self._forget(dataset_id)
        logger.debug("dataset %s: removed from known set", dataset_id)

    def _forget(self, dataset_id: int) -> None:
        for key in [k for k in self._memo if k[0] == dataset_id]:
            del self._memo[key]

    async def refresh_listing(self) -> list[DatasetEntry]:
        """Fetch the listing and make its ids the known set.

        Failures are retried like dataset fetches. A listing that still fails
        is logged, stored in ``listing_error``, and leaves the known set as is.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                entries = await self._source.list_datasets()
                break
            except FetchError as e:
                if attempts <= self.retry:
                    logger.warning("listing attempt %d failed (%s), retrying", attempts, e)
                    await asyncio.sleep(self.retry_delay * attempts)
                    continue
                logger.error("listing failed after %d attempt(s): %s", attempts, e)
                self.listing_error = e
                self._transition()
                return self.entries

        self._entries = sorted(entries, key=lambda entry: entry.dataset_id)
        self.listing_error = None
        self._apply_known_ids(entry.dataset_id for entry in self._entries)
        self._transition()
        return self.entries

    # -----------------------------
    # Fetching
    # -----------------------------
    def refetch(self, dataset_id: int) -> None:
        """Invalidate the cached table and fetch again; the only way out of error."""
        slot = self._slots.get(dataset_id)
        if slot is None:
            logger.warning("refetch of unknown dataset %s ignored", dataset_id)
            return
        if self._cache is not None:
            self._cache.invalidate(dataset_id)
        if slot.result.is_success:
            slot.result = replace(slot.result, error=None, attempts=0)
        else:
            slot.result = DatasetResult(dataset_id=dataset_id)
        self._start(dataset_id)
        self._transition()

    def ensure_fresh(self) -> None:
        """Re-fetch every success older than ``stale_after``."""
        changed = False
        for dataset_id in sorted(self._slots):
            if self._refresh_if_stale(dataset_id):
                changed = True
        if changed:
            self._transition()

    def _is_stale(self, result: DatasetResult) -> bool:
        if not result.is_success or result.updated_at is None:
            return False
        return self._clock() - result.updated_at > self.stale_after

    def _refresh_if_stale(self, dataset_id: int) -> bool:
        slot = self._slots[dataset_id]
        if slot.result.fetching or not self._is_stale(slot.result):
            return False
        logger.debug("dataset %s: stale, refreshing", dataset_id)
        self._start(dataset_id)
        return True

    def _start(self, dataset_id: int) -> None:
        slot = self._slots[dataset_id]
        slot.generation += 1
        if slot.task is not None and not slot.task.done():
            slot.task.cancel()
        slot.result = replace(slot.result, fetching=True)
        slot.task = asyncio.get_running_loop().create_task(
            self._run(dataset_id, slot.generation),
            name=f"rulecharts-fetch-{dataset_id}",
        )

    def _is_current(self, dataset_id: int, generation: int) -> bool:
        slot = self._slots.get(dataset_id)
        return slot is not None and slot.generation == generation

    async def _run(self, dataset_id: int, generation: int) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                table = await self._source.fetch_table(dataset_id)
            except Exception as e:
                if not self._is_current(dataset_id, generation):
                    logger.debug("dataset %s: discarding failure of a superseded fetch", dataset_id)
                    return
                if isinstance(e, FetchError) and attempts <= self.retry:
                    logger.warning("dataset %s: attempt %d failed (%s), retrying", dataset_id, attempts, e)
                    await asyncio.sleep(self.retry_delay * attempts)
                    if not self._is_current(dataset_id, generation):
                        return
                    continue
                self._settle_error(dataset_id, e, attempts)
                return

            if not self._is_current(dataset_id, generation):
                logger.debug("dataset %s: discarding result of a superseded fetch", dataset_id)
                return
            self._settle_success(dataset_id, table, attempts)
            return

    def _settle_success(self, dataset_id: int, table: PivotTable, attempts: int) -> None:
        slot = self._slots[dataset_id]
        slot.result = DatasetResult(
            dataset_id=dataset_id,
            status=QueryStatus.SUCCESS,
            table=table,
            attempts=attempts,
            updated_at=self._clock(),
        )
        slot.task = None
        self._forget(dataset_id)
        self._store_in_cache(dataset_id, table)
        logger.debug("dataset %s: success after %d attempt(s)", dataset_id, attempts)
        self._transition()

    def _settle_error(self, dataset_id: int, error: Exception, attempts: int) -> None:
        slot = self._slots[dataset_id]
        previous = slot.result
        if previous.is_success:
            # Background refresh failed: the older table stays published.
            slot.result = replace(previous, error=error, attempts=attempts, fetching=False)
            logger.warning("dataset %s: refresh failed, keeping previous table: %s", dataset_id, error)
        else:
            slot.result = DatasetResult(
                dataset_id=dataset_id,
                status=QueryStatus.ERROR,
                error=error,
                attempts=attempts,
            )
            if isinstance(error, (FetchError, MalformedRecordError)):
                logger.error("dataset %s: %s", dataset_id, error)
            else:
                logger.error("dataset %s: unexpected %s: %s", dataset_id, type(error).__name__, error)
        slot.task = None
        self._transition()

    # -----------------------------
    # Cache
    # -----------------------------
    def _restore_from_cache(self, dataset_id: int) -> Optional[DatasetResult]:
        if self._cache is None:
            return None
        try:
            cached = self._cache.get(dataset_id, self.buster)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("dataset %s: cache read failed (%s), ignoring", dataset_id, e)
            return None
        if cached is None:
            return None
        try:
            table = PivotTable.from_dict(cached.data)
        except (TypeError, ValueError) as e:
            logger.warning("dataset %s: cached table is invalid (%s), ignoring", dataset_id, e)
            self._cache.invalidate(dataset_id)
            return None
        if table.dataset_id != dataset_id:
            logger.warning("dataset %s: cached table belongs to dataset %s, ignoring", dataset_id, table.dataset_id)
            self._cache.invalidate(dataset_id)
            return None
        return DatasetResult(
            dataset_id=dataset_id,
            status=QueryStatus.SUCCESS,
            table=table,
            updated_at=cached.saved_at,
            from_cache=True,
        )

    def _store_in_cache(self, dataset_id: int, table: PivotTable) -> None:
        if self._cache is None:
            return
        try:
            self._cache.put(dataset_id, self.buster, table.to_dict())
        except (OSError, TypeError, ValueError) as e:
            logger.warning("dataset %s: could not cache table: %s", dataset_id, e)

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def reset(self, source: Optional[DatasetSource] = None, *, buster: Optional[str] = None) -> None:
        """Forget every dataset and the listing; optionally switch source or cache token.

        Call refresh_listing() afterwards to repopulate.
        """
        for dataset_id in list(self._slots):
            self._drop(dataset_id)
        self._entries = []
        self.listing_error = None
        if source is not None:
            self._source = source
        if buster is not None:
            self.buster = buster
        logger.info("aggregator reset")
        self._transition()

    async def wait_idle(self) -> None:
        """Wait until no fetch is in flight (including retries)."""
        while True:
            pending = [s.task for s in self._slots.values() if s.task is not None and not s.task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel every in-flight fetch."""
        tasks = [s.task for s in self._slots.values() if s.task is not None and not s.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
