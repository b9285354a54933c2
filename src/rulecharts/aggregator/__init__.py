"""Concurrent fetch-and-pivot over every known dataset, with combine cells."""

from rulecharts.aggregator.aggregator import (
    CombineCell,
    DatasetResult,
    MultiSourceAggregator,
    QueryStatus,
)
from rulecharts.aggregator.client import DatasetClient, DatasetEntry, RawRows
from rulecharts.aggregator.combine import extent_selector, global_extent, merge_extents, shared_columns
from rulecharts.aggregator.table_cache import JsonTableCache, MemoryTableCache, TableCache

__all__ = [
    "CombineCell",
    "DatasetClient",
    "DatasetEntry",
    "DatasetResult",
    "JsonTableCache",
    "MemoryTableCache",
    "MultiSourceAggregator",
    "QueryStatus",
    "RawRows",
    "TableCache",
    "extent_selector",
    "global_extent",
    "merge_extents",
    "shared_columns",
]
