"""Exception types raised by rulecharts."""

from __future__ import annotations

from typing import Any, Mapping, Optional


class RuleChartsError(Exception):
    """Base class for rulecharts errors."""


class MalformedRecordError(RuleChartsError, ValueError):
    """A long-format record lacks a dimension field of the table's key schema.

    Attributes:
        record: The offending record (as a mapping of header name -> value).
        missing_field: Name of the dimension field that was absent.
    """

    def __init__(self, record: Mapping[str, Any], missing_field: str) -> None:
        self.record = dict(record)
        self.missing_field = missing_field
        super().__init__(f"record is missing dimension field {missing_field!r}: {self.record!r}")


class FetchError(RuleChartsError):
    """Transport failure fetching the dataset listing or one dataset's rows.

    Attributes:
        dataset_id: Dataset id being fetched, or None for the listing.
    """

    def __init__(self, message: str, *, dataset_id: Optional[int] = None) -> None:
        self.dataset_id = dataset_id
        where = "listing" if dataset_id is None else f"dataset {dataset_id}"
        super().__init__(f"fetch failed for {where}: {message}")
