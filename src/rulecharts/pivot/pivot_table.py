"""Pivot engine: long-format experiment-log records -> wide PivotTable.

A long-format record carries N dimension fields followed by a quantity ``name``
and its ``value``. All dimension values of a record form its Key; the pivot
table holds one row per distinct Key and one column per distinct name, in
first-seen order.

Tables are immutable once built. Rebuilding (e.g. after a re-fetch) always
produces a new PivotTable so concurrent readers keep a consistent snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Sequence, TypeVar, Union

import pandas as pd

from rulecharts.errors import MalformedRecordError
from rulecharts.pivot.ordered_set import ordered_unique
from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_NAME_FIELD = "name"
DEFAULT_VALUE_FIELD = "value"

# Dimension fields checked in order for the rule label of a row.
RULE_FIELDS: tuple[str, ...] = ("rule_name", "rule")

Key = tuple[Any, ...]
LongRecord = Mapping[str, Any]
RawRow = Sequence[Any]

T = TypeVar("T")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def record_from_row(header: Sequence[str], row: RawRow) -> dict[str, Any]:
    """Zip a positional row against its header.

    Blank cells (None or "") are left out of the record, as are cells past the
    end of a short row, so a missing dimension is detected as missing.
    """
    out: dict[str, Any] = {}
    for field_name, value in zip(header, row):
        if not field_name or _is_blank(value):
            continue
        out[field_name] = value
    return out


@dataclass(frozen=True)
class KeySchema:
    """Which fields of a record form its Key, and which carry name/value."""

    key_fields: tuple[str, ...]
    name_field: str = DEFAULT_NAME_FIELD
    value_field: str = DEFAULT_VALUE_FIELD

    @classmethod
    def from_header(
        cls,
        header: Sequence[str],
        *,
        name_field: Optional[str] = None,
        value_field: Optional[str] = None,
    ) -> "KeySchema":
        """Derive the schema from a header whose last two columns are name and value.

        Raises:
            ValueError: If the header has fewer than two columns.
        """
        header = [str(h) for h in header]
        if len(header) < 2:
            raise ValueError(f"header must end with name and value columns, got {header!r}")
        return cls(
            key_fields=tuple(header[:-2]),
            name_field=name_field or header[-2],
            value_field=value_field or header[-1],
        )

    @property
    def header(self) -> tuple[str, ...]:
        return self.key_fields + (self.name_field, self.value_field)

    def key_of(self, record: LongRecord) -> Key:
        """Compute the Key of a record.

        Raises:
            MalformedRecordError: If a key field is absent or blank.
        """
        key = []
        for field_name in self.key_fields:
            value = record.get(field_name)
            if _is_blank(value):
                raise MalformedRecordError(record, field_name)
            key.append(value)
        return tuple(key)


class PivotRows:
    """Lazy, finite, restartable view over a table's flattened rows.

    Each iteration starts a fresh pass. A flattened row holds every key field
    plus one entry per registered value name written for that key; names never
    written for the key are absent, not filled.
    """

    def __init__(self, table: "PivotTable") -> None:
        self._table = table

    def __iter__(self) -> Iterator[dict[str, Any]]:
        key_fields = self._table.key_fields
        value_names = self._table.value_names
        for key, values in self._table.items():
            row = dict(zip(key_fields, key))
            for name in value_names:
                if name in values:
                    row[name] = values[name]
            yield row

    def __len__(self) -> int:
        return len(self._table)


class PivotTable:
    """Immutable wide table for one dataset.

    Attributes:
        dataset_id: Id of the dataset this table was built from.
        schema: KeySchema used to build the table.
        value_names: Every distinct quantity name, first-seen order, no duplicates.
    """

    __slots__ = ("_dataset_id", "_schema", "_value_names", "_rows")

    def __init__(
        self,
        dataset_id: int,
        schema: KeySchema,
        value_names: Sequence[str],
        rows: Mapping[Key, Mapping[str, Any]],
    ) -> None:
        self._dataset_id = dataset_id
        self._schema = schema
        self._value_names = tuple(value_names)
        self._rows = MappingProxyType({tuple(k): MappingProxyType(dict(v)) for k, v in rows.items()})

    @property
    def dataset_id(self) -> int:
        return self._dataset_id

    @property
    def schema(self) -> KeySchema:
        return self._schema

    @property
    def key_fields(self) -> tuple[str, ...]:
        return self._schema.key_fields

    @property
    def value_names(self) -> tuple[str, ...]:
        return self._value_names

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self) -> str:
        return (
            f"PivotTable(dataset_id={self._dataset_id!r}, rows={len(self._rows)}, "
            f"value_names={list(self._value_names)!r})"
        )

    def keys(self) -> Iterable[Key]:
        return self._rows.keys()

    def items(self) -> Iterable[tuple[Key, Mapping[str, Any]]]:
        return self._rows.items()

    def row(self, key: Sequence[Any]) -> Mapping[str, Any]:
        """Value map for one key. Raises KeyError if the key is unknown."""
        return self._rows[tuple(key)]

    def rows(self) -> PivotRows:
        return PivotRows(self)

    def rules(self) -> list[str]:
        """Distinct rule labels across rows, first-seen order."""
        return ordered_unique(rule_of(row) for row in self.rows())

    def to_dataframe(self) -> pd.DataFrame:
        """Flattened rows as a DataFrame (key fields, then value names; unwritten cells NaN)."""
        columns = list(self.key_fields) + [n for n in self._value_names if n not in self.key_fields]
        return pd.DataFrame(list(self.rows()), columns=columns)

    # -----------------------------
    # Durable form
    # -----------------------------
    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (keys become lists)."""
        return {
            "dataset_id": self._dataset_id,
            "key_fields": list(self._schema.key_fields),
            "name_field": self._schema.name_field,
            "value_field": self._schema.value_field,
            "value_names": list(self._value_names),
            "rows": [[list(k), dict(v)] for k, v in self._rows.items()],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PivotTable":
        """Rebuild a table from its inert structured form.

        Raises:
            ValueError: If the data is incomplete or is inconsistent
                (key length mismatch, unregistered or duplicated value names).
        """
        try:
            dataset_id = int(data["dataset_id"])
            schema = KeySchema(
                key_fields=tuple(str(f) for f in data["key_fields"]),
                name_field=str(data.get("name_field", DEFAULT_NAME_FIELD)),
                value_field=str(data.get("value_field", DEFAULT_VALUE_FIELD)),
            )
            value_names = [str(n) for n in data["value_names"]]
            raw_rows = data["rows"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"incomplete pivot table data: {e}") from e

        if len(set(value_names)) != len(value_names):
            raise ValueError("value_names contains duplicates")
        registered = set(value_names)

        rows: dict[Key, dict[str, Any]] = {}
        for entry in raw_rows:
            try:
                key_list, values = entry
                key = tuple(key_list)
                values = dict(values)
            except (TypeError, ValueError) as e:
                raise ValueError(f"malformed row entry {entry!r}: {e}") from e
            if len(key) != len(schema.key_fields):
                raise ValueError(f"key {key!r} does not match key fields {schema.key_fields!r}")
            unknown = set(values) - registered
            if unknown:
                raise ValueError(f"row {key!r} has unregistered value names {sorted(unknown)!r}")
            rows[key] = values
        return cls(dataset_id, schema, value_names, rows)


def rule_of(row: Mapping[str, Any]) -> Optional[str]:
    """Rule label of a flattened row (``rule_name`` then ``rule``), or None."""
    for field_name in RULE_FIELDS:
        value = row.get(field_name)
        if not _is_blank(value):
            return str(value)
    return None


class PivotTableBuilder:
    """Incrementally folds long-format records into a PivotTable.

    Rows are looked up through a dict keyed by the Key tuple; insertion order
    gives first-seen row order. For a repeated (Key, name) pair the last value
    wins silently.
    """

    def __init__(
        self,
        dataset_id: int,
        header: Optional[Sequence[str]] = None,
        *,
        schema: Optional[KeySchema] = None,
        name_field: Optional[str] = None,
        value_field: Optional[str] = None,
    ) -> None:
        if schema is None and header is not None:
            schema = KeySchema.from_header(header, name_field=name_field, value_field=value_field)
        self.dataset_id = dataset_id
        self.schema = schema
        self._header: Optional[tuple[str, ...]] = tuple(header) if header is not None else None
        self._name_field = name_field
        self._value_field = value_field
        self._value_names: list[str] = []
        self._registered: set[str] = set()
        self._rows: dict[Key, dict[str, Any]] = {}
        self.overwrites = 0

    def add_record(self, record: Union[LongRecord, RawRow]) -> None:
        """Fold one record (a mapping, or a positional row zipped against the header).

        Raises:
            MalformedRecordError: If a dimension field is missing.
            ValueError: If a positional row arrives without a header.
        """
        if not isinstance(record, Mapping):
            if self._header is None:
                raise ValueError("positional rows require a header")
            record = record_from_row(self._header, record)
        if self.schema is None:
            # No header given: the first mapping's field order defines the schema.
            self.schema = KeySchema.from_header(
                list(record.keys()), name_field=self._name_field, value_field=self._value_field
            )

        schema = self.schema
        key = schema.key_of(record)
        name = record.get(schema.name_field)
        value = record.get(schema.value_field)

        values = self._rows.get(key)
        if values is None:
            values = self._rows[key] = {}
        if _is_blank(name):
            return

        if name not in self._registered:
            self._registered.add(name)
            self._value_names.append(name)
        if name in values:
            self.overwrites += 1
        values[name] = value

    def add_records(self, records: Iterable[Union[LongRecord, RawRow]]) -> None:
        for record in records:
            self.add_record(record)

    def build(self) -> PivotTable:
        """Snapshot the folded records as an immutable PivotTable."""
        schema = self.schema or KeySchema(key_fields=())
        if self.overwrites:
            logger.debug(
                "dataset %s: %d value(s) overwritten by later records for the same key",
                self.dataset_id,
                self.overwrites,
            )
        return PivotTable(self.dataset_id, schema, self._value_names, self._rows)


def build(
    dataset_id: int,
    records: Iterable[Union[LongRecord, RawRow]],
    *,
    header: Optional[Sequence[str]] = None,
    name_field: Optional[str] = None,
    value_field: Optional[str] = None,
) -> PivotTable:
    """Pivot long-format records into a PivotTable.

    Args:
        dataset_id: Id of the dataset the records belong to.
        records: Mappings, or positional rows when ``header`` is given.
        header: Column names; the last two are the name and value columns and
            the rest are dimension fields. If omitted, the first mapping record's
            field order is used.
        name_field: Override for the name column.
        value_field: Override for the value column.

    Raises:
        MalformedRecordError: If a record lacks a dimension field.
    """
    builder = PivotTableBuilder(dataset_id, header, name_field=name_field, value_field=value_field)
    builder.add_records(records)
    table = builder.build()
    logger.debug("built %r", table)
    return table


def map_rows(table: PivotTable, fn: Callable[[dict[str, Any], int], T]) -> list[T]:
    """Apply fn(row, index) to every flattened row."""
    return [fn(row, i) for i, row in enumerate(table.rows())]
