"""Tests for the pivot engine."""

from __future__ import annotations

import json
import math

import pytest

from rulecharts.errors import MalformedRecordError
from rulecharts.pivot.pivot_table import (
    KeySchema,
    PivotTable,
    PivotTableBuilder,
    build,
    map_rows,
    record_from_row,
    rule_of,
)
from rulecharts.pivot.series import points


def test_two_records_pivot_to_one_row() -> None:
    records = [
        {"id": 1, "iter": 0, "rule": "a", "when": "before", "name": "cost", "value": "10"},
        {"id": 1, "iter": 0, "rule": "a", "when": "before", "name": "size", "value": "3"},
    ]
    table = build(7, records)

    assert len(table) == 1
    assert list(table.keys()) == [(1, 0, "a", "before")]
    assert dict(table.row((1, 0, "a", "before"))) == {"cost": "10", "size": "3"}
    assert table.value_names == ("cost", "size")
    assert table.key_fields == ("id", "iter", "rule", "when")
    assert table.dataset_id == 7


def test_one_row_per_distinct_key(records_a) -> None:
    table = build(1, records_a)
    assert list(table.keys()) == [(1, 0, "a", "before"), (1, 1, "b", "before"), (1, 2, "a", "before")]


def test_last_write_wins_and_overwrites_counted() -> None:
    builder = PivotTableBuilder(1)
    builder.add_record({"k": "x", "name": "cost", "value": "1"})
    builder.add_record({"k": "x", "name": "cost", "value": "2"})
    table = builder.build()
    assert dict(table.row(("x",))) == {"cost": "2"}
    assert builder.overwrites == 1
    assert table.value_names == ("cost",)


def test_value_names_first_occurrence_order() -> None:
    records = [
        {"k": 1, "name": "b", "value": 1},
        {"k": 2, "name": "a", "value": 1},
        {"k": 1, "name": "a", "value": 1},
        {"k": 3, "name": "c", "value": 1},
    ]
    assert build(1, records).value_names == ("b", "a", "c")


def test_positional_rows_with_header() -> None:
    header = ["id", "rule", "name", "value"]
    rows = [
        ["1", "a", "cost", "10"],
        ["1", "a", "size", "3"],
        ["2", "b", "cost", "12"],
    ]
    table = build(3, rows, header=header)
    assert table.schema == KeySchema(key_fields=("id", "rule"), name_field="name", value_field="value")
    assert len(table) == 2
    assert dict(table.row(("2", "b"))) == {"cost": "12"}


def test_missing_dimension_raises_malformed() -> None:
    header = ["id", "rule", "name", "value"]
    with pytest.raises(MalformedRecordError) as exc_info:
        build(1, [["1", "", "cost", "10"]], header=header)
    assert exc_info.value.missing_field == "rule"
    assert exc_info.value.record == {"id": "1", "name": "cost", "value": "10"}
    assert isinstance(exc_info.value, ValueError)


def test_short_row_is_missing_dimension() -> None:
    with pytest.raises(MalformedRecordError):
        build(1, [["1"]], header=["id", "rule", "name", "value"])


def test_positional_row_without_header_rejected() -> None:
    with pytest.raises(ValueError):
        PivotTableBuilder(1).add_record(["1", "a", "cost", "10"])


def test_header_too_short_rejected() -> None:
    with pytest.raises(ValueError):
        KeySchema.from_header(["value"])


def test_blank_name_creates_row_without_column() -> None:
    table = build(1, [{"k": "x", "name": "", "value": "1"}, {"k": "y", "name": "cost", "value": "2"}])
    assert len(table) == 2
    assert dict(table.row(("x",))) == {}
    assert table.value_names == ("cost",)


def test_rows_are_flattened_and_not_null_padded() -> None:
    records = [
        {"k": "x", "name": "cost", "value": "1"},
        {"k": "x", "name": "size", "value": "2"},
        {"k": "y", "name": "cost", "value": "3"},
    ]
    rows = list(build(1, records).rows())
    assert rows == [
        {"k": "x", "cost": "1", "size": "2"},
        {"k": "y", "cost": "3"},
    ]


def test_rows_is_restartable(records_a) -> None:
    rows = build(1, records_a).rows()
    assert list(rows) == list(rows)
    assert len(rows) == 3


def test_rules_use_rule_name_then_rule() -> None:
    records = [
        {"rule_name": "r2", "iter": 0, "name": "cost", "value": "1"},
        {"rule_name": "r1", "iter": 1, "name": "cost", "value": "1"},
        {"rule_name": "r2", "iter": 2, "name": "cost", "value": "1"},
    ]
    assert build(1, records).rules() == ["r2", "r1"]
    assert rule_of({"rule": "a", "rule_name": "b"}) == "b"
    assert rule_of({"rule": "a", "rule_name": ""}) == "a"
    assert rule_of({"iter": 1}) is None


def test_record_from_row_skips_blank_cells() -> None:
    assert record_from_row(["a", "b", "c"], ["1", "", None]) == {"a": "1"}


def test_map_rows_passes_index(records_a) -> None:
    table = build(1, records_a)
    assert map_rows(table, lambda row, i: (i, row["iter"])) == [(0, 0), (1, 1), (2, 2)]


def test_to_dataframe(records_a) -> None:
    df = build(1, records_a).to_dataframe()
    assert list(df.columns) == ["id", "iter", "rule", "when", "cost", "size"]
    assert len(df) == 3
    assert df.loc[0, "size"] == "3"
    assert math.isnan(df.loc[1, "size"])


def test_dict_round_trip_through_json(records_a) -> None:
    table = build(1, records_a)
    restored = PivotTable.from_dict(json.loads(json.dumps(table.to_dict())))
    assert restored.dataset_id == 1
    assert restored.value_names == table.value_names
    assert list(restored.rows()) == list(table.rows())
    assert restored.rules() == ["a", "b"]


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.pop("value_names"),
        lambda d: d.update(value_names=["cost", "cost"]),
        lambda d: d["rows"].append([[1, 2], {"cost": "1"}]),
        lambda d: d["rows"].append([[9, 9, "z", "after"], {"unknown": "1"}]),
    ],
)
def test_from_dict_rejects_invalid_data(records_a, mutate) -> None:
    data = build(1, records_a).to_dict()
    mutate(data)
    with pytest.raises(ValueError):
        PivotTable.from_dict(data)


def test_table_is_read_only(records_a) -> None:
    table = build(1, records_a)
    with pytest.raises(TypeError):
        table.row((1, 0, "a", "before"))["cost"] = "99"  # type: ignore[index]


def test_seven_column_log_is_labelled_by_rule_name() -> None:
    header = ["id", "iteration", "rule_name", "rule", "when", "name", "value"]
    rows = [
        ["1", "0", "comm-add", "(+ ?a ?b) => (+ ?b ?a)", "before", "cost", "10"],
        ["1", "1", "assoc-add", "(+ ?a (+ ?b ?c)) => (+ (+ ?a ?b) ?c)", "before", "cost", "8"],
    ]
    table = build(1, rows, header=header)
    assert table.rules() == ["comm-add", "assoc-add"]
    assert [p.rule for p in points(table, "index", "cost")] == ["comm-add", "assoc-add"]


@pytest.mark.parametrize(
    "rows",
    [
        [[["x"], 5]],
        [["not-a-pair"]],
        [7],
    ],
)
def test_from_dict_rejects_malformed_rows(rows) -> None:
    data = {
        "dataset_id": 1,
        "key_fields": ["iter"],
        "value_names": ["cost"],
        "rows": rows,
    }
    with pytest.raises(ValueError):
        PivotTable.from_dict(data)
