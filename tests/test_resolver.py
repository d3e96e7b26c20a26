from datetime import datetime, timezone

from quotameter.resolver import (
    cost_usd,
    first_number,
    first_string,
    first_value,
    normalize_date,
    normalize_dimension,
    parse_number,
    parse_time,
    value_at_path,
)


class TestValueAtPath:
    def test_descends_nested_mappings(self) -> "None":
        record = {"a": {"b": {"c": 3}}}
        assert value_at_path(record, ("a", "b", "c")) == 3

    def test_falls_back_to_case_insensitive_keys(self) -> "None":
        record = {"Usage": {"InputTokens": 7}}
        assert value_at_path(record, ("usage", "inputTokens")) == 7

    def test_exact_case_wins_over_folded_match(self) -> "None":
        record = {"model": "exact", "MODEL": "folded"}
        assert value_at_path(record, ("model",)) == "exact"

    def test_miss_through_non_mapping(self) -> "None":
        record = {"a": [1, 2, 3]}
        assert value_at_path(record, ("a", "b")) is None
        assert value_at_path("not a record", ("a",)) is None
        assert value_at_path(record, ()) is None


class TestFirstNumber:
    def test_first_successful_path_wins(self) -> "None":
        record = {"usage": {"input_tokens": "250"}}
        paths = [("usage", "input_tokens"), ("input_tokens",)]
        assert first_number(record, *paths) == 250

    def test_skips_paths_that_do_not_parse(self) -> "None":
        record = {"a": "lots", "b": "", "c": 4.5}
        assert first_number(record, ("a",), ("b",), ("c",)) == 4.5

    def test_rejects_booleans(self) -> "None":
        assert first_number({"a": True}, ("a",)) is None
        assert parse_number(False) is None

    def test_rejects_non_finite(self) -> "None":
        assert parse_number("nan") is None
        assert parse_number(float("inf")) is None

    def test_missing_everywhere(self) -> "None":
        assert first_number({}, ("a",), ("b", "c")) is None


class TestFirstString:
    def test_trims_and_skips_absent_tokens(self) -> "None":
        record = {"a": "  N/A ", "b": "null", "c": "  gpt-4o  "}
        assert first_string(record, ("a",), ("b",), ("c",)) == "gpt-4o"

    def test_renders_whole_numbers_without_fraction(self) -> "None":
        assert first_string({"id": 42.0}, ("id",)) == "42"

    def test_containers_are_not_strings(self) -> "None":
        assert first_string({"a": {"b": 1}}, ("a",)) == ""

    def test_first_value_skips_blank_strings(self) -> "None":
        record = {"a": "   ", "b": 1700000000}
        assert first_value(record, ("a",), ("b",)) == 1700000000


class TestCostUsd:
    def test_cents_are_divided_by_100(self) -> "None":
        assert cost_usd({"cost_cents": 250}) == 2.5

    def test_micros_are_divided_by_a_million(self) -> "None":
        assert cost_usd({"costMicros": "1500000"}) == 1.5

    def test_major_units_taken_as_is(self) -> "None":
        assert cost_usd({"total_cost": 3.25}) == 3.25
        assert cost_usd({"amount": {"value": 0.5}}) == 0.5

    def test_minor_units_preferred_over_major(self) -> "None":
        assert cost_usd({"cost": 9.0, "cost_cents": 100}) == 1.0

    def test_no_cost(self) -> "None":
        assert cost_usd({"tokens": 10}) == 0.0


class TestNormalizeDimension:
    def test_strips_quotes_and_whitespace(self) -> "None":
        assert normalize_dimension(' "vscode" ') == "vscode"

    def test_placeholders_become_empty(self) -> "None":
        assert normalize_dimension("Unknown") == ""
        assert normalize_dimension("nil") == ""


class TestParseTime:
    def test_rfc3339_with_z(self) -> "None":
        ts = parse_time("2026-02-20T01:06:10.578Z")
        assert ts == datetime(2026, 2, 20, 1, 6, 10, 578000, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self) -> "None":
        ts = parse_time("2026-02-20T03:00:00+02:00")
        assert ts == datetime(2026, 2, 20, 1, 0, tzinfo=timezone.utc)

    def test_unix_seconds_and_milliseconds(self) -> "None":
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert parse_time(1700000000) == expected
        assert parse_time(1700000000000) == expected
        assert parse_time("1700000000") == expected

    def test_space_separated_and_naive(self) -> "None":
        ts = parse_time("2026-01-02 10:00:00")
        assert ts == datetime(2026, 1, 2, 10, 0, tzinfo=timezone.utc)

    def test_unreadable(self) -> "None":
        assert parse_time("yesterday") is None
        assert parse_time(None) is None
        assert parse_time(True) is None


class TestNormalizeDate:
    def test_reduces_to_day(self) -> "None":
        assert normalize_date("2026-01-02T23:59:59Z") == "2026-01-02"
        assert normalize_date("2026-01-02") == "2026-01-02"

    def test_unreadable_is_empty(self) -> "None":
        assert normalize_date("soon") == ""
        assert normalize_date(None) == ""
