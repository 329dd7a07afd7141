"""Tests for lenient field extraction."""

import pytest

from portfolio_valuation.errors import ParseError
from portfolio_valuation.fields import (
    NOT_FOUND,
    extract_currency_code,
    extract_number,
    normalize_currency_code,
    parse_number,
)


class TestParseNumber:
    def test_accepts_ints_floats_and_numeric_strings(self):
        assert parse_number(3) == 3.0
        assert parse_number(2.5) == 2.5
        assert parse_number(" 0.125 ") == 0.125

    def test_rejects_booleans_and_junk(self):
        assert parse_number(True) is None
        assert parse_number("abc") is None
        assert parse_number(None) is None
        assert parse_number({"price": 1}) is None

    def test_rejects_nan_and_infinity(self):
        assert parse_number("nan") is None
        assert parse_number(float("inf")) is None


class TestExtractNumber:
    def test_flat_field(self):
        found = extract_number({"price": "34243.5"}, ("price",))
        assert found.found
        assert found.value == 34243.5
        assert found.key == "price"

    def test_candidate_order_wins(self):
        record = {"result": 90.0, "rate": 0.9}
        assert extract_number(record, ("rate", "result")).value == 0.9

    def test_nested_one_level(self):
        record = {"success": True, "info": {"timestamp": 1, "rate": 0.91}, "result": 0.91}
        found = extract_number(record, ("rate",))
        assert found.value == 0.91

    def test_currency_map(self):
        record = {"base": "USD", "rates": {"EUR": 0.92, "GBP": 0.79}}
        assert extract_number(record, ("GBP",)).value == 0.79

    def test_does_not_descend_two_levels(self):
        record = {"data": {"inner": {"rate": 1.1}}}
        assert not extract_number(record, ("rate",))

    def test_first_element_of_numeric_array(self):
        assert extract_number({"rate": [1.25, 1.3]}, ("rate",)).value == 1.25

    def test_first_element_of_object_array(self):
        assert extract_number({"rate": [{"rate": "0.5"}]}, ("rate",)).value == 0.5

    def test_record_that_is_a_list(self):
        assert extract_number([{"price": 7}], ("price",)).value == 7.0

    def test_missing_is_not_found(self):
        found = extract_number({"other": 1}, ("price",))
        assert found == NOT_FOUND
        assert not found
        assert found.get(42) == 42

    def test_malformed_value_is_reported_and_skipped(self):
        found = extract_number({"price": "n/a", "last": "2"}, ("price", "last"))
        assert found.value == 2.0
        assert found.malformed == ("price",)

    def test_flat_only_ignores_nested(self):
        assert not extract_number({"info": {"rate": 1}}, ("rate",), flat_only=True)

    def test_non_dict_record(self):
        assert not extract_number("garbage", ("price",))
        assert not extract_number(None, ("price",))

    def test_require_distinguishes_missing_from_malformed(self):
        with pytest.raises(ParseError, match="not found"):
            extract_number({}, ("price",)).require("price")
        with pytest.raises(ParseError, match="malformed"):
            extract_number({"price": "x"}, ("price",)).require("price")
        assert extract_number({"price": 1}, ("price",)).require("price") == 1.0


class TestExtractCurrencyCode:
    def test_normalizes_case_and_whitespace(self):
        assert extract_currency_code({"currency": " eur "}, ("currency",)).value == "EUR"

    def test_subunit_alias_kept_distinct(self):
        assert normalize_currency_code("GBp") == "GBX"
        assert extract_currency_code({"currency": "GBp"}, ("currency",)).value == "GBX"

    def test_nested_currency_object(self):
        record = {"id": 1, "currency": {"code": "USD"}}
        found = extract_currency_code(record, ("currencyCode", "currency", "code"))
        assert found.value == "USD"
        assert found.key == "code"

    def test_rejected_candidates_fall_through(self):
        accept = lambda code: code if code == "USD" else None
        record = {"currency": "BTC", "ccy": "USD"}
        found = extract_currency_code(record, ("currency", "ccy"), accept=accept)
        assert found.value == "USD"
        assert found.malformed == ("currency",)

    def test_non_string_is_not_a_code(self):
        assert not extract_currency_code({"currency": 978}, ("currency",))
