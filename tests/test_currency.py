"""Tests for currency code validation and resolution order."""

import pytest

from portfolio_valuation.currency import CurrencyResolver, infer_from_ticker, looks_like_currency_code
from portfolio_valuation.models import RawHolding


def raw(symbol, hint=None):
    return RawHolding(symbol, 1.0, value_hint=10.0, currency_hint=hint or {})


class TestLooksLikeCurrencyCode:
    @pytest.mark.parametrize("code,expected", [
        ("USD", "USD"),
        ("eur", "EUR"),
        ("GBX", "GBX"),
        ("GBp", "GBX"),
        ("ZAC", "ZAC"),
    ])
    def test_accepts_iso_and_pseudo_codes(self, code, expected):
        assert looks_like_currency_code(code) == expected

    @pytest.mark.parametrize("code", ["BTC", "US", "EURO", "XYZ", "", "12A", None, 840])
    def test_rejects_everything_else(self, code):
        assert looks_like_currency_code(code) is None


class TestInferFromTicker:
    def test_country_segment(self):
        assert infer_from_ticker("AAPL_US_EQ") == "USD"
        assert infer_from_ticker("VOD_UK_EQ") == "GBP"
        assert infer_from_ticker("SAP.DE") == "EUR"

    def test_currency_segment(self):
        assert infer_from_ticker("BTC-EUR") == "EUR"
        assert infer_from_ticker("ETH usd") == "USD"

    def test_single_segment_that_is_a_code(self):
        assert infer_from_ticker("EUR") == "EUR"

    def test_leading_instrument_segment_ignored(self):
        # "CAD" here is the instrument, not the quote currency
        assert infer_from_ticker("CAD_EQ") is None

    def test_nothing_to_infer(self):
        assert infer_from_ticker("BTC") is None
        assert infer_from_ticker("") is None


class TestCurrencyResolver:
    def setup_method(self):
        self.resolver = CurrencyResolver()

    def test_explicit_field_beats_ticker(self):
        holding = raw("AAPL_US_EQ", {"currencyCode": "GBP"})
        assert self.resolver.resolve(holding, "EUR") == "GBP"

    def test_ticker_country_segment_when_no_explicit_field(self):
        holding = raw("AAPL_US_EQ", {"ticker": "AAPL_US_EQ", "quantity": 2})
        assert self.resolver.resolve(holding, "EUR") == "USD"

    def test_nested_price_object(self):
        holding = raw("AAPL", {"price": {"amount": 190.0, "currency": "usd"}})
        assert self.resolver.resolve(holding, "EUR") == "USD"

    def test_nested_price_object_beats_ticker(self):
        holding = raw("VOD_UK_EQ", {"instrument": {"ticker": "VOD_UK_EQ", "currency": "GBX"}})
        assert self.resolver.resolve(holding, "EUR") == "GBX"

    def test_explicit_beats_nested(self):
        holding = raw("X", {"currency": "CHF", "price": {"currency": "USD"}})
        assert self.resolver.resolve(holding, "EUR") == "CHF"

    def test_invalid_explicit_value_falls_through(self):
        holding = raw("AAPL_US_EQ", {"currency": "BTC"})
        assert self.resolver.resolve(holding, "EUR") == "USD"

    def test_explicit_field_must_be_top_level(self):
        # A nested "currency" that is not under a price/value key is not explicit
        holding = raw("BTC", {"meta": {"currency": "USD"}})
        assert self.resolver.resolve(holding, "EUR") == "EUR"

    def test_falls_back_to_target(self):
        assert self.resolver.resolve(raw("BTC"), "EUR") == "EUR"
        assert self.resolver.resolve(raw("BTC", {"currency": "???"}), "USD") == "USD"

    def test_resolve_holding_wraps_raw(self):
        resolved = self.resolver.resolve_holding(raw("AAPL_US_EQ"), "EUR")
        assert resolved.native_currency == "USD"
        assert resolved.symbol == "AAPL_US_EQ"
        assert resolved.native_value() == 10.0
