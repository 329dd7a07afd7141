"""
Pytest configuration for the valuation engine tests

Fakes for HTTP sessions, rate providers and holding sources so no test
touches the network.
"""

import json

import pytest
import requests

from portfolio_valuation.fx import RateProvider
from portfolio_valuation.models import RawHolding
from portfolio_valuation.sources import HoldingSource


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        if text is not None:
            self.text = text
        else:
            self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self.payload is None:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    """
    Routes GET requests to canned responses.

    routes maps a URL (or URL prefix) to a FakeResponse, an exception instance
    to raise, or a callable taking (url, params) and returning either.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "headers": headers or {}, "params": params, "timeout": timeout})
        route = self._match(url)
        if route is None:
            return FakeResponse(status_code=404, text="not found")
        if callable(route) and not isinstance(route, FakeResponse):
            route = route(url, params)
        if isinstance(route, Exception):
            raise route
        return route

    def _match(self, url):
        if url in self.routes:
            return self.routes[url]
        for prefix in sorted(self.routes, key=len, reverse=True):
            if url.startswith(prefix):
                return self.routes[prefix]
        return None

    def calls_to(self, url_prefix):
        return [c for c in self.calls if c["url"].startswith(url_prefix)]


class FakeProvider(RateProvider):
    """Rate provider answering from a dict and counting calls."""

    def __init__(self, name, rates=None):
        self.name = name
        self.rates = dict(rates or {})
        self.calls = []

    def fetch_rate(self, base, quote):
        self.calls.append((base, quote))
        return self.rates.get((base, quote))


class FakeSource(HoldingSource):
    """Holding source returning fixed holdings or raising a fixed error."""

    def __init__(self, name, holdings=(), error=None):
        super().__init__(session=FakeSession())
        self.name = name
        self.holdings = list(holdings)
        self.error = error
        self.fetch_count = 0

    def _fetch(self):
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return list(self.holdings)


def holding(symbol, value, currency, source="Fake"):
    """A priced holding with amount 1 and the given native value and currency."""
    return RawHolding(
        symbol,
        1.0,
        value_hint=value,
        currency_hint={"currency": currency},
        source=source,
    )


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def timeout_error():
    return requests.exceptions.Timeout("read timed out")
