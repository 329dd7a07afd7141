"""
FX Rate Resolution

Converts amounts between currencies using an ordered chain of public rate
providers. The first provider to return a positive rate wins; its rate is
cached for the rest of the pass so each currency pair is fetched at most once.

Providers answer in different JSON shapes (flat result field, nested
{info: {rate}}, currency->rate maps, arrays). JsonRateProvider normalizes them
with the lenient field extractor and a provider-specific candidate key list.

Usage:
    from portfolio_valuation.fx import FxRateResolver, build_providers

    resolver = FxRateResolver(build_providers())
    eur = resolver.convert(100.0, "USD", "EUR")
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from .currency import PSEUDO_CURRENCIES
from .errors import FxUnavailableError, ValuationError
from .fields import extract_number, normalize_currency_code
from .http import DEFAULT_TIMEOUT, create_session, get_json
from .models import ExchangeRate

logger = logging.getLogger(__name__)


class RateProvider:
    """Base class for FX rate providers."""

    name = "provider"

    def fetch_rate(self, base: str, quote: str) -> Optional[float]:
        """
        Fetch the rate to convert one unit of base into quote.

        Returns:
            Positive rate, or None if the provider had nothing usable
        """
        raise NotImplementedError


class JsonRateProvider(RateProvider):
    """
    Provider backed by a public JSON endpoint.

    url_template and candidate_keys may use {base}, {quote}, {base_lower}
    and {quote_lower} placeholders.
    """

    def __init__(
        self,
        name: str,
        url_template: str,
        candidate_keys: Sequence[str],
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.name = name
        self.url_template = url_template
        self.candidate_keys = tuple(candidate_keys)
        self.session = session or create_session()
        self.timeout = timeout

    def fetch_rate(self, base: str, quote: str) -> Optional[float]:
        placeholders = {
            "base": base,
            "quote": quote,
            "base_lower": base.lower(),
            "quote_lower": quote.lower(),
        }
        url = self.url_template.format(**placeholders)
        keys = [key.format(**placeholders) for key in self.candidate_keys]

        try:
            data = get_json(self.session, url, timeout=self.timeout)
        except ValuationError as e:
            logger.warning(f"  {self.name}: {base}->{quote} failed: {e}")
            return None

        found = extract_number(data, keys)
        if not found:
            logger.warning(f"  {self.name}: no rate for {base}->{quote} in response")
            return None
        if found.value <= 0:
            logger.warning(f"  {self.name}: non-positive rate {found.value} for {base}->{quote}")
            return None
        return found.value


class TradingViewProvider(RateProvider):
    """
    FX quotes from TradingView (FX_IDC:{BASE}{QUOTE} close price).

    Overview takes no timeout argument and always requests with its own fixed
    10 second timeout, so HTTP_TIMEOUT does not apply to this provider.
    """

    name = "tradingview"

    def __init__(self, exchange: str = "FX_IDC"):
        self.exchange = exchange

    def fetch_rate(self, base: str, quote: str) -> Optional[float]:
        symbol = f"{self.exchange}:{base}{quote}"
        try:
            from tradingview_scraper.symbols.overview import Overview

            ov = Overview()
            data = ov.get_symbol_overview(symbol)
        except Exception as e:
            logger.warning(f"  {self.name}: error fetching {symbol}: {e}")
            return None

        if data and "data" in data:
            found = extract_number(data["data"], ("close",))
            if found and found.value > 0:
                return found.value

        logger.warning(f"  {self.name}: no price data for {symbol}")
        return None


# Public endpoints in default fallback order: (name, url template, candidate keys)
DEFAULT_PROVIDERS = (
    (
        "exchangerate.host",
        "https://api.exchangerate.host/convert?from={base}&to={quote}&amount=1",
        ("rate", "result"),
    ),
    (
        "frankfurter",
        "https://api.frankfurter.app/latest?from={base}&to={quote}",
        ("{quote}",),
    ),
    (
        "open.er-api",
        "https://open.er-api.com/v6/latest/{base}",
        ("{quote}",),
    ),
    (
        "currency-api",
        "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/{base_lower}.json",
        ("{quote_lower}",),
    ),
)

PROVIDER_NAMES = tuple(name for name, _, _ in DEFAULT_PROVIDERS) + (TradingViewProvider.name,)


def build_providers(
    names: Optional[Iterable[str]] = None,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> List[RateProvider]:
    """
    Build rate providers in fallback order.

    Args:
        names: Provider names to use, in order (default: all of PROVIDER_NAMES)
        session: Shared requests session
        timeout: Per-request timeout in seconds

    Returns:
        List of providers
    """
    session = session or create_session()
    templates = {name: (url, keys) for name, url, keys in DEFAULT_PROVIDERS}
    providers: List[RateProvider] = []

    for name in names or PROVIDER_NAMES:
        name = name.strip().lower()
        if name in templates:
            url, keys = templates[name]
            providers.append(JsonRateProvider(name, url, keys, session=session, timeout=timeout))
        elif name == TradingViewProvider.name:
            providers.append(TradingViewProvider())
        else:
            raise ValueError(f"Unknown FX provider: {name}")

    return providers


class RateCache:
    """
    Rates fetched during one pass, keyed by (base, quote).

    Owned by a single FxRateResolver. Each key has its own lock so concurrent
    lookups of the same pair wait for one fetch instead of racing. Pairs that
    no provider could answer are remembered too, so they are tried once per pass.
    """

    def __init__(self):
        self._rates: Dict[Tuple[str, str], ExchangeRate] = {}
        self._failed: Dict[Tuple[str, str], Tuple[str, ...]] = {}
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, base: str, quote: str) -> Optional[ExchangeRate]:
        return self._rates.get((base, quote))

    def put(self, rate: ExchangeRate):
        self._rates[(rate.base, rate.quote)] = rate

    def get_failure(self, base: str, quote: str) -> Optional[Tuple[str, ...]]:
        """Providers attempted for a pair that already failed this pass, or None."""
        return self._failed.get((base, quote))

    def put_failure(self, base: str, quote: str, attempted: Sequence[str]):
        self._failed[(base, quote)] = tuple(attempted)

    def lock_for(self, base: str, quote: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault((base, quote), threading.Lock())

    def rates(self) -> List[ExchangeRate]:
        return list(self._rates.values())

    def __len__(self) -> int:
        return len(self._rates)


class FxRateResolver:
    """Converts amounts using a cached, ordered provider fallback chain."""

    def __init__(self, providers: Sequence[RateProvider], cache: Optional[RateCache] = None):
        self.providers = list(providers)
        self.cache = cache if cache is not None else RateCache()

    def convert(self, amount: float, source_currency: str, target_currency: str) -> float:
        """
        Convert an amount from source_currency to target_currency.

        Args:
            amount: Amount in source_currency
            source_currency: Currency code of the amount (pseudo-codes like GBX allowed)
            target_currency: Currency code to convert into

        Returns:
            Converted amount

        Raises:
            FxUnavailableError: every provider failed for this pair
        """
        source = normalize_currency_code(source_currency) or source_currency
        target = normalize_currency_code(target_currency) or target_currency

        if source == target or amount == 0:
            return amount

        if source in PSEUDO_CURRENCIES:
            parent, factor = PSEUDO_CURRENCIES[source]
            amount, source = amount * factor, parent
            if source == target:
                return amount

        if target in PSEUDO_CURRENCIES:
            parent, factor = PSEUDO_CURRENCIES[target]
            return self.convert(amount, source, parent) / factor

        return amount * self.get_rate(source, target).rate

    def get_rate(self, base: str, quote: str) -> ExchangeRate:
        """
        Rate for a pair, from the cache or the first provider that answers.

        Raises:
            FxUnavailableError: every provider failed for this pair
        """
        cached = self._cached(base, quote)
        if cached is not None:
            return cached

        with self.cache.lock_for(base, quote):
            cached = self._cached(base, quote)
            if cached is not None:
                return cached

            attempted = []
            for provider in self.providers:
                attempted.append(provider.name)
                try:
                    rate = provider.fetch_rate(base, quote)
                except Exception as e:
                    logger.warning(f"  {provider.name}: unexpected error for {base}->{quote}: {e}")
                    continue
                if rate is not None and rate > 0:
                    exchange_rate = ExchangeRate(base=base, quote=quote, rate=rate, source=provider.name)
                    self.cache.put(exchange_rate)
                    logger.info(f"✓ {base}->{quote}: {rate} ({provider.name})")
                    return exchange_rate

            logger.error(f"✗ No FX rate for {base}->{quote} after {len(attempted)} providers")
            self.cache.put_failure(base, quote, attempted)
            raise FxUnavailableError(base, quote, attempted)

    def _cached(self, base: str, quote: str) -> Optional[ExchangeRate]:
        """Cached rate, or FxUnavailableError again for a pair that already failed."""
        attempted = self.cache.get_failure(base, quote)
        if attempted is not None:
            raise FxUnavailableError(base, quote, attempted)
        return self.cache.get(base, quote)

    def rates(self) -> List[ExchangeRate]:
        return self.cache.rates()
