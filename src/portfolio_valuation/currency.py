"""
Currency Resolution

Determines the native currency of a RawHolding from whatever metadata its
source attached. Resolution order is fixed:

    1. explicit currency field on the record
    2. currency inside a nested price/value object
    3. inference from the ticker string (country segment or currency segment)
    4. the pass's target currency

Every candidate must pass looks_like_currency_code(); rejected candidates
fall through to the next level.
"""

import logging
import re
from typing import Any, Mapping, Optional

from .fields import extract_currency_code, normalize_currency_code
from .models import RawHolding, ResolvedHolding

logger = logging.getLogger(__name__)

# Active ISO 4217 alphabetic codes
ISO_4217_CODES = frozenset(
    """
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB
    BRL BSD BTN BWP BYN BZD CAD CDF CHF CLP CNY COP CRC CUP CVE CZK DJF DKK DOP
    DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD HNL HTG HUF
    IDR ILS INR IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD KZT LAK
    LBP LKR LRD LSL LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MYR MZN
    NAD NGN NIO NOK NPR NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF
    SAR SBD SCR SDG SEK SGD SHP SLE SLL SOS SRD SSP STN SVC SYP SZL THB TJS TMT
    TND TOP TRY TTD TWD TZS UAH UGX USD UYU UZS VES VND VUV WST XAF XCD XOF XPF
    YER ZAR ZMW ZWL
    """.split()
)

# Pseudo-codes some brokers quote in: code -> (parent currency, factor)
PSEUDO_CURRENCIES = {
    "GBX": ("GBP", 0.01),  # Pence sterling (LSE)
    "ZAC": ("ZAR", 0.01),  # South African cents (JSE)
    "ILA": ("ILS", 0.01),  # Israeli agorot (TASE)
}

# Ticker segment -> currency, for broker tickers like AAPL_US_EQ
COUNTRY_CURRENCIES = {
    "US": "USD",
    "UK": "GBP",
    "GB": "GBP",
    "DE": "EUR",
    "FR": "EUR",
    "NL": "EUR",
    "BE": "EUR",
    "ES": "EUR",
    "IT": "EUR",
    "PT": "EUR",
    "AT": "EUR",
    "IE": "EUR",
    "FI": "EUR",
    "CH": "CHF",
    "CA": "CAD",
    "SE": "SEK",
    "DK": "DKK",
    "NO": "NOK",
    "PL": "PLN",
    "CZ": "CZK",
    "HU": "HUF",
    "JP": "JPY",
    "HK": "HKD",
    "AU": "AUD",
}

EXPLICIT_CURRENCY_KEYS = (
    "currencyCode",
    "currency",
    "currency_code",
    "ccy",
    "priceCurrency",
)

PRICE_OBJECT_KEYS = (
    "price",
    "currentPrice",
    "value",
    "marketValue",
    "walletImpact",
    "instrument",
)

TICKER_SEPARATORS = re.compile(r"[_\-.\s]+")


def looks_like_currency_code(code: Any) -> Optional[str]:
    """
    Validate a currency code.

    Args:
        code: Candidate string (case-insensitive, subunit aliases like GBp allowed)

    Returns:
        Canonical code if it is an ISO 4217 code or an allow-listed pseudo-code,
        None otherwise
    """
    normalized = normalize_currency_code(code)
    if normalized is None:
        return None
    if normalized in PSEUDO_CURRENCIES:
        return normalized
    if len(normalized) == 3 and normalized.isalpha() and normalized in ISO_4217_CODES:
        return normalized
    return None


def infer_from_ticker(symbol: str) -> Optional[str]:
    """
    Guess a currency from ticker segments.

    AAPL_US_EQ -> USD (country segment), BTC-EUR -> EUR (currency segment).
    The leading segment is the instrument itself and only counts when it is
    the whole ticker.
    """
    if not symbol:
        return None
    segments = [s for s in TICKER_SEPARATORS.split(symbol.strip()) if s]
    if len(segments) > 1:
        segments = segments[1:]

    for segment in segments:
        country = COUNTRY_CURRENCIES.get(segment.upper())
        if country:
            return country
        code = looks_like_currency_code(segment)
        if code:
            return code
    return None


class CurrencyResolver:
    """Resolves the native currency of raw holdings."""

    def __init__(
        self,
        explicit_keys=EXPLICIT_CURRENCY_KEYS,
        price_object_keys=PRICE_OBJECT_KEYS,
    ):
        self.explicit_keys = tuple(explicit_keys)
        self.price_object_keys = tuple(price_object_keys)

    def resolve(self, holding: RawHolding, fallback: str) -> str:
        """
        Determine the native currency code of a holding.

        Args:
            holding: Raw holding whose currency_hint is inspected
            fallback: Currency to use when nothing else is conclusive

        Returns:
            Validated currency code
        """
        hint: Mapping[str, Any] = holding.currency_hint or {}

        explicit = extract_currency_code(
            hint, self.explicit_keys, accept=looks_like_currency_code, flat_only=True
        )
        if explicit:
            return explicit.value

        nested = self._from_price_object(hint)
        if nested:
            return nested

        inferred = infer_from_ticker(holding.symbol)
        if inferred:
            logger.debug(f"{holding.symbol}: currency {inferred} inferred from ticker")
            return inferred

        if explicit.malformed:
            logger.debug(
                f"{holding.symbol}: rejected currency under {', '.join(explicit.malformed)}, "
                f"using {fallback}"
            )
        return fallback

    def resolve_holding(self, holding: RawHolding, fallback: str) -> ResolvedHolding:
        return ResolvedHolding(raw=holding, native_currency=self.resolve(holding, fallback))

    def _from_price_object(self, hint: Mapping[str, Any]) -> Optional[str]:
        for key in self.price_object_keys:
            child = hint.get(key)
            if not isinstance(child, dict):
                continue
            found = extract_currency_code(
                child, self.explicit_keys, accept=looks_like_currency_code, flat_only=True
            )
            if found:
                return found.value
        return None
