"""
Portfolio Valuation Engine

Aggregates holdings from a crypto exchange (Bitvavo) and a brokerage
(Trading212) into one total in a reporting currency, converting through a
chain of public FX rate providers.
"""

__version__ = "0.1.0"

from .aggregator import (
    ValuationPass,
    run,
    build_sources,
    get_portfolio_summary,
)

from .config import Settings, load_settings

from .currency import CurrencyResolver, looks_like_currency_code

from .errors import (
    ValuationError,
    AuthError,
    NetworkError,
    ParseError,
    FxUnavailableError,
    PassCancelledError,
)

from .fx import FxRateResolver, JsonRateProvider, TradingViewProvider, build_providers

from .models import (
    RawHolding,
    ResolvedHolding,
    ExchangeRate,
    HoldingValue,
    PortfolioSummary,
    PassState,
)

from .sources import create_source, BitvavoSource, Trading212Source

__all__ = [
    "ValuationPass",
    "run",
    "build_sources",
    "get_portfolio_summary",
    "Settings",
    "load_settings",
    "CurrencyResolver",
    "looks_like_currency_code",
    "ValuationError",
    "AuthError",
    "NetworkError",
    "ParseError",
    "FxUnavailableError",
    "PassCancelledError",
    "FxRateResolver",
    "JsonRateProvider",
    "TradingViewProvider",
    "build_providers",
    "RawHolding",
    "ResolvedHolding",
    "ExchangeRate",
    "HoldingValue",
    "PortfolioSummary",
    "PassState",
    "create_source",
    "BitvavoSource",
    "Trading212Source",
]
