"""
Valuation Data Model

Immutable records passed between the holding sources, the currency resolver,
the FX rate resolver and the aggregator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class RawHolding:
    """A single balance or position as reported by a holding source."""

    symbol: str  # Asset symbol or broker ticker (BTC, AAPL_US_EQ, ...)
    amount: float  # Units held, always > 0
    price_hint: Optional[float] = None  # Price per unit in native currency
    value_hint: Optional[float] = None  # Pre-computed native value
    currency_hint: Mapping[str, Any] = field(default_factory=dict)  # Raw metadata
    source: str = ""  # Name of the source that produced it

    def __post_init__(self):
        if not self.amount > 0:
            raise ValueError(f"{self.symbol}: amount must be positive, got {self.amount}")

    def native_value(self) -> Optional[float]:
        """
        Value of the holding in its native currency.

        Returns:
            value_hint when known, else amount * price_hint, else None
        """
        if self.value_hint is not None:
            return self.value_hint
        if self.price_hint is not None:
            return self.amount * self.price_hint
        return None


@dataclass(frozen=True)
class ResolvedHolding:
    """A RawHolding with its native currency determined."""

    raw: RawHolding
    native_currency: str

    @property
    def symbol(self) -> str:
        return self.raw.symbol

    def native_value(self) -> Optional[float]:
        return self.raw.native_value()


@dataclass(frozen=True)
class ExchangeRate:
    """Rate to multiply an amount in `base` by to get an amount in `quote`."""

    base: str
    quote: str
    rate: float
    source: str  # Provider name


@dataclass(frozen=True)
class HoldingValue:
    """One row of the summary breakdown."""

    symbol: str
    value: float  # In the summary currency
    source: str = ""
    native_currency: str = ""
    native_value: float = 0.0


@dataclass(frozen=True)
class PortfolioSummary:
    """Result of one valuation pass."""

    total_value: float
    currency: str
    holdings: Tuple[HoldingValue, ...] = ()
    incomplete: bool = False
    source_totals: Dict[str, float] = field(default_factory=dict)
    failed_sources: Tuple[str, ...] = ()
    unpriced: Tuple[str, ...] = ()  # Symbols that could not be valued
    rates: Tuple[ExchangeRate, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form for JSON output."""
        return {
            "total_value": self.total_value,
            "currency": self.currency,
            "incomplete": self.incomplete,
            "source_totals": dict(self.source_totals),
            "failed_sources": list(self.failed_sources),
            "unpriced": list(self.unpriced),
            "holdings": [
                {
                    "symbol": h.symbol,
                    "value": h.value,
                    "source": h.source,
                    "native_currency": h.native_currency,
                    "native_value": h.native_value,
                }
                for h in self.holdings
            ],
            "rates": [
                {"base": r.base, "quote": r.quote, "rate": r.rate, "source": r.source}
                for r in self.rates
            ],
        }


class PassState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (PassState.DONE, PassState.FAILED, PassState.CANCELLED)
