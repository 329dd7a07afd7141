"""
Valuation Aggregator

Runs one valuation pass: fetch holdings from every source, resolve each
holding's native currency, convert to the target currency, drop dust and sum.

A pass moves IDLE -> FETCHING -> RESOLVING -> AGGREGATING -> DONE. It ends in
FAILED when a source rejects its credentials and auth_fallback is off, and in
CANCELLED when cancel() is called before it finishes. Passes are single use;
the FX rate cache lives and dies with the pass.

Usage:
    from portfolio_valuation.aggregator import get_portfolio_summary

    summary = get_portfolio_summary()
    print(f"{summary.total_value:.2f} {summary.currency}")
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from .config import Settings, load_settings
from .currency import CurrencyResolver
from .errors import AuthError, FxUnavailableError, PassCancelledError
from .fx import FxRateResolver, RateProvider, build_providers
from .http import create_session
from .models import HoldingValue, PassState, PortfolioSummary, RawHolding
from .sources import HoldingSource, create_source

logger = logging.getLogger(__name__)


class ValuationPass:
    """One end-to-end execution of fetch -> resolve -> convert -> aggregate."""

    def __init__(
        self,
        sources: Sequence[HoldingSource],
        target_currency: str,
        dust_threshold: float = 0.0,
        providers: Optional[Sequence[RateProvider]] = None,
        resolver: Optional[CurrencyResolver] = None,
        auth_fallback: bool = False,
        max_workers: int = 4,
    ):
        """
        Args:
            sources: Holding sources to fetch from
            target_currency: Reporting currency of the summary
            dust_threshold: Holdings worth this much or less are left out
            providers: FX rate providers in fallback order (default: build_providers())
            resolver: Currency resolver (default: CurrencyResolver())
            auth_fallback: Treat a rejected credential like any other source failure
                instead of failing the pass
            max_workers: Upper bound on sources fetched in parallel
        """
        self.sources = list(sources)
        self.target_currency = target_currency.upper()
        self.dust_threshold = dust_threshold
        self.fx = FxRateResolver(providers if providers is not None else build_providers())
        self.resolver = resolver or CurrencyResolver()
        self.auth_fallback = auth_fallback
        self.max_workers = max(1, max_workers)

        self.state = PassState.IDLE
        self._state_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._incomplete = False
        self._failed_sources: List[str] = []
        self._unpriced: List[str] = []

    def cancel(self):
        """Ask a running pass to stop; partial results are discarded."""
        self._cancelled.set()

    def run(self) -> PortfolioSummary:
        """
        Execute the pass.

        Returns:
            PortfolioSummary, flagged incomplete if anything was skipped

        Raises:
            AuthError: a source rejected its credentials and auth_fallback is off
            PassCancelledError: cancel() was called
            RuntimeError: the pass was already run
        """
        with self._state_lock:
            if self.state is not PassState.IDLE:
                raise RuntimeError(f"Valuation pass already {self.state.value}; start a new one")
            self.state = PassState.FETCHING

        try:
            fetched = self._fetch_all()
            self._transition(PassState.RESOLVING)
            values = self._value_holdings(fetched)
            self._transition(PassState.AGGREGATING)
            summary = self._aggregate(values, [name for name, _ in fetched])
        except PassCancelledError:
            self.state = PassState.CANCELLED
            logger.warning("Valuation pass cancelled, discarding partial results")
            raise
        except AuthError:
            self.state = PassState.FAILED
            raise

        self.state = PassState.DONE
        return summary

    def _transition(self, state: PassState):
        self._check_cancelled()
        logger.debug(f"Valuation pass: {self.state.value} -> {state.value}")
        self.state = state

    def _check_cancelled(self):
        if self._cancelled.is_set():
            raise PassCancelledError("Valuation pass cancelled")

    def _fetch_all(self) -> List[Tuple[str, List[RawHolding]]]:
        """Fetch every source in parallel, isolating failures per source."""
        if not self.sources:
            logger.warning("No holding sources configured")
            return []

        workers = min(self.max_workers, len(self.sources))
        auth_error: Optional[AuthError] = None
        fetched = []

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            futures = [(source, pool.submit(source.fetch)) for source in self.sources]

            for source, future in futures:
                try:
                    holdings = future.result()
                except AuthError as e:
                    logger.error(f"✗ {source.name}: authentication failed: {e}")
                    self._mark_failed(source.name)
                    if not self.auth_fallback and auth_error is None:
                        auth_error = e
                    continue
                except Exception as e:
                    logger.error(f"✗ {source.name}: fetch failed: {e}")
                    self._mark_failed(source.name)
                    continue

                logger.info(f"✓ {source.name}: {len(holdings)} holdings")
                fetched.append((source.name, holdings))

        if auth_error is not None:
            raise auth_error
        return fetched

    def _mark_failed(self, source_name: str):
        self._incomplete = True
        self._failed_sources.append(source_name)

    def _value_holdings(self, fetched: List[Tuple[str, List[RawHolding]]]) -> List[HoldingValue]:
        values = []
        for source_name, holdings in fetched:
            for raw in holdings:
                self._check_cancelled()
                value = self._value_holding(raw, raw.source or source_name)
                if value is not None:
                    values.append(value)
        return values

    def _value_holding(self, raw: RawHolding, source_name: str) -> Optional[HoldingValue]:
        """Resolve and convert one holding; None (and incomplete) on failure."""
        try:
            resolved = self.resolver.resolve_holding(raw, self.target_currency)
            native_value = resolved.native_value()
            if native_value is None:
                logger.warning(f"  {source_name} {raw.symbol}: no price, left out of total")
                self._mark_unpriced(raw.symbol)
                return None

            value = self.fx.convert(native_value, resolved.native_currency, self.target_currency)
        except FxUnavailableError as e:
            logger.warning(f"  {source_name} {raw.symbol}: {e}")
            self._mark_unpriced(raw.symbol)
            return None
        except Exception as e:
            logger.exception(f"  {source_name} {raw.symbol}: unexpected error: {e}")
            self._mark_unpriced(raw.symbol)
            return None

        return HoldingValue(
            symbol=raw.symbol,
            value=value,
            source=source_name,
            native_currency=resolved.native_currency,
            native_value=native_value,
        )

    def _mark_unpriced(self, symbol: str):
        self._incomplete = True
        self._unpriced.append(symbol)

    def _aggregate(self, values: List[HoldingValue], source_names: List[str]) -> PortfolioSummary:
        """Drop dust first, then sum, so the total matches the breakdown."""
        kept = [v for v in values if v.value > self.dust_threshold]
        dropped = len(values) - len(kept)
        if dropped:
            logger.info(f"Dropped {dropped} holdings at or below {self.dust_threshold} {self.target_currency}")

        kept.sort(key=lambda v: v.value, reverse=True)

        source_totals: Dict[str, float] = {name: 0.0 for name in source_names}
        for v in kept:
            source_totals[v.source] = source_totals.get(v.source, 0.0) + v.value

        total = sum(v.value for v in kept)

        logger.info("=" * 60)
        logger.info(f"Total: {total:,.2f} {self.target_currency} ({len(kept)} holdings)")
        if self._incomplete:
            logger.warning(
                f"Incomplete: {len(self._failed_sources)} sources failed, "
                f"{len(self._unpriced)} holdings unpriced"
            )

        return PortfolioSummary(
            total_value=total,
            currency=self.target_currency,
            holdings=tuple(kept),
            incomplete=self._incomplete,
            source_totals=source_totals,
            failed_sources=tuple(self._failed_sources),
            unpriced=tuple(self._unpriced),
            rates=tuple(self.fx.rates()),
        )


def run(
    sources: Sequence[HoldingSource],
    target_currency: str,
    dust_threshold: float = 0.0,
    **options,
) -> PortfolioSummary:
    """Run a fresh valuation pass. See ValuationPass for options."""
    return ValuationPass(sources, target_currency, dust_threshold, **options).run()


def build_sources(settings: Settings, session: Optional[requests.Session] = None) -> List[HoldingSource]:
    """
    Create the configured holding sources.

    Reuse the returned sources across passes so overlapping passes share
    in-flight fetches.
    """
    session = session or create_session()
    sources = []
    for name, config in settings.sources.items():
        options = dict(config)
        kind = options.pop("source")
        sources.append(create_source(kind, session=session, timeout=settings.http_timeout, **options))
        logger.debug(f"Configured source {name} ({kind})")
    return sources


def get_portfolio_summary(
    settings: Optional[Settings] = None,
    sources: Optional[Sequence[HoldingSource]] = None,
    session: Optional[requests.Session] = None,
) -> PortfolioSummary:
    """
    Build sources and providers from configuration and run one pass.

    Args:
        settings: Engine settings (default: load_settings())
        sources: Pre-built sources to reuse (default: build_sources(settings))
        session: Shared requests session

    Returns:
        PortfolioSummary
    """
    settings = settings or load_settings()
    session = session or create_session()
    if sources is None:
        sources = build_sources(settings, session)

    providers = build_providers(settings.fx_providers, session=session, timeout=settings.http_timeout)
    return run(
        sources,
        settings.target_currency,
        settings.dust_threshold,
        providers=providers,
        auth_fallback=settings.auth_fallback,
        max_workers=settings.max_workers,
    )
