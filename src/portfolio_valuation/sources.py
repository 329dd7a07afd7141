"""
Holding Sources

Adapters that fetch balances/positions over authenticated HTTP and emit
normalized RawHolding records.

Supports:
    - Bitvavo (exchange balances, HMAC-SHA256 signed requests)
    - Trading212 (brokerage positions, API key in Authorization header)

Each source allows a single in-flight fetch: a caller arriving while a fetch
is outstanding waits for it and reuses its result instead of issuing a second
authenticated request.
"""

import hashlib
import hmac
import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import requests

from .errors import AuthError, NetworkError, ParseError
from .fields import extract_currency_code, extract_number, parse_number
from .currency import looks_like_currency_code
from .http import DEFAULT_TIMEOUT, create_session, get_json
from .models import RawHolding

logger = logging.getLogger(__name__)


class HoldingSource:
    """Base class for holding sources."""

    name = "source"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.session = session or create_session()
        self.timeout = timeout
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None

    def fetch(self) -> List[RawHolding]:
        """
        Fetch all non-zero holdings.

        Concurrent callers share one underlying request.

        Returns:
            List of RawHolding objects

        Raises:
            AuthError, NetworkError, ParseError
        """
        with self._lock:
            future = self._inflight
            owner = future is None
            if owner:
                future = Future()
                self._inflight = future

        if not owner:
            logger.info(f"{self.name}: fetch already in flight, waiting for it")
            return list(future.result())

        try:
            holdings = self._fetch()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(holdings)
            return holdings
        finally:
            with self._lock:
                self._inflight = None

    def _fetch(self) -> List[RawHolding]:
        raise NotImplementedError

    def _get(self, url: str, headers: Optional[Dict[str, str]] = None, params=None) -> Any:
        return get_json(self.session, url, headers=headers, params=params, timeout=self.timeout)


class BitvavoSource(HoldingSource):
    """Bitvavo exchange balances valued through public ticker prices."""

    name = "Bitvavo"
    BASE_URL = "https://api.bitvavo.com/v2"
    HEADER_PREFIX = "Bitvavo-Access-"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = BASE_URL,
        quote_currency: str = "EUR",
        access_window: int = 60000,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(session, timeout)
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.quote_currency = quote_currency.upper()
        self.access_window = access_window
        self.clock = clock

    def sign(self, timestamp: str, method: str, path: str, body: str = "") -> str:
        """HMAC-SHA256 over timestamp + METHOD + path + body, hex encoded."""
        payload = timestamp + method.upper() + path + body
        return hmac.new(
            self.api_secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def auth_headers(self, method: str, url: str, body: str = "") -> Dict[str, str]:
        parts = urlsplit(url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
        timestamp = str(int(self.clock() * 1000))
        return {
            f"{self.HEADER_PREFIX}Key": self.api_key,
            f"{self.HEADER_PREFIX}Timestamp": timestamp,
            f"{self.HEADER_PREFIX}Signature": self.sign(timestamp, method, path, body),
            f"{self.HEADER_PREFIX}Window": str(self.access_window),
        }

    def fetch_balances(self) -> List[Dict[str, Any]]:
        """Authenticated GET /balance."""
        url = f"{self.base_url}/balance"
        try:
            data = self._get(url, headers=self.auth_headers("GET", url))
        except NetworkError as e:
            self._raise_for_error_body(e.body, e)
            raise

        self._raise_for_error_body(data)
        if not isinstance(data, list):
            raise ParseError(f"{self.name}: expected a list of balances, got {type(data).__name__}")
        return data

    def fetch_price(self, symbol: str) -> Optional[float]:
        """
        Public spot price for {symbol}-{quote}.

        Returns:
            Positive price, or None if the lookup failed
        """
        market = f"{symbol}-{self.quote_currency}"
        try:
            data = self._get(f"{self.base_url}/ticker/price", params={"market": market})
        except (NetworkError, ParseError, AuthError) as e:
            logger.warning(f"  {self.name}: price lookup failed for {market}: {e}")
            return None

        price = extract_number(data, ("price",)).get()
        if price is None or price <= 0:
            logger.warning(f"  {self.name}: no usable price for {market}: {data}")
            return None
        return price

    def _fetch(self) -> List[RawHolding]:
        balances = self.fetch_balances()
        holdings = []
        unpriced = 0

        for record in balances:
            if not isinstance(record, dict):
                logger.debug(f"  {self.name}: skipping non-object balance {record!r}")
                continue
            symbol = str(record.get("symbol") or "").upper()
            if not symbol:
                continue

            available = parse_number(record.get("available")) or 0.0
            in_order = parse_number(record.get("inOrder")) or 0.0
            amount = available + in_order
            if amount <= 0:
                continue

            hint = {"currency": self.quote_currency}
            if symbol == self.quote_currency:
                holdings.append(
                    RawHolding(symbol, amount, value_hint=amount, currency_hint=hint, source=self.name)
                )
                continue

            price = self.fetch_price(symbol)
            if price is None:
                unpriced += 1
                holdings.append(RawHolding(symbol, amount, currency_hint=hint, source=self.name))
                continue

            holdings.append(
                RawHolding(
                    symbol,
                    amount,
                    price_hint=price,
                    value_hint=amount * price,
                    currency_hint=hint,
                    source=self.name,
                )
            )

        logger.info(f"{self.name}: {len(holdings)} balances ({unpriced} without price)")
        return holdings

    def _raise_for_error_body(self, body: Any, cause: Optional[Exception] = None):
        """Bitvavo reports auth problems as errorCode 300-399."""
        if not isinstance(body, dict) or "errorCode" not in body:
            return
        code = parse_number(body.get("errorCode"))
        message = f"{self.name} error {body.get('errorCode')}: {body.get('error', '')}"
        if code is not None and 300 <= code < 400:
            raise AuthError(message) from cause
        if cause is None:
            raise NetworkError(message)


class Trading212Source(HoldingSource):
    """Trading212 portfolio positions."""

    name = "Trading212"
    BASE_URL = "https://live.trading212.com/api/v0/equity"

    ACCOUNT_CURRENCY_KEYS = ("currencyCode", "currency", "accountCurrency", "code")
    SYMBOL_KEYS = ("ticker", "symbol", "instrumentCode")
    QUANTITY_KEYS = ("quantity", "qty", "shares")
    PRICE_KEYS = ("currentPrice", "price", "lastPrice")
    VALUE_KEYS = ("value", "currentValue", "marketValue")
    NESTED_PRICE_KEYS = ("value", "amount")

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        fallback_currency: str = "EUR",
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(session, timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.fallback_currency = fallback_currency.upper()

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key}

    def fetch_account_currency(self) -> str:
        """
        Fetch the account's reporting currency.

        Also serves as the credential check: AuthError propagates.

        Returns:
            Currency code, or the fallback currency if absent/unparseable
        """
        info = self._get(f"{self.base_url}/account/info", headers=self.headers)
        found = extract_currency_code(info, self.ACCOUNT_CURRENCY_KEYS, accept=looks_like_currency_code)
        if found:
            return found.value

        logger.warning(
            f"{self.name}: no account currency in account info, using {self.fallback_currency}"
        )
        return self.fallback_currency

    def fetch_positions(self) -> List[Dict[str, Any]]:
        data = self._get(f"{self.base_url}/portfolio", headers=self.headers)
        if isinstance(data, dict):
            for key in ("items", "positions", "data"):
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
        if not isinstance(data, list):
            raise ParseError(f"{self.name}: expected a list of positions, got {type(data).__name__}")
        return data

    def _fetch(self) -> List[RawHolding]:
        account_currency = self.fetch_account_currency()
        positions = self.fetch_positions()
        holdings = []

        for position in positions:
            holding = self._to_holding(position, account_currency)
            if holding is not None:
                holdings.append(holding)

        logger.info(f"{self.name}: {len(holdings)} positions (account currency {account_currency})")
        return holdings

    def _to_holding(self, position: Any, account_currency: str) -> Optional[RawHolding]:
        if not isinstance(position, dict):
            logger.debug(f"  {self.name}: skipping non-object position {position!r}")
            return None

        symbol = self._symbol(position)
        quantity = extract_number(position, self.QUANTITY_KEYS, flat_only=True).get()
        if not symbol or quantity is None or quantity <= 0:
            return None

        price = extract_number(position, self.PRICE_KEYS, flat_only=True).get()
        if price is None:
            price = self._nested_number(position, "price", self.NESTED_PRICE_KEYS)

        in_account = extract_number(position, ("valueInAccountCurrency",), flat_only=True)
        if in_account:
            return RawHolding(
                symbol,
                quantity,
                price_hint=price,
                value_hint=in_account.value,
                currency_hint={"currencyCode": account_currency},
                source=self.name,
            )

        # walletImpact is in the account currency unless it names its own
        wallet_value = self._nested_number(position, "walletImpact", ("currentValue",))
        if wallet_value is not None:
            wallet_currency = extract_currency_code(
                position["walletImpact"], ("currency",), accept=looks_like_currency_code, flat_only=True
            ).get(account_currency)
            return RawHolding(
                symbol,
                quantity,
                price_hint=price,
                value_hint=wallet_value,
                currency_hint={"currencyCode": wallet_currency},
                source=self.name,
            )

        # Position-level totals only; a nested price object's "value" is per unit
        value = extract_number(position, self.VALUE_KEYS, flat_only=True).get()
        if value is None and price is None:
            logger.warning(f"  {self.name}: {symbol} has neither value nor price")

        return RawHolding(
            symbol,
            quantity,
            price_hint=price,
            value_hint=value,
            currency_hint=position,
            source=self.name,
        )

    @staticmethod
    def _nested_number(position: Dict[str, Any], key: str, keys) -> Optional[float]:
        nested = position.get(key)
        if not isinstance(nested, dict):
            return None
        return extract_number(nested, keys, flat_only=True).get()

    def _symbol(self, position: Dict[str, Any]) -> str:
        for key in self.SYMBOL_KEYS:
            raw = position.get(key)
            if isinstance(raw, str) and raw.strip():
                return raw.strip()
        instrument = position.get("instrument")
        if isinstance(instrument, dict):
            raw = instrument.get("ticker")
            if isinstance(raw, str):
                return raw.strip()
        return ""


def create_source(
    source_name: str,
    api_key: str,
    api_secret: Optional[str] = None,
    **options,
) -> HoldingSource:
    """
    Factory function to create holding sources.

    Args:
        source_name: Name of source (bitvavo, trading212)
        api_key: API key
        api_secret: API secret (required for Bitvavo)
        **options: Passed to the source constructor (base_url, session, timeout, ...)

    Returns:
        HoldingSource instance
    """
    source_name = source_name.lower()

    if not api_key:
        raise ValueError(f"{source_name} requires an API key")

    if source_name == "bitvavo":
        if not api_secret:
            raise ValueError("Bitvavo requires an API secret")
        return BitvavoSource(api_key, api_secret, **options)
    elif source_name == "trading212":
        return Trading212Source(api_key, **options)
    else:
        raise ValueError(f"Unsupported source: {source_name}")
