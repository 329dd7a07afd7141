"""
Valuation Errors

Exception taxonomy shared by the holding sources, the FX rate resolver and
the aggregator. Failures are isolated at the smallest unit that raised them;
only AuthError (and cancellation) ever escapes a valuation pass.
"""

from typing import Any, Optional, Sequence


class ValuationError(Exception):
    """Base class for all valuation engine errors."""


class AuthError(ValuationError):
    """Bad key, bad signature or expired request window. Not retried."""


class NetworkError(ValuationError):
    """Timeout, connection failure or unexpected HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body  # Decoded error body, when the server sent JSON


class ParseError(ValuationError):
    """Response body present but not in any shape we understand."""


class FxUnavailableError(ValuationError):
    """Every configured FX provider failed for a currency pair."""

    def __init__(self, base: str, quote: str, attempted: Sequence[str] = ()):
        self.base = base
        self.quote = quote
        self.attempted = tuple(attempted)
        tried = ", ".join(self.attempted) or "no providers configured"
        super().__init__(f"No FX rate for {base}->{quote} (tried: {tried})")


class PassCancelledError(ValuationError):
    """The valuation pass was cancelled before it finished."""
