from __future__ import annotations

from enum import Enum


class UpstreamErrorKind(str, Enum):
    RATE_LIMITED = "RateLimited"
    MALFORMED = "Malformed"
    TRANSPORT = "Transport"


class UpstreamError(Exception):
    """Single failed call against the quote provider."""

    def __init__(self, kind: UpstreamErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def rate_limited(self) -> bool:
        return self.kind == UpstreamErrorKind.RATE_LIMITED


class FetchExhausted(Exception):
    """Every attempt of one fetch failed. Resolved inside the fetcher."""

    def __init__(self, symbol: str, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Failed to fetch stock data for {symbol} after {attempts} attempts: {last_error}"
        )
        self.symbol = symbol
        self.attempts = attempts
        self.last_error = last_error


class ReconnectCeilingReached(Exception):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"reconnect ceiling reached after {attempts} attempts")
        self.attempts = attempts


class SessionStateError(RuntimeError):
    pass


class TradeRequestError(Exception):
    """Trade call failed; the message is what the caller shows."""
