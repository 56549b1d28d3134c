from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class QuoteOrigin(str, Enum):
    LIVE = "LIVE"
    CACHED = "CACHED"


def to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class Quote(BaseModel):
    symbol: str
    price: float = Field(ge=0, allow_inf_nan=False)
    observed_at: float
    origin: QuoteOrigin = QuoteOrigin.LIVE
    failure_reason: str | None = None

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @classmethod
    def failure(cls, symbol: str, reason: str, observed_at: float) -> "Quote":
        return cls(symbol=symbol, price=0.0, observed_at=observed_at, failure_reason=reason)

    @property
    def is_failure(self) -> bool:
        return self.failure_reason is not None

    @property
    def cached(self) -> bool:
        return self.origin == QuoteOrigin.CACHED

    def to_payload(self) -> dict:
        """Wire shape shared by the HTTP routes and the push channel."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": to_iso(self.observed_at),
            "error": self.failure_reason,
            "cached": self.cached,
        }


class FallbackRecord(BaseModel):
    symbol: str
    price: float
    observed_at: float
