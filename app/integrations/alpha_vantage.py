from __future__ import annotations

import math
import time
from typing import Any, Optional

import requests

from app.errors import UpstreamError, UpstreamErrorKind
from app.schemas.quote import Quote, QuoteOrigin


class AlphaVantageQuoteAdapter:
    """Single GLOBAL_QUOTE call normalized into a live Quote or an UpstreamError."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://www.alphavantage.co",
        timeout_sec: float = 10.0,
        session: Optional[Any] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests

    @staticmethod
    def _parse_price(value: Any) -> float | None:
        try:
            if value is None or value == "":
                return None
            price = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(price) or price < 0:
            return None
        return price

    def fetch(self, symbol: str) -> Quote:
        symbol = symbol.strip().upper()
        try:
            response = self.session.get(
                f"{self.base_url}/query",
                params={"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self.api_key},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise UpstreamError(UpstreamErrorKind.TRANSPORT, str(exc) or type(exc).__name__) from exc

        if response.status_code == 429:
            raise UpstreamError(UpstreamErrorKind.RATE_LIMITED, "HTTP 429 Too Many Requests")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise UpstreamError(UpstreamErrorKind.TRANSPORT, str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(UpstreamErrorKind.MALFORMED, "Invalid API response format") from exc
        if not isinstance(payload, dict):
            raise UpstreamError(UpstreamErrorKind.MALFORMED, "Invalid API response format")

        output = payload.get("Global Quote")
        price = self._parse_price(output.get("05. price")) if isinstance(output, dict) else None
        if price is not None:
            return Quote(
                symbol=symbol,
                price=price,
                observed_at=time.time(),
                origin=QuoteOrigin.LIVE,
            )

        # provider throttle notices arrive as a 200 with a prose message
        notice = payload.get("Note") or payload.get("Information")
        if notice:
            raise UpstreamError(UpstreamErrorKind.RATE_LIMITED, str(notice))
        raise UpstreamError(UpstreamErrorKind.MALFORMED, "Invalid API response format")


class DemoQuoteAdapter:
    def __init__(self, price: float = 150.0) -> None:
        self.price = price

    def fetch(self, symbol: str) -> Quote:
        return Quote(symbol=symbol, price=self.price, observed_at=time.time())
