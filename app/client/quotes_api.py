from __future__ import annotations

import time
from typing import Any, Callable, Optional

import requests

from app.errors import TradeRequestError
from app.schemas.quote import to_iso

FETCH_FAILED_MESSAGE = "Failed to fetch stock data"
TRADE_FAILED_MESSAGE = "Failed to execute trade"
NETWORK_ERROR_MESSAGE = "Network error occurred"


def _server_message(response: Any) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for key in ("message", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class QuoteApiClient:
    """Request/response helpers for the quote and trade routes."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 10.0,
        session: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests
        self.clock = clock

    def fetch_stock(self, symbol: str) -> dict:
        """Never raises: failures come back as a price-0 payload with ``error`` set."""
        symbol = symbol.strip().upper()
        try:
            response = self.session.get(f"{self.base_url}/v1/stock/{symbol}", timeout=self.timeout_sec)
            response.raise_for_status()
        except requests.HTTPError as exc:
            if exc.response is None:
                error = NETWORK_ERROR_MESSAGE
            else:
                error = _server_message(exc.response) or FETCH_FAILED_MESSAGE
        except requests.RequestException:
            error = NETWORK_ERROR_MESSAGE
        else:
            try:
                return response.json()
            except ValueError:
                error = FETCH_FAILED_MESSAGE

        print(f"[CLIENT][fetch_stock_failed] symbol={symbol} error={error}", flush=True)
        return {"symbol": symbol, "price": 0, "timestamp": to_iso(self.clock()), "error": error}

    def execute_trade(self, symbol: str, strategy: str = "simple") -> dict:
        try:
            response = self.session.post(
                f"{self.base_url}/v1/trade",
                json={"symbol": symbol.strip().upper(), "strategy": strategy},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            if exc.response is None:
                raise TradeRequestError(NETWORK_ERROR_MESSAGE) from exc
            raise TradeRequestError(_server_message(exc.response) or TRADE_FAILED_MESSAGE) from exc
        except requests.RequestException as exc:
            raise TradeRequestError(NETWORK_ERROR_MESSAGE) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise TradeRequestError(TRADE_FAILED_MESSAGE) from exc
