import time
import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from app.config.settings import Settings
from app.context import QuoteContext
from app.errors import UpstreamError, UpstreamErrorKind
from app.integrations.alpha_vantage import AlphaVantageQuoteAdapter
from app.main import create_app
from app.schemas.quote import Quote
from app.services.fallback_store import FallbackStore
from app.services.quote_fetcher import ResilientQuoteFetcher


class SwitchableAdapter:
    def __init__(self, price=150.23):
        self.price = price
        self.fail = False
        self.calls = 0

    def fetch(self, symbol):
        self.calls += 1
        if self.fail:
            raise UpstreamError(UpstreamErrorKind.RATE_LIMITED, "API call frequency exceeded")
        return Quote(symbol=symbol, price=self.price, observed_at=time.time())


def _make_client(adapter, **settings):
    store = FallbackStore()
    fetcher = ResilientQuoteFetcher(adapter=adapter, store=store, sleep_fn=lambda _s: None)
    context = QuoteContext(
        adapter=adapter,
        store=store,
        fetcher=fetcher,
        settings=Settings(QUOTE_FALLBACK_PATH=None, **settings),
    )
    app = create_app(quote_context=context)
    return app, TestClient(app)


class QuoteApiTest(unittest.TestCase):
    def test_get_stock_returns_live_quote(self):
        _, client = _make_client(SwitchableAdapter(price=150.23))

        response = client.get("/v1/stock/aapl")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["symbol"], "AAPL")
        self.assertEqual(body["price"], 150.23)
        self.assertIsNone(body["error"])
        self.assertFalse(body["cached"])
        self.assertTrue(body["timestamp"].endswith("Z"))

    def test_get_stock_falls_back_to_cached_value(self):
        adapter = SwitchableAdapter(price=150.23)
        _, client = _make_client(adapter)
        client.get("/v1/stock/AAPL")
        adapter.fail = True

        body = client.get("/v1/stock/AAPL").json()

        self.assertTrue(body["cached"])
        self.assertEqual(body["price"], 150.23)
        self.assertIsNone(body["error"])

    def test_get_stock_total_failure_is_200_with_error(self):
        adapter = SwitchableAdapter()
        adapter.fail = True
        _, client = _make_client(adapter)

        response = client.get("/v1/stock/AAPL")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["price"], 0)
        self.assertEqual(
            body["error"],
            "Failed to fetch stock data for AAPL after 3 attempts: API call frequency exceeded",
        )

    def test_get_stock_rejects_non_finite_upstream_price(self):
        session = MagicMock()
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"Global Quote": {"05. price": "Infinity"}}
        session.get.return_value = response
        adapter = AlphaVantageQuoteAdapter("api-key", base_url="https://example.test", session=session)
        app, client = _make_client(adapter)

        response = client.get("/v1/stock/AAPL")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["price"], 0)
        self.assertEqual(
            body["error"],
            "Failed to fetch stock data for AAPL after 3 attempts: Invalid API response format",
        )
        self.assertIsNone(app.state.quote_context.store.last_known("AAPL"))

    def test_trade_signal_buy_below_100_for_simple(self):
        _, client = _make_client(SwitchableAdapter(price=85.0))

        body = client.post("/v1/trade", json={"symbol": "AAPL", "strategy": "simple"}).json()

        self.assertEqual(body["tradeSignal"], "Buy")
        self.assertEqual(body["price"], 85.0)
        self.assertFalse(body["cached"])

    def test_trade_signal_sell_at_or_above_100(self):
        _, client = _make_client(SwitchableAdapter(price=120.0))

        body = client.post("/v1/trade", json={"symbol": "AAPL", "strategy": "simple"}).json()

        self.assertEqual(body["tradeSignal"], "Sell")

    def test_trade_requires_symbol(self):
        _, client = _make_client(SwitchableAdapter())

        response = client.post("/v1/trade", json={"strategy": "simple"})

        self.assertEqual(response.status_code, 422)

    def test_metrics_endpoint_reports_fetch_counters(self):
        _, client = _make_client(SwitchableAdapter())
        client.get("/v1/stock/AAPL")

        metrics = client.get("/v1/metrics/quote").json()

        self.assertEqual(metrics["fetches"], 1)
        self.assertEqual(metrics["live"], 1)
        self.assertEqual(metrics["store_symbols"], 1)
        self.assertEqual(metrics["active_sessions"], 0)


class StreamApiTest(unittest.TestCase):
    def test_stream_pushes_update_and_answers_request_stock(self):
        app, client = _make_client(
            SwitchableAdapter(price=150.23),
            STREAM_POLL_INTERVAL_SEC=60,
            STREAM_KEEPALIVE_INTERVAL_SEC=60,
        )

        with client:
            with client.websocket_connect("/v1/stream?symbol=aapl") as ws:
                first = ws.receive_json()
                self.assertEqual(first["event"], "stockUpdate")
                self.assertEqual(first["data"]["symbol"], "AAPL")
                self.assertEqual(len(app.state.sessions), 1)

                ws.send_json({"event": "requestStock", "data": "msft"})
                pulled = ws.receive_json()
                self.assertEqual(pulled["event"], "stockData")
                self.assertEqual(pulled["data"]["symbol"], "MSFT")

                ws.send_json({"event": "ping"})
                self.assertEqual(ws.receive_json(), {"event": "pong", "data": None})

            deadline = time.monotonic() + 1.0
            while app.state.sessions and time.monotonic() < deadline:
                time.sleep(0.01)
            self.assertEqual(app.state.sessions, {})

    def test_stream_pushes_stock_error_on_total_failure(self):
        adapter = SwitchableAdapter()
        adapter.fail = True
        _, client = _make_client(adapter, STREAM_POLL_INTERVAL_SEC=60, STREAM_KEEPALIVE_INTERVAL_SEC=60)

        with client:
            with client.websocket_connect("/v1/stream") as ws:
                frame = ws.receive_json()

        self.assertEqual(frame["event"], "stockError")
        self.assertEqual(frame["data"]["symbol"], "AAPL")
        self.assertIn("after 3 attempts", frame["data"]["error"])

    def test_stream_emits_keepalive(self):
        _, client = _make_client(
            SwitchableAdapter(),
            STREAM_POLL_INTERVAL_SEC=60,
            STREAM_KEEPALIVE_INTERVAL_SEC=0.05,
        )

        with client:
            with client.websocket_connect("/v1/stream") as ws:
                events = [ws.receive_json()["event"] for _ in range(2)]

        self.assertEqual(events, ["stockUpdate", "keepalive"])


if __name__ == "__main__":
    unittest.main()
