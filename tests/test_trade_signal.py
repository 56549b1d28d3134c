import unittest

from app.schemas.quote import Quote, QuoteOrigin
from app.services.trade_signal import build_trade_response, derive_trade_signal


class TestTradeSignal(unittest.TestCase):
    def test_simple_strategy_below_100_buys(self):
        self.assertEqual(derive_trade_signal(85.0, "simple"), "Buy")

    def test_simple_strategy_at_or_above_100_sells(self):
        self.assertEqual(derive_trade_signal(120.0, "simple"), "Sell")
        self.assertEqual(derive_trade_signal(100.0, "simple"), "Sell")

    def test_other_strategies_always_sell(self):
        self.assertEqual(derive_trade_signal(85.0, "momentum"), "Sell")

    def test_response_carries_quote_fields_and_cached_flag(self):
        quote = Quote(symbol="AAPL", price=85.0, observed_at=1700000000.0, origin=QuoteOrigin.CACHED)

        body = build_trade_response(quote, "simple")

        self.assertEqual(body["symbol"], "AAPL")
        self.assertEqual(body["price"], 85.0)
        self.assertEqual(body["timestamp"], "2023-11-14T22:13:20Z")
        self.assertEqual(body["tradeSignal"], "Buy")
        self.assertTrue(body["cached"])
        self.assertIsNone(body["error"])


if __name__ == "__main__":
    unittest.main()
