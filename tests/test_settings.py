import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from app.config.settings import Settings
from app.context import build_context
from app.integrations.alpha_vantage import AlphaVantageQuoteAdapter, DemoQuoteAdapter


class TestSettings(unittest.TestCase):
    def test_defaults_when_env_is_empty(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.QUOTE_API_KEY, "")
        self.assertEqual(settings.QUOTE_MAX_ATTEMPTS, 3)
        self.assertEqual(settings.STREAM_SYMBOL, "AAPL")
        self.assertEqual(settings.STREAM_POLL_INTERVAL_SEC, 60.0)
        self.assertEqual(settings.STREAM_KEEPALIVE_INTERVAL_SEC, 25.0)
        self.assertEqual(settings.QUOTE_FALLBACK_PATH, "data/fallback_quotes.jsonl")

    def test_env_overrides_are_parsed(self):
        env = {
            "QUOTE_API_KEY": " key-123 ",
            "QUOTE_MAX_ATTEMPTS": "5",
            "QUOTE_BACKOFF_BASE_SEC": "0.5",
            "STREAM_SYMBOL": " msft ",
            "QUOTE_FALLBACK_PATH": "",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.QUOTE_API_KEY, "key-123")
        self.assertEqual(settings.QUOTE_MAX_ATTEMPTS, 5)
        self.assertEqual(settings.QUOTE_BACKOFF_BASE_SEC, 0.5)
        self.assertEqual(settings.STREAM_SYMBOL, "MSFT")
        self.assertIsNone(settings.QUOTE_FALLBACK_PATH)

    def test_invalid_attempts_fail_validation(self):
        with patch.dict(os.environ, {"QUOTE_MAX_ATTEMPTS": "0"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()

    def test_context_uses_demo_adapter_without_api_key(self):
        context = build_context(Settings(QUOTE_FALLBACK_PATH=None))

        self.assertIsInstance(context.adapter, DemoQuoteAdapter)
        self.assertIs(context.fetcher.store, context.store)
        self.assertEqual(context.fetcher.fetch("aapl").price, 150.0)

    def test_context_uses_alpha_vantage_with_api_key(self):
        context = build_context(
            Settings(QUOTE_API_KEY="key", QUOTE_FALLBACK_PATH=None, QUOTE_MAX_ATTEMPTS=4, QUOTE_TIMEOUT_SEC=2.5)
        )

        self.assertIsInstance(context.adapter, AlphaVantageQuoteAdapter)
        self.assertEqual(context.adapter.timeout_sec, 2.5)
        self.assertEqual(context.fetcher.max_attempts, 4)


if __name__ == "__main__":
    unittest.main()
