from __future__ import annotations

from dataclasses import dataclass

from app.config.settings import Settings
from app.integrations.alpha_vantage import AlphaVantageQuoteAdapter, DemoQuoteAdapter
from app.services.fallback_store import FallbackStore
from app.services.quote_fetcher import QuoteAdapter, ResilientQuoteFetcher, RetryPolicy


@dataclass
class QuoteContext:
    """Adapter and store handles shared by the routes and every stream session."""

    adapter: QuoteAdapter
    store: FallbackStore
    fetcher: ResilientQuoteFetcher
    settings: Settings


def build_context(settings: Settings) -> QuoteContext:
    if settings.QUOTE_API_KEY:
        adapter: QuoteAdapter = AlphaVantageQuoteAdapter(
            settings.QUOTE_API_KEY,
            base_url=settings.QUOTE_API_BASE_URL,
            timeout_sec=settings.QUOTE_TIMEOUT_SEC,
        )
        print("[QUOTE][adapter] source=alphavantage", flush=True)
    else:
        adapter = DemoQuoteAdapter()
        print("[QUOTE][adapter] source=demo", flush=True)

    store = FallbackStore(settings.QUOTE_FALLBACK_PATH)
    fetcher = ResilientQuoteFetcher(
        adapter=adapter,
        store=store,
        policy=RetryPolicy(unit_sec=settings.QUOTE_BACKOFF_BASE_SEC),
        max_attempts=settings.QUOTE_MAX_ATTEMPTS,
    )
    return QuoteContext(adapter=adapter, store=store, fetcher=fetcher, settings=settings)
