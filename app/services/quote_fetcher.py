from __future__ import annotations

import time
from typing import Callable, Protocol

from app.errors import FetchExhausted, UpstreamError, UpstreamErrorKind
from app.schemas.quote import Quote, QuoteOrigin
from app.services.fallback_store import FallbackStore


class QuoteAdapter(Protocol):
    def fetch(self, symbol: str) -> Quote: ...


class RetryPolicy:
    """Backoff classification for failed attempts.

    Every error kind backs off the same way today. A throttle-specific delay
    belongs in ``delay_for``.
    """

    def __init__(self, *, base: float = 2.0, unit_sec: float = 1.0) -> None:
        self.base = base
        self.unit_sec = unit_sec

    def classify(self, exc: Exception) -> UpstreamError:
        if isinstance(exc, UpstreamError):
            return exc
        if isinstance(exc, ValueError):
            # adapter produced a value that does not validate as a quote
            return UpstreamError(UpstreamErrorKind.MALFORMED, "Invalid API response format")
        return UpstreamError(UpstreamErrorKind.TRANSPORT, str(exc) or type(exc).__name__)

    def delay_for(self, attempt: int, error: UpstreamError) -> float:
        return (self.base**attempt) * self.unit_sec


class ResilientQuoteFetcher:
    """Retry/backoff over one adapter with last-known-value fallback.

    ``fetch`` never raises: upstream and store failures end up in the
    returned Quote.
    """

    def __init__(
        self,
        *,
        adapter: QuoteAdapter,
        store: FallbackStore,
        policy: RetryPolicy | None = None,
        max_attempts: int = 3,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.adapter = adapter
        self.store = store
        self.policy = policy or RetryPolicy()
        self.max_attempts = max_attempts
        self.sleep_fn = sleep_fn
        self.clock = clock
        self._metrics = {
            "fetches": 0,
            "live": 0,
            "cached": 0,
            "failed": 0,
            "upstream_errors": 0,
            "rate_limited": 0,
        }

    def _record_success(self, quote: Quote) -> None:
        try:
            self.store.record(quote.symbol, quote.price, quote.observed_at)
        except Exception as exc:
            print(f"[QUOTE][store_write_error] symbol={quote.symbol} error={exc}", flush=True)

    def _resolve_exhausted(self, exhausted: FetchExhausted) -> Quote:
        symbol = exhausted.symbol
        try:
            record = self.store.last_known(symbol)
        except Exception as exc:
            print(f"[QUOTE][store_read_error] symbol={symbol} error={exc}", flush=True)
            record = None

        if record is not None:
            self._metrics["cached"] += 1
            print(
                f"[QUOTE][fallback_cached] symbol={symbol} price={record.price} "
                f"observed_at={record.observed_at}",
                flush=True,
            )
            return Quote(
                symbol=symbol,
                price=record.price,
                observed_at=record.observed_at,
                origin=QuoteOrigin.CACHED,
            )

        self._metrics["failed"] += 1
        print(f"[QUOTE][fetch_failed] symbol={symbol} attempts={exhausted.attempts}", flush=True)
        return Quote.failure(symbol, str(exhausted), observed_at=self.clock())

    def fetch(self, symbol: str, max_attempts: int | None = None) -> Quote:
        symbol = symbol.strip().upper()
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        attempts = max(int(attempts), 1)
        self._metrics["fetches"] += 1

        last_error: UpstreamError | None = None
        for attempt in range(1, attempts + 1):
            try:
                quote = self.adapter.fetch(symbol)
            except Exception as exc:
                last_error = self.policy.classify(exc)
                self._metrics["upstream_errors"] += 1
                if last_error.rate_limited:
                    self._metrics["rate_limited"] += 1
                print(
                    f"[QUOTE][attempt_failed] symbol={symbol} attempt={attempt}/{attempts} "
                    f"kind={last_error.kind.value} error={last_error.message}",
                    flush=True,
                )
                if attempt == attempts:
                    break
                self.sleep_fn(self.policy.delay_for(attempt, last_error))
                continue

            quote = quote.model_copy(update={"origin": QuoteOrigin.LIVE, "failure_reason": None})
            self._record_success(quote)
            self._metrics["live"] += 1
            return quote

        message = last_error.message if last_error is not None else "unknown error"
        return self._resolve_exhausted(FetchExhausted(symbol, attempts, message))

    def metrics(self) -> dict[str, int]:
        return dict(self._metrics)
