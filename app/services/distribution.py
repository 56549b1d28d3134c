from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import Any, Protocol

from app.errors import SessionStateError
from app.schemas.quote import Quote, to_iso
from app.services.quote_fetcher import ResilientQuoteFetcher

STOCK_UPDATE = "stockUpdate"
STOCK_ERROR = "stockError"
STOCK_DATA = "stockData"
KEEPALIVE = "keepalive"


class Connection(Protocol):
    connection_id: str

    @property
    def is_open(self) -> bool: ...

    async def send_event(self, event: str, data: Any = None) -> None: ...


class SessionState(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    TERMINATED = "TERMINATED"


def error_payload(quote: Quote) -> dict:
    return {
        "symbol": quote.symbol,
        "error": quote.failure_reason,
        "timestamp": to_iso(quote.observed_at),
    }


class DistributionSession:
    """Quote and keepalive cadences bound to one push connection.

    IDLE -> start() -> ACTIVE -> stop() -> TERMINATED. Both cadences run as
    separate tasks so a fetch stuck in backoff never delays the keepalive.
    """

    def __init__(
        self,
        fetcher: ResilientQuoteFetcher,
        *,
        poll_interval_sec: float = 60.0,
        keepalive_interval_sec: float = 25.0,
    ) -> None:
        self.fetcher = fetcher
        self.poll_interval_sec = poll_interval_sec
        self.keepalive_interval_sec = keepalive_interval_sec
        self.state = SessionState.IDLE
        self.connection: Connection | None = None
        self.symbol: str | None = None
        self._tasks: set[asyncio.Task] = set()
        self.pushes = 0

    @property
    def connection_id(self) -> str | None:
        return self.connection.connection_id if self.connection else None

    @property
    def active_tasks(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def _push(self, event: str, data: Any = None) -> bool:
        connection = self.connection
        if connection is None or self.state != SessionState.ACTIVE or not connection.is_open:
            return False
        try:
            await connection.send_event(event, data)
        except Exception as exc:
            # a transport closing underneath a push is not an error for the session
            print(
                f"[STREAM][push_skip] connection={connection.connection_id} event={event} error={exc}",
                flush=True,
            )
            return False
        self.pushes += 1
        return True

    async def _fetch(self, symbol: str) -> Quote:
        return await asyncio.to_thread(self.fetcher.fetch, symbol)

    async def _quote_tick(self, symbol: str) -> None:
        quote = await self._fetch(symbol)
        if quote.is_failure:
            await self._push(STOCK_ERROR, error_payload(quote))
        else:
            await self._push(STOCK_UPDATE, quote.to_payload())

    async def _quote_loop(self, symbol: str) -> None:
        # first tick is immediate, later ticks follow the cadence
        while True:
            await self._quote_tick(symbol)
            await asyncio.sleep(self.poll_interval_sec)

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval_sec)
            await self._push(KEEPALIVE)

    def start(self, connection: Connection, symbol: str) -> None:
        if self.state != SessionState.IDLE:
            raise SessionStateError(f"cannot start session in state {self.state.value}")
        self.connection = connection
        self.symbol = symbol.strip().upper()
        self.state = SessionState.ACTIVE
        cid = connection.connection_id
        self._tasks = {
            asyncio.create_task(self._quote_loop(self.symbol), name=f"quote-cadence-{cid}"),
            asyncio.create_task(self._keepalive_loop(), name=f"keepalive-cadence-{cid}"),
        }
        print(
            f"[STREAM][session_start] connection={cid} symbol={self.symbol} "
            f"poll_interval_sec={self.poll_interval_sec} keepalive_interval_sec={self.keepalive_interval_sec}",
            flush=True,
        )

    async def stop(self) -> None:
        if self.state == SessionState.TERMINATED:
            return
        self.state = SessionState.TERMINATED
        tasks, self._tasks = self._tasks, set()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        print(f"[STREAM][session_stop] connection={self.connection_id} pushes={self.pushes}", flush=True)

    async def request_quote(self, connection: Connection, symbol: str) -> Quote:
        if self.state != SessionState.ACTIVE:
            raise SessionStateError(f"request_quote requires ACTIVE session, got {self.state.value}")
        if connection is not self.connection:
            raise SessionStateError("connection does not own this session")
        quote = await self._fetch(symbol)
        if quote.is_failure:
            await self._push(STOCK_ERROR, error_payload(quote))
        else:
            await self._push(STOCK_DATA, quote.to_payload())
        return quote


def new_connection_id() -> str:
    return f"conn-{uuid.uuid4().hex[:12]}"
