from __future__ import annotations

import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, Optional

from app.client.transports import TransportOptions
from app.errors import ReconnectCeilingReached

CEILING_MESSAGE = "Maximum reconnection attempts reached. Please restart the connection manually."


class ConnectionStatus(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class ReconnectionController:
    """Client side of one logical push connection.

    Transitions happen only in response to transport events or the user
    actions ``connect`` / ``manual_reconnect`` / ``close``. After
    ``max_reconnect_attempts`` connect errors the transport is force-closed and
    nothing reconnects until ``manual_reconnect``.
    """

    def __init__(
        self,
        transport_factory: Callable[[TransportOptions], Any],
        *,
        max_reconnect_attempts: int = 5,
        reconnection_delay_sec: float = 1.0,
        timeout_sec: float = 10.0,
        transports: tuple[str, ...] = ("websocket", "polling"),
        ping_interval_sec: float = 25.0,
        window_size: int = 10,
        on_change: Optional[Callable[["ReconnectionController"], None]] = None,
    ) -> None:
        self._transport_factory = transport_factory
        self.max_reconnect_attempts = max_reconnect_attempts
        self.options = TransportOptions(
            reconnection=True,
            reconnection_attempts=max_reconnect_attempts,
            reconnection_delay_sec=reconnection_delay_sec,
            timeout_sec=timeout_sec,
            transports=tuple(transports),
        )
        self.ping_interval_sec = ping_interval_sec
        self._on_change = on_change
        self._lock = threading.RLock()

        self.status = ConnectionStatus.DISCONNECTED
        self.reconnect_attempts = 0
        self.display_window: deque[dict] = deque(maxlen=window_size)
        self.error: str | None = None
        self.terminal_error: ReconnectCeilingReached | None = None
        self.pings_sent = 0
        self._transport: Any = None
        self._ping_stop = threading.Event()
        self._ping_thread: threading.Thread | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    @property
    def terminal(self) -> bool:
        return self.terminal_error is not None

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "status": self.status.value,
                "reconnect_attempts": self.reconnect_attempts,
                "error": self.error,
                "terminal": self.terminal,
                "quotes": list(self.display_window),
            }

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)

    def _bind(self, transport: Any) -> None:
        def guarded(handler: Callable[..., None]) -> Callable[..., None]:
            def _handler(*args: Any) -> None:
                # events from a torn-down transport must not touch current state
                with self._lock:
                    if transport is not self._transport:
                        return
                    handler(*args)

            return _handler

        transport.on("connect", guarded(self.on_connected))
        transport.on("connect_error", guarded(self.on_connect_error))
        transport.on("disconnect", guarded(self.on_disconnect))
        transport.on("reconnect_failed", guarded(self.on_reconnect_failed))
        transport.on("stockUpdate", guarded(self.on_quote))
        transport.on("stockData", guarded(self.on_quote))
        transport.on("stockError", guarded(self.on_stock_error))

    def _teardown_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        transport.remove_all_listeners()
        transport.close()

    def connect(self) -> None:
        with self._lock:
            if self._transport is not None and self.status != ConnectionStatus.DISCONNECTED:
                return
            if self.terminal:
                return
            self._teardown_transport()
            self.status = ConnectionStatus.CONNECTING
            transport = self._transport_factory(self.options)
            self._transport = transport
            self._bind(transport)
            print(
                f"[CLIENT][connecting] attempts={self.options.reconnection_attempts} "
                f"delay_sec={self.options.reconnection_delay_sec} timeout_sec={self.options.timeout_sec} "
                f"transports={','.join(self.options.transports)}",
                flush=True,
            )
        self._notify()
        transport.open()
        self.start_ping_loop()

    def on_connected(self, *_: Any) -> None:
        with self._lock:
            self.status = ConnectionStatus.CONNECTED
            self.reconnect_attempts = 0
            self.error = None
            print("[CLIENT][connected]", flush=True)
        self._notify()

    def on_connect_error(self, err: Any = None) -> None:
        with self._lock:
            if self.terminal or self.status == ConnectionStatus.CONNECTED:
                return
            message = str(err) if err is not None else "unknown error"
            self.status = ConnectionStatus.DISCONNECTED
            self.reconnect_attempts += 1
            self.error = f"Connection error: {message}"
            print(
                f"[CLIENT][connect_error] attempt={self.reconnect_attempts}/{self.max_reconnect_attempts} "
                f"error={message}",
                flush=True,
            )
            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self._reach_ceiling()
        self._notify()

    def _reach_ceiling(self) -> None:
        self._teardown_transport()
        self.status = ConnectionStatus.DISCONNECTED
        self.terminal_error = ReconnectCeilingReached(self.reconnect_attempts)
        self.error = CEILING_MESSAGE
        print(f"[CLIENT][reconnect_ceiling] attempts={self.reconnect_attempts}", flush=True)

    def on_reconnect_failed(self, *_: Any) -> None:
        with self._lock:
            if self.terminal:
                return
            self._reach_ceiling()
        self._notify()

    def on_disconnect(self, reason: Any = None) -> None:
        with self._lock:
            if self.status == ConnectionStatus.DISCONNECTED:
                return
            self.status = ConnectionStatus.DISCONNECTED
            print(f"[CLIENT][disconnected] reason={reason}", flush=True)
        self._notify()

    def on_quote(self, payload: Any = None) -> None:
        if not isinstance(payload, dict):
            return
        with self._lock:
            self.display_window.append(payload)
        self._notify()

    def on_stock_error(self, payload: Any = None) -> None:
        detail = payload.get("error") if isinstance(payload, dict) else payload
        with self._lock:
            self.error = f"Stock error: {detail}"
        self._notify()

    def dismiss_error(self) -> None:
        with self._lock:
            if self.terminal:
                return
            self.error = None
        self._notify()

    def manual_reconnect(self) -> None:
        with self._lock:
            self._teardown_transport()
            self.status = ConnectionStatus.DISCONNECTED
            self.reconnect_attempts = 0
            self.terminal_error = None
            self.error = None
            print("[CLIENT][manual_reconnect]", flush=True)
        self.connect()

    def request_stock(self, symbol: str) -> bool:
        with self._lock:
            transport = self._transport
            if transport is None or not self.is_connected:
                return False
        transport.emit("requestStock", symbol.strip().upper())
        return True

    def send_ping(self) -> bool:
        with self._lock:
            transport = self._transport
            if transport is None or not self.is_connected:
                return False
            self.pings_sent += 1
        transport.emit("ping")
        return True

    def _ping_loop(self) -> None:
        while not self._ping_stop.wait(self.ping_interval_sec):
            self.send_ping()

    def start_ping_loop(self) -> None:
        if self._ping_thread and self._ping_thread.is_alive():
            return
        self._ping_stop.clear()
        self._ping_thread = threading.Thread(target=self._ping_loop, daemon=True, name="quote-client-ping")
        self._ping_thread.start()

    def close(self) -> None:
        self._ping_stop.set()
        if self._ping_thread and self._ping_thread.is_alive():
            self._ping_thread.join(timeout=1.0)
        with self._lock:
            self._teardown_transport()
            self.status = ConnectionStatus.DISCONNECTED
        self._notify()
