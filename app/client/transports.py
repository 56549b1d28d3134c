from __future__ import annotations

import json
import socket
import ssl
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import urlparse

import requests


@dataclass(frozen=True)
class TransportOptions:
    reconnection: bool = True
    reconnection_attempts: int = 5
    reconnection_delay_sec: float = 1.0
    timeout_sec: float = 10.0
    transports: tuple[str, ...] = ("websocket", "polling")


class Channel(Protocol):
    name: str

    def run(self, *, on_open: Callable[[], None], on_event: Callable[[str, Any], None]) -> None: ...

    def send(self, event: str, data: Any = None) -> None: ...

    def close(self) -> None: ...


def _decode_frame(raw: Any) -> tuple[str | None, Any]:
    try:
        frame = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return None, None
    if not isinstance(frame, dict):
        return None, None
    return frame.get("event"), frame.get("data")


class WebSocketChannel:
    """Push channel over websocket-client's WebSocketApp."""

    name = "websocket"

    def __init__(
        self,
        url: str,
        *,
        timeout_sec: float = 10.0,
        websocket_app_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.url = url
        self.timeout_sec = timeout_sec
        self._websocket_app_factory = websocket_app_factory or self._default_websocket_app_factory
        self._app: Any = None
        self.last_error: str | None = None

    def _open_socket(self) -> socket.socket:
        parsed = urlparse(self.url)
        secure = parsed.scheme == "wss"
        host = parsed.hostname or ""
        port = parsed.port or (443 if secure else 80)
        # per-connection timeout bounds the TCP connect and handshake reads
        sock = socket.create_connection((host, port), timeout=self.timeout_sec)
        if not secure:
            return sock
        try:
            return ssl.create_default_context().wrap_socket(sock, server_hostname=host)
        except OSError:
            sock.close()
            raise

    def _default_websocket_app_factory(self, *args: Any, **kwargs: Any) -> Any:
        import websocket

        return websocket.WebSocketApp(*args, socket=self._open_socket(), **kwargs)

    def run(self, *, on_open: Callable[[], None], on_event: Callable[[str, Any], None]) -> None:
        state = {"opened": False}

        def _on_open(_: Any) -> None:
            state["opened"] = True
            on_open()

        def _on_message(_: Any, raw_message: Any) -> None:
            event, data = _decode_frame(raw_message)
            if event is None:
                print("[CLIENT][ws_message_skip] reason=not_a_frame", flush=True)
                return
            on_event(event, data)

        def _on_error(_: Any, error: Any) -> None:
            self.last_error = str(error)
            print(f"[CLIENT][ws_error] {self.last_error}", flush=True)

        def _on_close(_: Any, code: Any, reason: Any) -> None:
            print(f"[CLIENT][ws_close] code={code} reason={reason}", flush=True)

        try:
            self._app = self._websocket_app_factory(
                self.url,
                on_open=_on_open,
                on_message=_on_message,
                on_error=_on_error,
                on_close=_on_close,
            )
        except OSError as exc:
            self.last_error = str(exc) or type(exc).__name__
            print(f"[CLIENT][ws_error] {self.last_error}", flush=True)
            raise ConnectionError(self.last_error) from exc
        self._app.run_forever()
        if not state["opened"]:
            raise ConnectionError(self.last_error or "ws_open_not_confirmed")

    def send(self, event: str, data: Any = None) -> None:
        if self._app is None:
            return
        self._app.send(json.dumps({"event": event, "data": data}))

    def close(self) -> None:
        if self._app is not None:
            self._app.close()


class PollingChannel:
    """HTTP long-interval polling of the quote route, used when websockets are unavailable."""

    name = "polling"

    def __init__(
        self,
        base_url: str,
        symbol: str,
        *,
        timeout_sec: float = 10.0,
        interval_sec: float = 60.0,
        session: Optional[Any] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.symbol = symbol
        self.timeout_sec = timeout_sec
        self.interval_sec = interval_sec
        self.session = session or requests
        self._stop_event = threading.Event()
        self._on_event: Callable[[str, Any], None] | None = None

    def _get_stock(self, symbol: str) -> Dict[str, Any]:
        response = self.session.get(f"{self.base_url}/v1/stock/{symbol}", timeout=self.timeout_sec)
        response.raise_for_status()
        return response.json()

    def _dispatch_quote(self, event: str, payload: Dict[str, Any]) -> None:
        if self._on_event is None:
            return
        if payload.get("error"):
            self._on_event("stockError", {
                "symbol": payload.get("symbol"),
                "error": payload.get("error"),
                "timestamp": payload.get("timestamp"),
            })
            return
        self._on_event(event, payload)

    def run(self, *, on_open: Callable[[], None], on_event: Callable[[str, Any], None]) -> None:
        self._stop_event.clear()
        self._on_event = on_event
        try:
            first = self._get_stock(self.symbol)
        except (requests.RequestException, ValueError) as exc:
            raise ConnectionError(str(exc)) from exc

        on_open()
        self._dispatch_quote("stockUpdate", first)
        while not self._stop_event.wait(self.interval_sec):
            try:
                payload = self._get_stock(self.symbol)
            except (requests.RequestException, ValueError) as exc:
                print(f"[CLIENT][poll_error] {exc}", flush=True)
                return
            self._dispatch_quote("stockUpdate", payload)

    def send(self, event: str, data: Any = None) -> None:
        if event != "requestStock" or not data:
            return
        try:
            payload = self._get_stock(str(data))
        except (requests.RequestException, ValueError) as exc:
            print(f"[CLIENT][poll_request_error] symbol={data} error={exc}", flush=True)
            return
        self._dispatch_quote("stockData", payload)

    def close(self) -> None:
        self._stop_event.set()


class StreamTransport:
    """Event-emitting connection that tries each channel in order per attempt.

    Retries on its own up to ``reconnection_attempts`` with a fixed delay.
    Emits ``connect``, ``connect_error``, ``disconnect``, ``reconnect_failed``
    and every server event to registered listeners.
    """

    def __init__(
        self,
        options: TransportOptions,
        channel_factories: Dict[str, Callable[[], Channel]],
    ) -> None:
        self.options = options
        self._channel_factories = channel_factories
        self._listeners: dict[str, list[Callable[..., None]]] = {}
        self._channel: Channel | None = None
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None
        self.connected = False
        self.attempts = 0

    def on(self, event: str, handler: Callable[..., None]) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def _dispatch(self, event: str, data: Any = None) -> None:
        for handler in list(self._listeners.get(event, [])):
            if data is None:
                handler()
            else:
                handler(data)

    def open(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._closed.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="quote-stream-transport")
        self._thread.start()

    def close(self) -> None:
        self._closed.set()
        channel = self._channel
        if channel is not None:
            channel.close()
        self.connected = False

    def emit(self, event: str, data: Any = None) -> None:
        channel = self._channel
        if channel is None or not self.connected:
            return
        channel.send(event, data)

    def _on_open(self) -> None:
        self.connected = True
        self.attempts = 0
        self._dispatch("connect")

    def _try_channels(self) -> tuple[bool, str]:
        last_error = "no transport available"
        for name in self.options.transports:
            factory = self._channel_factories.get(name)
            if factory is None or self._closed.is_set():
                continue
            channel = factory()
            self._channel = channel
            opened = {"value": False}

            def _opened() -> None:
                opened["value"] = True
                self._on_open()

            try:
                channel.run(on_open=_opened, on_event=self._dispatch)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                print(f"[CLIENT][transport_failed] transport={name} error={last_error}", flush=True)
                if opened["value"]:
                    return True, last_error
                continue
            if opened["value"]:
                return True, ""
        return False, last_error

    def _run(self) -> None:
        while not self._closed.is_set():
            opened, last_error = self._try_channels()
            if opened:
                self.connected = False
                if self._closed.is_set():
                    return
                self._dispatch("disconnect", "transport close")
            else:
                if self._closed.is_set():
                    return
                self.attempts += 1
                self._dispatch("connect_error", ConnectionError(last_error))
                if not self.options.reconnection or self.attempts > self.options.reconnection_attempts:
                    self._dispatch("reconnect_failed")
                    return
            if self._closed.wait(self.options.reconnection_delay_sec):
                return


def build_stream_transport(
    server_url: str,
    symbol: str,
    options: TransportOptions,
    *,
    websocket_app_factory: Optional[Callable[..., Any]] = None,
    session: Optional[Any] = None,
    poll_interval_sec: float = 60.0,
) -> StreamTransport:
    http_url = server_url.rstrip("/")
    ws_url = http_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
    factories: Dict[str, Callable[[], Channel]] = {
        "websocket": lambda: WebSocketChannel(
            f"{ws_url}/v1/stream?symbol={symbol}",
            timeout_sec=options.timeout_sec,
            websocket_app_factory=websocket_app_factory,
        ),
        "polling": lambda: PollingChannel(
            http_url,
            symbol,
            timeout_sec=options.timeout_sec,
            interval_sec=poll_interval_sec,
            session=session,
        ),
    }
    return StreamTransport(options, factories)
