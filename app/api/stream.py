from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.errors import SessionStateError
from app.services.distribution import DistributionSession, new_connection_id

router = APIRouter()


class WebSocketConnection:
    """Push connection over a Starlette websocket, framed as {"event", "data"}."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.websocket = websocket
        self.connection_id = connection_id or new_connection_id()
        self.closed = False

    @property
    def is_open(self) -> bool:
        if self.closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_event(self, event: str, data: Any = None) -> None:
        await self.websocket.send_text(json.dumps({"event": event, "data": data}))


def _parse_frame(raw: str) -> tuple[str | None, Any]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None, None
    if not isinstance(frame, dict):
        return None, None
    return frame.get("event"), frame.get("data")


@router.websocket('/stream')
async def stream(websocket: WebSocket, symbol: str | None = None):
    app = websocket.app
    context = app.state.quote_context
    settings = context.settings

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    session = DistributionSession(
        context.fetcher,
        poll_interval_sec=settings.STREAM_POLL_INTERVAL_SEC,
        keepalive_interval_sec=settings.STREAM_KEEPALIVE_INTERVAL_SEC,
    )
    app.state.sessions[connection.connection_id] = session
    print(f"[STREAM][client_connected] connection={connection.connection_id}", flush=True)

    reason = "client disconnect"
    try:
        session.start(connection, symbol or settings.STREAM_SYMBOL)
        while True:
            event, data = _parse_frame(await websocket.receive_text())
            if event == "requestStock" and isinstance(data, str) and data.strip():
                await session.request_quote(connection, data)
            elif event == "ping":
                await connection.send_event("pong")
            else:
                print(
                    f"[STREAM][frame_skip] connection={connection.connection_id} event={event}",
                    flush=True,
                )
    except WebSocketDisconnect as exc:
        reason = f"code={exc.code}"
    except SessionStateError as exc:
        reason = str(exc)
    finally:
        connection.closed = True
        await session.stop()
        app.state.sessions.pop(connection.connection_id, None)
        print(
            f"[STREAM][client_disconnected] connection={connection.connection_id} reason={reason}",
            flush=True,
        )
