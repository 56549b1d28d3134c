from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import router
from app.api.stream import router as stream_router
from app.config.settings import get_settings
from app.context import build_context


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.quote_context is None:
        app.state.quote_context = build_context(app.state.get_settings())
    print("[STREAM][server_start]", flush=True)

    try:
        yield
    finally:
        for session in list(app.state.sessions.values()):
            await session.stop()
        app.state.sessions.clear()
        print("[STREAM][server_stop]", flush=True)


def create_app(quote_context=None) -> FastAPI:
    app = FastAPI(title="Quote Relay", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix="/v1")
    app.include_router(stream_router, prefix="/v1")

    # NOTE: context is built lazily so app import does not require env during tests.
    app.state.get_settings = get_settings
    app.state.quote_context = quote_context
    app.state.sessions = {}
    return app


app = create_app()
