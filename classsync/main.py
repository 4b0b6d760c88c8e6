from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from classsync.api.decks import router as decks_router
from classsync.api.sessions import router as sessions_router
from classsync.api.ws import router as ws_router
from classsync.core.app_context import AppContext
from classsync.core.errors import InvalidPayload, NotPermitted, SessionNotFound, SyncError
from classsync.core.logging_config import configure_logging
from classsync.core.settings import settings

_STATUS_BY_ERROR: dict[type[SyncError], int] = {
    SessionNotFound: 404,
    NotPermitted: 403,
    InvalidPayload: 422,
}


async def _sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"ok": False, **exc.to_payload()})


def create_app(ctx_factory: Callable[[], AppContext] | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.ctx = ctx_factory() if ctx_factory is not None else AppContext()
        await app.state.ctx.start_background()
        yield
        await app.state.ctx.shutdown()

    app = FastAPI(title="Classroom Sync", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(SyncError, _sync_error_handler)
    app.include_router(decks_router, prefix="/api/v1")
    app.include_router(sessions_router, prefix="/api/v1")
    app.include_router(ws_router, prefix="/api/v1")

    @app.get("/health")
    async def health() -> dict:
        return {"ok": True}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
