# src/weft/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from weft.engine.manager import Engine
from weft.logging import get_logger

from .routes import router

_LOG = get_logger(__name__)


def create_app(engine: Optional[Engine] = None, *, start_engine: bool = True) -> FastAPI:
    """
    Builds a FastAPI app around an engine (one from env settings by default).

    The lifespan starts the engine's background loop on startup (unless
    `start_engine` is False) and stops it on shutdown.
    """
    engine = engine if engine is not None else Engine.from_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.engine = engine
        if start_engine:
            engine.start()
        _LOG.info("Startup complete.")
        try:
            yield
        finally:
            if start_engine:
                engine.stop(timeout_s=5.0)
            _LOG.info("Shutdown complete.")

    app = FastAPI(
        title="weft",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.include_router(router)
    return app
