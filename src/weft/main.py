from __future__ import annotations

from typing import Optional

import uvicorn

from weft.config import Settings, load_settings
from weft.engine.manager import Engine
from weft.logging import configure_logging, get_logger


def serve(engine: Engine, settings: Optional[Settings] = None) -> None:
    """
    Serves the host router for an already-populated engine. Blocks until
    the server exits; the app lifespan starts and stops the engine loop.
    """
    from weft.api.app import create_app

    settings = settings or engine.settings
    uvicorn.run(
        create_app(engine),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


def main() -> int:
    """
    Programmatic entrypoint:
      python -m weft.main

    Serves an engine built from env settings. Units restored from
    WEFT_STATE_PATH are only visible once a host registers them, so real
    deployments build their engine and call `serve(engine)` instead.
    """
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    engine = Engine.from_settings(settings)
    log.info("Starting weft host on %s:%d (state: %s)", settings.host, settings.port, settings.state_path)
    serve(engine, settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
