# src/weft/api/__init__.py
"""
Optional HTTP integration for hosts that run FastAPI.

- app: create_app(engine) + lifespan hooks
- routes: REST endpoints over the engine
- deps: dependency injection helpers
"""

from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]
