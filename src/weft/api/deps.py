# src/weft/api/deps.py
from __future__ import annotations

from fastapi import Request

from weft.engine.manager import Engine


def get_engine(request: Request) -> Engine:
    """
    Per-request access to the engine stored on app.state by create_app.
    """
    return request.app.state.engine  # type: ignore[attr-defined]
