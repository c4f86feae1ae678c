# tests/conftest.py
from contextlib import contextmanager
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from weft.api import create_app
from weft.config import Settings
from weft.domain.models import Event
from weft.engine import Engine, EventBus, ManualClock, ReactiveRegistry

FAST_SETTINGS = Settings(
    pool_size=2,
    pool_tick_ms=5,
    loop_interval_ms=20,
    watcher_interval_ms=60_000,
    log_level="warning",
)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def events(bus: EventBus) -> list[Event]:
    """
    Every event published on `bus`, in publish order.
    """
    received: list[Event] = []
    bus.subscribe_all(received.append)
    return received


@pytest.fixture()
def registry(bus: EventBus, clock: ManualClock) -> ReactiveRegistry:
    return ReactiveRegistry(bus, clock=clock)


@pytest.fixture()
def engine() -> Iterator[Engine]:
    """
    Engine on the real clock with a fast loop. Stopped on teardown.
    """
    eng = Engine(FAST_SETTINGS)
    try:
        yield eng
    finally:
        eng.stop(timeout_s=2.0)


@pytest.fixture()
def milestones(engine: Engine) -> list[tuple[str, dict]]:
    received: list[tuple[str, dict]] = []
    engine.on_milestone(lambda milestone_id, payload: received.append((milestone_id, payload)))
    return received


@contextmanager
def _client_ctx(engine: Engine, *, start_engine: bool) -> Iterator[TestClient]:
    app = create_app(engine, start_engine=start_engine)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def client(engine: Engine) -> Iterator[TestClient]:
    """
    Host router over `engine`; the background loop is not started so tests
    drive runs explicitly.
    """
    with _client_ctx(engine, start_engine=False) as c:
        yield c


@pytest.fixture()
def client_factory(engine: Engine):
    """
    Usage:
      with client_factory(start_engine=True) as client:
          ...
    """

    def _make(*, start_engine: bool = False):
        return _client_ctx(engine, start_engine=start_engine)

    return _make
