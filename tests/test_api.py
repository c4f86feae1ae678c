# tests/test_api.py
from fastapi.testclient import TestClient

from weft.domain.models import Process, Worker
from weft.engine import Engine


def _register(engine: Engine) -> None:
    engine.register_unit(Worker(id="solo", name="Solo", run=lambda: "ok"))
    engine.register_unit(Process(id="p", name="P", workers=[
        Worker(id="a", name="A", run=lambda: 1),
        Worker(id="b", name="B", run=lambda: 2, depends_on=["a"]),
    ]))


def test_healthz(client: TestClient):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "running": False}


def test_list_and_get_units(engine: Engine, client: TestClient):
    _register(engine)

    body = client.get("/units").json()
    assert body["total"] == 4
    assert [u["id"] for u in body["units"]] == ["solo", "p", "a", "b"]

    r = client.get("/units/b")
    assert r.status_code == 200, r.text
    assert r.json()["depends_on"] == ["a"]
    assert r.json()["process_id"] == "p"


def test_unknown_unit_is_404(client: TestClient):
    r = client.get("/units/missing")
    assert r.status_code == 404
    body = r.json()
    assert body["code"] == "NOT_FOUND"
    assert body["details"] == {"id": "missing"}


def test_run_worker(engine: Engine, client: TestClient):
    _register(engine)

    r = client.post("/workers/solo/run")
    assert r.status_code == 200, r.text
    assert r.json() == {"id": "solo", "status": "completed", "error": None}

    assert client.post("/workers/p/run").status_code == 404


def test_run_worker_failure_is_reported_in_body(engine: Engine, client: TestClient):
    def _fails() -> None:
        raise ValueError("bad input")

    engine.register_unit(Worker(id="bad", name="Bad", run=_fails))

    r = client.post("/workers/bad/run")
    assert r.status_code == 200
    assert r.json()["status"] == "error"
    assert r.json()["error"] == "ValueError: bad input"


def test_run_process(engine: Engine, client: TestClient):
    _register(engine)

    r = client.post("/processes/p/run")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["status"] == "completed"
    assert body["completed"] == ["a", "b"]

    assert client.post("/processes/solo/run").status_code == 404


def test_run_process_cycle_is_400(engine: Engine, client: TestClient):
    engine.register_unit(Process(id="loop", name="Loop", workers=[
        Worker(id="x", name="X", run=lambda: None, depends_on=["y"]),
        Worker(id="y", name="Y", run=lambda: None, depends_on=["x"]),
    ]))

    r = client.post("/processes/loop/run")
    assert r.status_code == 400
    assert r.json()["code"] == "CYCLE_DETECTED"


def test_pool_tasks(engine: Engine, client: TestClient):
    assert client.get("/pool/tasks").json() == []

    pool = engine.use_worker_pool(1)
    pool.add_task("first", lambda: None)
    pool.add_task("second", lambda: None)
    pool.pause_task("second")

    assert client.get("/pool/tasks").json() == [
        {"name": "first", "arrangement_id": 1, "status": "idle"},
        {"name": "second", "arrangement_id": 2, "status": "paused"},
    ]


def test_lifespan_starts_and_stops_engine(engine: Engine, client_factory):
    with client_factory(start_engine=True) as client:
        assert client.get("/healthz").json()["running"] is True
    assert not engine.running
