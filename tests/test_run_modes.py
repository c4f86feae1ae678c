# tests/test_run_modes.py
import time

from weft.domain.errors import TerminalFailure
from weft.domain.models import Process, Worker
from weft.domain.states import RunMode, UnitStatus
from weft.engine import Engine, ManualClock, RunModeExecutor


def _sleeper(seconds: float, result: object = None):
    def _run() -> object:
        time.sleep(seconds)
        return result

    return _run


def _failing() -> None:
    raise RuntimeError("member failed")


def _process(run_mode: RunMode, workers: list[Worker], **kwargs) -> Process:
    return Process(id="p", name="P", run_mode=run_mode, workers=workers, **kwargs)


def test_sequential_runs_in_list_order(engine: Engine):
    order: list[str] = []
    workers = [Worker(id=w, name=w, run=lambda w=w: order.append(w)) for w in ("c", "a", "b")]
    engine.register_unit(_process(RunMode.SEQUENTIAL, workers))

    report = engine.run_process("p")

    assert order == ["c", "a", "b"]
    assert report.completed == ["c", "a", "b"]


def test_sequential_stops_at_the_first_failure(engine: Engine):
    ran: list[str] = []
    engine.register_unit(_process(RunMode.SEQUENTIAL, [
        Worker(id="a", name="A", run=_failing),
        Worker(id="b", name="B", run=lambda: ran.append("b")),
    ]))

    report = engine.run_process("p")

    assert ran == []
    assert report.failed == ["a"]
    assert report.skipped == ["b"]
    assert engine.get_unit_by_id("b").skipped is True
    assert engine.get_unit_status("p") == UnitStatus.ERROR


def test_sequential_runs_again_after_reset(engine: Engine):
    attempts: list[str] = []

    def _fails_once() -> None:
        attempts.append("a")
        if len(attempts) == 1:
            raise RuntimeError("first run")

    ran: list[str] = []
    engine.register_unit(_process(RunMode.SEQUENTIAL, [
        Worker(id="a", name="A", run=_fails_once),
        Worker(id="b", name="B", run=lambda: ran.append("b")),
    ]))

    engine.run_process("p")
    engine.reset_unit("p")
    report = engine.run_process("p")

    assert ran == ["b"]
    assert report.completed == ["a", "b"]
    assert engine.get_unit_status("p") == UnitStatus.COMPLETED


def test_isolated_stops_at_the_first_failure_without_further_delays():
    clock = ManualClock()
    ran: list[str] = []
    process = _process(
        RunMode.ISOLATED,
        [
            Worker(id="w0", name="W0", run=lambda: ran.append("w0")),
            Worker(id="w1", name="W1", run=_failing),
            Worker(id="w2", name="W2", run=lambda: ran.append("w2")),
            Worker(id="w3", name="W3", run=lambda: ran.append("w3")),
        ],
        isolation_delay_ms=100,
    )

    report = RunModeExecutor(clock=clock).run(process, process.workers, lambda w: w.run())

    assert ran == ["w0"]
    assert report.completed == ["w0"]
    assert report.failed == ["w1"]
    assert report.skipped == ["w2", "w3"]
    assert clock.sleeps == [0.1]


def test_parallel_duration_is_max_not_sum(engine: Engine):
    engine.register_unit(_process(RunMode.PARALLEL, [
        Worker(id=f"w{i}", name=f"W{i}", run=_sleeper(0.2, i)) for i in range(4)
    ]))

    t0 = time.monotonic()
    report = engine.run_process("p")
    elapsed = time.monotonic() - t0

    assert elapsed < 0.6
    assert sorted(report.completed) == ["w0", "w1", "w2", "w3"]
    assert report.results["w3"] == 3


def test_parallel_failure_is_isolated(engine: Engine):
    engine.register_unit(_process(RunMode.PARALLEL, [
        Worker(id="ok1", name="OK1", run=_sleeper(0.05)),
        Worker(id="bad", name="BAD", run=_failing),
        Worker(id="ok2", name="OK2", run=_sleeper(0.05)),
    ]))

    report = engine.run_process("p")

    assert sorted(report.completed) == ["ok1", "ok2"]
    assert report.failed == ["bad"]
    assert not report.ok
    assert engine.get_unit_status("p") == UnitStatus.ERROR


def test_isolated_waits_between_workers_only(engine: Engine):
    engine.register_unit(_process(
        RunMode.ISOLATED,
        [Worker(id=f"w{i}", name=f"W{i}", run=lambda: None) for i in range(3)],
        isolation_delay_ms=60,
    ))

    t0 = time.monotonic()
    engine.run_process("p")
    elapsed = time.monotonic() - t0

    assert elapsed >= 0.12


def test_isolated_delays_on_injected_clock():
    clock = ManualClock()
    process = _process(
        RunMode.ISOLATED,
        [Worker(id=f"w{i}", name=f"W{i}", run=lambda: None) for i in range(4)],
        isolation_delay_ms=250,
    )

    RunModeExecutor(clock=clock).run(process, process.workers, lambda w: w.run())

    assert clock.sleeps == [0.25, 0.25, 0.25]


def test_batched_runs_ceil_k_over_b_chunks(monkeypatch):
    executor = RunModeExecutor()
    chunks: list[list[str]] = []
    run_chunk = executor._run_concurrently

    def _recording(workers, execute, report):
        chunks.append([w.id for w in workers])
        run_chunk(workers, execute, report)

    monkeypatch.setattr(executor, "_run_concurrently", _recording)
    process = _process(
        RunMode.BATCHED,
        [Worker(id=f"w{i}", name=f"W{i}", run=lambda: None) for i in range(5)],
        batch_size=2,
    )

    report = executor.run(process, process.workers, lambda w: w.run())

    assert chunks == [["w0", "w1"], ["w2", "w3"], ["w4"]]
    assert len(report.completed) == 5


def test_batched_failure_does_not_block_siblings_or_later_chunks(engine: Engine):
    engine.register_unit(_process(
        RunMode.BATCHED,
        [
            Worker(id="w0", name="W0", run=lambda: 0),
            Worker(id="w1", name="W1", run=_failing),
            Worker(id="w2", name="W2", run=lambda: 2),
            Worker(id="w3", name="W3", run=lambda: 3),
        ],
        batch_size=2,
    ))

    report = engine.run_process("p")

    assert sorted(report.completed) == ["w0", "w2", "w3"]
    assert report.failed == ["w1"]


def test_paused_member_is_reported_as_skipped():
    paused = Worker(id="p1", name="P1", run=lambda: None, status=UnitStatus.PAUSED)
    active = Worker(id="a1", name="A1", run=lambda: "done")
    process = _process(RunMode.PARALLEL, [paused, active])

    def execute(worker: Worker) -> object:
        if worker.status == UnitStatus.PAUSED:
            return None
        return worker.run()

    report = RunModeExecutor().run(process, process.workers, execute)

    assert report.skipped == ["p1"]
    assert report.completed == ["a1"]


def test_run_mode_never_raises_on_terminal_failure():
    def execute(worker: Worker) -> object:
        raise TerminalFailure(f"{worker.id} exhausted")

    process = _process(RunMode.SEQUENTIAL, [Worker(id="a", name="A", run=lambda: None)])

    report = RunModeExecutor().run(process, process.workers, execute)

    assert report.failed == ["a"]
