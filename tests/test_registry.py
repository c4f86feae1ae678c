# tests/test_registry.py
import logging
from datetime import datetime, timezone

from weft.domain.models import Event, Process, UnitSnapshot, Worker
from weft.domain.states import EventKind, UnitStatus
from weft.engine import ManualClock, ReactiveRegistry, aggregate_status


def _worker(worker_id: str, **kwargs) -> Worker:
    return Worker(id=worker_id, name=worker_id.upper(), run=lambda: worker_id, **kwargs)


def _process(process_id: str, *worker_ids: str, **kwargs) -> Process:
    return Process(id=process_id, name=process_id.upper(), workers=[_worker(w) for w in worker_ids], **kwargs)


class _RecordingSink:
    def __init__(self) -> None:
        self.saves: list[list[UnitSnapshot]] = []

    def save_state(self, units: list[UnitSnapshot]) -> None:
        self.saves.append(units)


def test_register_process_registers_members(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a", "b"))

    assert {u.id for u in registry.list_units()} == {"p1", "a", "b"}
    assert registry.get_worker_by_id("a").process_id == "p1"
    assert [w.id for w in registry.get_workers_for_process("p1")] == ["a", "b"]
    assert [p.id for p in registry.get_processes_for_worker("b")] == ["p1"]
    assert registry.get_process_by_id("a") is None


def test_register_is_an_upsert(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a", "b"))
    registry.register_unit(_process("p1", "a"))

    assert registry.get_unit_by_id("b") is None
    assert [w.id for w in registry.get_workers_for_process("p1")] == ["a"]


def test_reregistering_member_replaces_it_in_process(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a", "b"))
    replacement = _worker("a", timeout_ms=5)

    registry.register_unit(replacement)

    members = registry.get_workers_for_process("p1")
    assert members[0] is replacement
    assert replacement.process_id == "p1"


def test_running_then_completed_records_metrics(registry: ReactiveRegistry, clock: ManualClock):
    registry.register_unit(_worker("w1"))

    registry.update_unit_state("w1", status=UnitStatus.RUNNING)
    clock.advance(0.25)
    registry.update_unit_state("w1", status=UnitStatus.COMPLETED)

    unit = registry.get_unit_by_id("w1")
    assert unit.last_run == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert unit.meta.run_count == 1
    assert unit.meta.execution_times_ms == [250.0]
    assert unit.meta.average_execution_time_ms == 250.0


def test_status_events_in_mutation_order(registry: ReactiveRegistry, events: list[Event]):
    registry.register_unit(_process("p1", "a"))

    registry.update_unit_state("a", status=UnitStatus.RUNNING)

    assert [(e.kind, e.unit_id) for e in events] == [
        (EventKind.UPDATED, "a"),
        (EventKind.START, "a"),
        (EventKind.UPDATED, "p1"),
        (EventKind.START, "p1"),
    ]
    assert events[0].payload["reason"] == "status-change"


def test_error_event_carries_unit_error(registry: ReactiveRegistry, events: list[Event]):
    registry.register_unit(_worker("w1"))

    registry.update_unit_state("w1", status=UnitStatus.ERROR, error="boom")

    errors = [e for e in events if e.kind == EventKind.ERROR]
    assert len(errors) == 1
    assert errors[0].error == "boom"


def test_three_worker_aggregation(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a", "b", "c"))

    registry.update_unit_state("a", status=UnitStatus.COMPLETED)
    registry.update_unit_state("b", status=UnitStatus.RUNNING)
    registry.update_unit_state("c", status=UnitStatus.ERROR)
    assert registry.get_unit_by_id("p1").status == UnitStatus.ERROR

    registry.update_unit_state("c", status=UnitStatus.COMPLETED)
    registry.update_unit_state("b", status=UnitStatus.COMPLETED)
    assert registry.get_unit_by_id("p1").status == UnitStatus.COMPLETED

    for worker_id in ("a", "b", "c"):
        registry.update_unit_state(worker_id, status=UnitStatus.IDLE)
    assert registry.get_unit_by_id("p1").status == UnitStatus.IDLE


def test_aggregate_status_precedence():
    def with_status(status: UnitStatus) -> Worker:
        return _worker(f"w-{status}", status=status)

    assert aggregate_status([]) == UnitStatus.IDLE
    assert aggregate_status([with_status(UnitStatus.RUNNING), with_status(UnitStatus.ERROR)]) == UnitStatus.ERROR
    assert aggregate_status([with_status(UnitStatus.COMPLETED), with_status(UnitStatus.RUNNING)]) == UnitStatus.RUNNING
    assert aggregate_status([with_status(UnitStatus.COMPLETED), with_status(UnitStatus.PAUSED)]) == UnitStatus.IDLE
    assert aggregate_status([with_status(UnitStatus.COMPLETED)]) == UnitStatus.COMPLETED


def test_paused_process_holds_until_resumed(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a"))
    registry.update_unit_state("p1", status=UnitStatus.PAUSED)

    registry.update_unit_state("a", status=UnitStatus.COMPLETED)
    assert registry.get_unit_by_id("p1").status == UnitStatus.PAUSED

    registry.update_unit_state("p1", status=UnitStatus.IDLE)
    assert registry.refresh_process_status("p1") == UnitStatus.COMPLETED


def test_update_unknown_id_is_noop(registry: ReactiveRegistry, events: list[Event]):
    registry.update_unit_state("missing", status=UnitStatus.RUNNING)

    assert events == []
    assert registry.list_units() == []


def test_update_ignores_unknown_and_identity_fields(registry: ReactiveRegistry, caplog):
    registry.register_unit(_worker("w1"))

    with caplog.at_level(logging.WARNING, logger="weft.engine.registry"):
        registry.update_unit_state("w1", id="other", colour="red", enabled=False)

    unit = registry.get_unit_by_id("w1")
    assert unit.id == "w1"
    assert unit.enabled is False
    assert "ignoring field(s)" in caplog.text


def test_config_change_publishes_single_updated_event(registry: ReactiveRegistry, events: list[Event]):
    registry.register_unit(_worker("w1"))

    registry.update_unit_state("w1", enabled=False)
    registry.update_unit_state("w1", enabled=False)

    assert len(events) == 1
    assert events[0].kind == EventKind.UPDATED
    assert events[0].payload["reason"] == "config-change"


def test_release_process_cascades(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a", "b"))

    registry.release_unit("p1")

    assert registry.list_units() == []


def test_release_member_detaches_and_recomputes(registry: ReactiveRegistry):
    registry.register_unit(_process("p1", "a", "b"))
    registry.update_unit_state("a", status=UnitStatus.COMPLETED)
    registry.update_unit_state("b", status=UnitStatus.ERROR)
    assert registry.get_unit_by_id("p1").status == UnitStatus.ERROR

    registry.release_unit("b")

    assert [w.id for w in registry.get_workers_for_process("p1")] == ["a"]
    assert registry.get_unit_by_id("p1").status == UnitStatus.COMPLETED


def test_release_unknown_is_noop(registry: ReactiveRegistry):
    registry.release_unit("missing")


def test_find_units_by_status(registry: ReactiveRegistry):
    registry.register_unit(_worker("a"))
    registry.register_unit(_worker("b"))
    registry.update_unit_state("b", status=UnitStatus.PAUSED)

    assert [u.id for u in registry.find_units_by_status("paused")] == ["b"]


def test_every_mutation_is_saved(bus, clock: ManualClock):
    sink = _RecordingSink()
    registry = ReactiveRegistry(bus, clock=clock, storage=sink)

    registry.register_unit(_worker("w1"))
    registry.update_unit_state("w1", status=UnitStatus.RUNNING)
    registry.update_unit_state("missing", status=UnitStatus.RUNNING)
    registry.release_unit("w1")

    assert len(sink.saves) == 3
    assert sink.saves[1][0].status == UnitStatus.RUNNING
    assert sink.saves[-1] == []


def test_hydrate_restores_state_silently(registry: ReactiveRegistry, events: list[Event]):
    registry.register_unit(_worker("w1"))
    snap = UnitSnapshot(
        kind="worker",
        id="w1",
        name="W1",
        status=UnitStatus.COMPLETED,
        error="earlier",
        skipped=True,
    )
    unknown = UnitSnapshot(kind="worker", id="gone", name="Gone")

    restored = registry.hydrate([snap, unknown])

    worker = registry.get_worker_by_id("w1")
    assert restored == 1
    assert worker.status == UnitStatus.COMPLETED
    assert worker.error == "earlier"
    assert worker.skipped is True
    assert events == []
