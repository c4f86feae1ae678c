# tests/test_events.py
from weft.domain.models import Event
from weft.domain.states import EventKind
from weft.engine import EventBus, MilestoneEmitter


def test_subscribe_receives_only_its_kind(bus: EventBus):
    starts: list[Event] = []
    bus.subscribe(EventKind.START, starts.append)

    bus.publish(Event(kind=EventKind.START, unit_id="a"))
    bus.publish(Event(kind=EventKind.COMPLETE, unit_id="a"))

    assert [e.unit_id for e in starts] == ["a"]


def test_unsubscribe_stops_delivery_and_is_idempotent(bus: EventBus):
    received: list[Event] = []
    unsubscribe = bus.subscribe(EventKind.ERROR, received.append)

    bus.publish(Event(kind=EventKind.ERROR, unit_id="a"))
    unsubscribe()
    unsubscribe()
    bus.publish(Event(kind=EventKind.ERROR, unit_id="b"))

    assert [e.unit_id for e in received] == ["a"]


def test_catch_all_receives_every_kind(bus: EventBus, events: list[Event]):
    for kind in EventKind:
        bus.publish(Event(kind=kind))

    assert [e.kind for e in events] == list(EventKind)


def test_failing_listener_does_not_block_others(bus: EventBus):
    received: list[Event] = []

    def _boom(event: Event) -> None:
        raise RuntimeError("listener failed")

    bus.subscribe(EventKind.MILESTONE, _boom)
    bus.subscribe(EventKind.MILESTONE, received.append)

    bus.publish(Event(kind=EventKind.MILESTONE, milestone_id="m"))

    assert len(received) == 1


def test_milestone_ids(bus: EventBus, events: list[Event]):
    emitter = MilestoneEmitter(bus)

    emitter.emit("deploy:done", {"ok": True})
    emitter.emit_for_unit("p1", "running", {"run_mode": "parallel"})

    assert [e.milestone_id for e in events] == ["deploy:done", "unit:p1:running"]
    assert events[0].payload == {"ok": True}
    assert events[1].unit_id == "p1"
    assert all(e.kind == EventKind.MILESTONE for e in events)
