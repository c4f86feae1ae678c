# src/weft/engine/registry.py
from __future__ import annotations

import threading
from typing import Any, Iterable, Optional, Protocol, Union

from weft.domain.models import Event, Process, UnitSnapshot, Worker
from weft.domain.states import EventKind, UnitStatus
from weft.logging import get_logger

from .clock import Clock, SystemClock
from .events import EventBus

_LOG = get_logger(__name__)

AnyUnit = Union[Worker, Process]

# Identity fields cannot be changed through update_unit_state.
_IMMUTABLE_FIELDS = frozenset({"id", "kind", "workers"})


class SnapshotSink(Protocol):
    def save_state(self, units: list[UnitSnapshot]) -> None:
        ...


def aggregate_status(workers: Iterable[Worker]) -> UnitStatus:
    """
    Aggregate status of a process, evaluated fresh from its members:
    error > running > completed (all members, at least one) > idle.
    """
    statuses = [w.status for w in workers]
    if any(s == UnitStatus.ERROR for s in statuses):
        return UnitStatus.ERROR
    if any(s == UnitStatus.RUNNING for s in statuses):
        return UnitStatus.RUNNING
    if statuses and all(s == UnitStatus.COMPLETED for s in statuses):
        return UnitStatus.COMPLETED
    return UnitStatus.IDLE


class ReactiveRegistry:
    """
    In-memory store of every unit, with reactive status propagation.

    Important invariants:
    - All mutation goes through register_unit / update_unit_state / release_unit,
      each applied atomically under one re-entrant lock.
    - A process's member list is the source of truth for ownership; the
      worker's `process_id` is informational only.
    - Events are published after the lock is released, in mutation order.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        *,
        clock: Optional[Clock] = None,
        storage: Optional[SnapshotSink] = None,
    ) -> None:
        self._bus = bus
        self._clock = clock or SystemClock()
        self._storage = storage

        self._lock = threading.RLock()
        self._persist_lock = threading.Lock()

        self._units: dict[str, AnyUnit] = {}
        self._workers: dict[str, Worker] = {}
        self._processes: dict[str, Process] = {}
        # worker id -> owning process id, derived from member lists
        self._owners: dict[str, str] = {}
        # unit id -> monotonic time the unit entered RUNNING
        self._started_at: dict[str, float] = {}

    # -------------------------
    # Registration
    # -------------------------

    def register_unit(self, unit: AnyUnit) -> None:
        """
        Idempotent upsert. Registering a process registers its workers too.
        """
        with self._lock:
            self._register(unit)
        self._persist()

    def _register(self, unit: AnyUnit) -> None:
        existing = self._units.get(unit.id)
        if existing is not None and existing is not unit:
            if isinstance(existing, Process):
                kept = {w.id for w in unit.workers} if isinstance(unit, Process) else set()
                for member in existing.workers:
                    self._owners.pop(member.id, None)
                    if member.id not in kept:
                        self._forget(member.id)
            owner_id = self._owners.get(unit.id)
            self._forget(unit.id)
            if owner_id is not None and isinstance(unit, Worker):
                self._replace_member(owner_id, unit)

        self._units[unit.id] = unit
        if isinstance(unit, Process):
            self._processes[unit.id] = unit
            for worker in unit.workers:
                previous_owner = self._owners.get(worker.id)
                if previous_owner is not None and previous_owner != unit.id:
                    self._detach_member(previous_owner, worker.id)
                self._register(worker)
                self._owners[worker.id] = unit.id
        else:
            self._workers[unit.id] = unit

    def _replace_member(self, process_id: str, worker: Worker) -> None:
        process = self._processes.get(process_id)
        if process is None:
            return
        process.workers = [worker if w.id == worker.id else w for w in process.workers]
        worker.process_id = process_id
        self._owners[worker.id] = process_id

    def _detach_member(self, process_id: str, worker_id: str) -> None:
        process = self._processes.get(process_id)
        if process is not None:
            process.workers = [w for w in process.workers if w.id != worker_id]

    def _forget(self, unit_id: str) -> None:
        self._units.pop(unit_id, None)
        self._workers.pop(unit_id, None)
        self._processes.pop(unit_id, None)
        self._owners.pop(unit_id, None)
        self._started_at.pop(unit_id, None)

    def release_unit(self, unit_id: str) -> None:
        """
        Removes a unit. Releasing a process cascades to its workers; releasing
        a member worker detaches it from its process.
        """
        events: list[Event] = []
        with self._lock:
            unit = self._units.get(unit_id)
            if unit is None:
                _LOG.debug("release_unit: unknown unit %s (ignored).", unit_id)
                return

            if isinstance(unit, Process):
                for worker in unit.workers:
                    self._forget(worker.id)
                self._forget(unit_id)
            else:
                owner_id = self._owners.get(unit_id)
                self._forget(unit_id)
                if owner_id is not None:
                    self._detach_member(owner_id, unit_id)
                    events.extend(self._recompute_process(owner_id))

        self._publish(events)
        self._persist()

    # -------------------------
    # Read operations
    # -------------------------

    def get_unit_by_id(self, unit_id: str) -> Optional[AnyUnit]:
        with self._lock:
            return self._units.get(unit_id)

    def get_worker_by_id(self, unit_id: str) -> Optional[Worker]:
        with self._lock:
            return self._workers.get(unit_id)

    def get_process_by_id(self, unit_id: str) -> Optional[Process]:
        with self._lock:
            return self._processes.get(unit_id)

    def list_units(self) -> list[AnyUnit]:
        with self._lock:
            return list(self._units.values())

    def list_workers(self) -> list[Worker]:
        with self._lock:
            return list(self._workers.values())

    def list_processes(self) -> list[Process]:
        with self._lock:
            return list(self._processes.values())

    def get_workers_for_process(self, process_id: str) -> list[Worker]:
        with self._lock:
            process = self._processes.get(process_id)
            return list(process.workers) if process else []

    def get_processes_for_worker(self, worker_id: str) -> list[Process]:
        with self._lock:
            return [p for p in self._processes.values() if any(w.id == worker_id for w in p.workers)]

    def find_units_by_status(self, status: UnitStatus) -> list[AnyUnit]:
        status = UnitStatus(status)
        with self._lock:
            return [u for u in self._units.values() if u.status == status]

    def snapshot(self) -> list[UnitSnapshot]:
        with self._lock:
            return [u.to_snapshot() for u in self._units.values()]

    # -------------------------
    # Write operations
    # -------------------------

    def update_unit_state(self, unit_id: str, **changes: Any) -> None:
        """
        Merges `changes` into a unit. Unknown ids and unknown fields are
        ignored (never raises).

        On a status change:
        - entering RUNNING stamps last_run and starts the duration timer
        - entering COMPLETED appends a duration sample and bumps run_count
        - the owning process aggregate is recomputed and published if changed
        """
        with self._lock:
            unit = self._units.get(unit_id)
            if unit is None:
                _LOG.debug("update_unit_state: unknown unit %s (ignored).", unit_id)
                return
            events = self._apply_changes(unit, changes)

        self._publish(events)
        if events:
            self._persist()

    def refresh_process_status(self, process_id: str) -> Optional[UnitStatus]:
        with self._lock:
            process = self._processes.get(process_id)
            if process is None:
                return None
            events = self._recompute_process(process_id)
            status = process.status
        self._publish(events)
        if events:
            self._persist()
        return status

    def hydrate(self, snapshots: Iterable[UnitSnapshot]) -> int:
        """
        Restores persisted runtime state onto already-registered units.
        No events are published and nothing is saved. Returns units restored.
        """
        restored = 0
        with self._lock:
            for snap in snapshots:
                unit = self._units.get(snap.id)
                if unit is None or unit.kind != snap.kind:
                    continue
                unit.status = snap.status
                unit.enabled = snap.enabled
                unit.last_run = snap.last_run
                unit.meta = snap.meta.model_copy(deep=True)
                unit.error = snap.error
                if isinstance(unit, Worker):
                    unit.skipped = snap.skipped
                restored += 1
        return restored

    def attach_storage(self, storage: Optional[SnapshotSink]) -> None:
        self._storage = storage

    # -------------------------
    # Helpers
    # -------------------------

    def _apply_changes(self, unit: AnyUnit, changes: dict[str, Any]) -> list[Event]:
        fields = type(unit).model_fields
        unknown = sorted(k for k in changes if k not in fields or k in _IMMUTABLE_FIELDS)
        if unknown:
            _LOG.warning("update_unit_state: ignoring field(s) %s for unit %s.", unknown, unit.id)

        previous = unit.status
        config_changed = False
        for key, value in changes.items():
            if key in unknown:
                continue
            if key == "status":
                value = UnitStatus(value)
            if getattr(unit, key) == value:
                continue
            setattr(unit, key, value)
            if key != "status":
                config_changed = True

        status_changed = unit.status != previous
        if not (status_changed or config_changed):
            return []

        if status_changed:
            self._on_status_change(unit, stamp_last_run="last_run" not in changes)
            events = self._status_events(unit, previous)
            owner_id = self._owners.get(unit.id) if isinstance(unit, Worker) else None
            if owner_id is not None:
                events.extend(self._recompute_process(owner_id))
            return events

        return [
            Event(
                kind=EventKind.UPDATED,
                unit_id=unit.id,
                payload={"reason": "config-change", "previous": previous, "current": unit.status},
            )
        ]

    def _on_status_change(self, unit: AnyUnit, *, stamp_last_run: bool = True) -> None:
        if unit.status == UnitStatus.RUNNING:
            self._started_at[unit.id] = self._clock.now()
            if stamp_last_run:
                unit.last_run = self._clock.utcnow()
        elif unit.status == UnitStatus.COMPLETED:
            started = self._started_at.pop(unit.id, None)
            duration_ms = (self._clock.now() - started) * 1000.0 if started is not None else None
            unit.meta = unit.meta.with_sample(duration_ms)
        else:
            self._started_at.pop(unit.id, None)

    def _status_events(self, unit: AnyUnit, previous: UnitStatus) -> list[Event]:
        events = [
            Event(
                kind=EventKind.UPDATED,
                unit_id=unit.id,
                payload={"reason": "status-change", "previous": previous, "current": unit.status},
            )
        ]
        if unit.status == UnitStatus.RUNNING:
            events.append(Event(kind=EventKind.START, unit_id=unit.id))
        elif unit.status == UnitStatus.COMPLETED:
            events.append(Event(kind=EventKind.COMPLETE, unit_id=unit.id))
        elif unit.status == UnitStatus.ERROR:
            events.append(Event(kind=EventKind.ERROR, unit_id=unit.id, error=unit.error))
        return events

    def _recompute_process(self, process_id: str) -> list[Event]:
        process = self._processes.get(process_id)
        if process is None:
            return []
        if process.status == UnitStatus.PAUSED:
            # A paused process holds until resumed.
            return []
        new_status = aggregate_status(process.workers)
        if new_status == process.status:
            return []
        previous = process.status
        process.status = new_status
        self._on_status_change(process)
        return self._status_events(process, previous)

    def _publish(self, events: list[Event]) -> None:
        if self._bus is None:
            return
        for event in events:
            self._bus.publish(event)

    def _persist(self) -> None:
        storage = self._storage
        if storage is None:
            return
        # Snapshot and save under one lock so saves land in mutation order.
        with self._persist_lock:
            try:
                storage.save_state(self.snapshot())
            except Exception:
                _LOG.exception("Failed to save registry snapshot (continuing with in-memory state).")
