# src/weft/engine/manager.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Union

from weft.config import Settings, load_settings
from weft.domain.errors import TerminalFailure
from weft.domain.models import Process, UnitSnapshot, Worker
from weft.domain.states import EventKind, UnitStatus
from weft.logging import get_logger

from .clock import Clock, SystemClock
from .events import EventBus, Listener, MilestoneEmitter, Unsubscribe
from .graph import DependencyGraphScheduler, detect_cycle, has_dependencies
from .pool import WorkerPool
from .recovery import recover_snapshots
from .registry import AnyUnit, ReactiveRegistry
from .report import RunReport
from .run_modes import ProcessRunner, RunModeExecutor
from .supervisor import Supervisor
from .visualizer import LoggingVisualizer
from .watcher import UnitWatcher

_LOG = get_logger(__name__)

MilestoneHandler = Callable[[str, dict[str, Any]], None]


class Engine:
    """
    Entry point wiring the event bus, registry, supervisor, process runner,
    watcher and optional worker pool.

    Background loop (start/stop):
    - every loop interval, runs each enabled, non-paused process that still
      has a due member (enabled and idle, not skipped)
    - runs the watcher at its own interval
    - starts/stops an attached worker pool

    A process never runs twice concurrently; an overlapping request is
    dropped with a warning.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Clock] = None,
        visualizer: Optional[LoggingVisualizer] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._clock = clock or SystemClock()

        self.bus = EventBus()
        self.milestones = MilestoneEmitter(self.bus)
        self.registry = ReactiveRegistry(self.bus, clock=self._clock)
        self.supervisor = Supervisor(self.registry, clock=self._clock)

        self._runner = ProcessRunner(
            DependencyGraphScheduler(self.registry, max_concurrency=self._settings.max_concurrency),
            RunModeExecutor(self.registry, clock=self._clock, max_concurrency=self._settings.max_concurrency),
        )
        self._watcher = UnitWatcher(
            self.registry,
            self.milestones,
            release=self.release_unit,
            clock=self._clock,
            idle_threshold_ms=self._settings.idle_threshold_ms,
            auto_unpause=self._settings.auto_unpause,
            is_protected=self._is_pool_slot,
        )
        self._pool: Optional[WorkerPool] = None

        self.visualizer = visualizer or LoggingVisualizer(level=logging.DEBUG)
        self.visualizer.attach(self.bus)

        self._lock = threading.Lock()
        self._active: set[str] = set()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "Engine":
        """
        Builds an engine from env settings; persists to SQLite when a state
        path is configured.
        """
        from weft.storage import SQLiteDB, SQLiteStorageAdapter

        settings = settings or load_settings()
        engine = cls(settings, **kwargs)
        if settings.state_path is not None:
            engine.use_storage(SQLiteStorageAdapter(SQLiteDB(settings.state_path)))
        return engine

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def watcher(self) -> UnitWatcher:
        return self._watcher

    @property
    def pool(self) -> Optional[WorkerPool]:
        return self._pool

    # -------------------------
    # Registry façade
    # -------------------------

    def register_unit(self, unit: Union[Worker, Process]) -> None:
        self.registry.register_unit(unit)

    def release_unit(self, unit_id: str) -> None:
        if self.registry.get_unit_by_id(unit_id) is None:
            _LOG.debug("release_unit: unknown unit %s (ignored).", unit_id)
            return
        self.registry.release_unit(unit_id)
        self.milestones.emit_for_unit(unit_id, "released")

    def get_unit_by_id(self, unit_id: str) -> Optional[AnyUnit]:
        return self.registry.get_unit_by_id(unit_id)

    def get_unit_status(self, unit_id: str) -> Optional[UnitStatus]:
        unit = self.registry.get_unit_by_id(unit_id)
        return unit.status if unit is not None else None

    def list_units(self) -> list[AnyUnit]:
        return self.registry.list_units()

    def list_workers(self) -> list[Worker]:
        return self.registry.list_workers()

    def list_processes(self) -> list[Process]:
        return self.registry.list_processes()

    def get_registry_snapshot(self) -> list[UnitSnapshot]:
        return self.registry.snapshot()

    # -------------------------
    # Execution
    # -------------------------

    def run_worker(self, worker_id: str) -> Any:
        """
        Runs one worker through the supervisor. Returns its result, or None
        for an unknown id, a disabled or skipped worker, or a terminal failure.
        """
        worker = self.registry.get_worker_by_id(worker_id)
        if worker is None:
            _LOG.warning("run_worker: unknown worker %s.", worker_id)
            return None
        if not worker.enabled:
            _LOG.debug("run_worker: worker %s is disabled (skipped).", worker_id)
            return None
        try:
            return self._execute_member(worker)
        except TerminalFailure as e:
            _LOG.debug("run_worker %s ended in terminal failure: %s", worker_id, e)
            return None

    def run_process(self, process_id: str) -> Optional[RunReport]:
        """
        Runs the enabled members of a process once, by dependency graph when
        any member declares dependencies and by run mode otherwise.

        Returns None for unknown, paused or already-running processes.
        Raises CycleError before anything runs when the graph has a cycle.
        """
        process = self.registry.get_process_by_id(process_id)
        if process is None:
            _LOG.warning("run_process: unknown process %s.", process_id)
            return None
        if process.status == UnitStatus.PAUSED:
            _LOG.debug("run_process: process %s is paused (skipped).", process_id)
            return None

        workers = [w for w in process.workers if w.enabled]
        if has_dependencies(workers):
            detect_cycle(workers)

        with self._lock:
            if process_id in self._active:
                _LOG.warning("run_process: process %s is already running (ignored).", process_id)
                return None
            self._active.add(process_id)

        payload: dict[str, Any] = {"run_mode": process.run_mode.value}
        report = RunReport()
        try:
            self.registry.update_unit_state(process_id, status=UnitStatus.RUNNING)
            self.milestones.emit_for_unit(process_id, "running", payload)
            try:
                self._runner.run(process, workers, self._execute_member, report)
            except TerminalFailure as e:
                _LOG.warning("Process %s aborted: %s", process_id, e)
                self.registry.refresh_process_status(process_id)
                self.milestones.emit_for_unit(
                    process_id, "failed", {**payload, **report.as_dict(), "error": e.message}
                )
                return report

            self.registry.refresh_process_status(process_id)
            self.milestones.emit_for_unit(process_id, "completed", {**payload, **report.as_dict()})
            return report
        except Exception:
            self.registry.refresh_process_status(process_id)
            raise
        finally:
            with self._lock:
                self._active.discard(process_id)

    def _execute_member(self, worker: Worker) -> Any:
        result = self.supervisor.execute(worker)
        if (
            worker.max_runs is not None
            and worker.enabled
            and worker.status == UnitStatus.COMPLETED
            and worker.meta.run_count >= worker.max_runs
        ):
            _LOG.info("Worker %s reached max_runs=%d; disabling.", worker.id, worker.max_runs)
            self.registry.update_unit_state(worker.id, enabled=False)
            self.milestones.emit_for_unit(worker.id, "disabled", {"run_count": worker.meta.run_count})
        return result

    # -------------------------
    # Lifecycle controls
    # -------------------------

    def update_status(self, unit_id: str, status: UnitStatus, **changes: Any) -> None:
        self.registry.update_unit_state(unit_id, status=status, **changes)

    def enable_unit(self, unit_id: str) -> None:
        self.registry.update_unit_state(unit_id, enabled=True)

    def disable_unit(self, unit_id: str) -> None:
        self.registry.update_unit_state(unit_id, enabled=False)

    def pause_unit(self, unit_id: str) -> None:
        self.registry.update_unit_state(unit_id, status=UnitStatus.PAUSED)

    def resume_unit(self, unit_id: str) -> None:
        if self.get_unit_status(unit_id) == UnitStatus.PAUSED:
            self.registry.update_unit_state(unit_id, status=UnitStatus.IDLE)
            self.registry.refresh_process_status(unit_id)

    def start_all(self) -> None:
        for unit in self.registry.find_units_by_status(UnitStatus.PAUSED):
            self.registry.update_unit_state(unit.id, status=UnitStatus.IDLE)
        for process in self.registry.list_processes():
            self.registry.refresh_process_status(process.id)

    def stop_all(self) -> None:
        for unit in self.registry.list_units():
            self.registry.update_unit_state(unit.id, status=UnitStatus.PAUSED)

    def reset_unit(self, unit_id: str) -> None:
        """
        Puts a unit (and, for a process, its members) back to idle with the
        skip flag and last error cleared, so the next run executes it again.
        """
        unit = self.registry.get_unit_by_id(unit_id)
        if unit is None:
            _LOG.debug("reset_unit: unknown unit %s (ignored).", unit_id)
            return
        members = unit.workers if isinstance(unit, Process) else [unit]
        for worker in members:
            self.registry.update_unit_state(worker.id, status=UnitStatus.IDLE, skipped=False, error=None)
        if isinstance(unit, Process):
            self.registry.update_unit_state(unit.id, status=UnitStatus.IDLE, error=None)

    # -------------------------
    # Events
    # -------------------------

    def emit_milestone(self, milestone_id: str, payload: Optional[dict[str, Any]] = None) -> None:
        self.milestones.emit(milestone_id, payload)

    def on_milestone(self, handler: MilestoneHandler) -> Unsubscribe:
        def _listener(event) -> None:
            handler(event.milestone_id, event.payload)

        return self.bus.subscribe(EventKind.MILESTONE, _listener)

    def subscribe_to_events(self, listener: Listener) -> Unsubscribe:
        return self.bus.subscribe_all(listener)

    # -------------------------
    # Collaborators
    # -------------------------

    def use_storage(self, adapter) -> int:
        """
        Hydrates registered units from the adapter, then saves a snapshot on
        every mutation. Register units before calling this. Returns the
        number of units restored.
        """
        snapshots = adapter.load_state()
        restored = 0
        if snapshots:
            recovered, _ = recover_snapshots(snapshots)
            restored = self.registry.hydrate(recovered)
            _LOG.info("Restored %d of %d persisted unit(s).", restored, len(snapshots))
        self.registry.attach_storage(adapter)
        return restored

    def use_worker_pool(self, size: Optional[int] = None) -> WorkerPool:
        """
        Attaches a worker pool whose slots execute through the supervisor.
        Calling again resizes the existing pool.
        """
        if self._pool is not None:
            if size is not None:
                self._pool.resize(size)
            return self._pool

        self._pool = WorkerPool(
            self._settings.pool_size if size is None else size,
            self._execute_member,
            registry=self.registry,
            tick_ms=self._settings.pool_tick_ms,
        )
        if self.running:
            self._pool.start()
        return self._pool

    def _is_pool_slot(self, unit_id: str) -> bool:
        pool = self._pool
        return pool is not None and unit_id in pool.slot_ids()

    # -------------------------
    # Background loop
    # -------------------------

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        """
        Starts the background loop thread. Safe to call more than once.
        """
        if self.running:
            return

        _LOG.info(
            "Starting engine: loop_interval_ms=%d watcher_interval_ms=%d units=%d",
            self._settings.loop_interval_ms,
            self._settings.watcher_interval_ms,
            len(self.registry.list_units()),
        )
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="weft-engine", daemon=True)
        self._thread.start()
        if self._pool is not None:
            self._pool.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        """
        Stops the loop and the pool's assignment thread. In-flight work
        finishes on its own threads.
        """
        _LOG.info("Stopping engine...")
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout_s)
            self._thread = None
        if self._pool is not None:
            self._pool.close(wait=False)
        _LOG.info("Engine stopped.")

    def _run_loop(self) -> None:
        last_scan = self._clock.now()

        while not self._stop.is_set():
            t0 = self._clock.now()

            if (t0 - last_scan) * 1000.0 >= self._settings.watcher_interval_ms:
                try:
                    self._watcher.scan()
                except Exception:
                    _LOG.exception("Watcher scan failed (continuing).")
                last_scan = t0

            try:
                self._run_due_processes()
            except Exception:
                _LOG.exception("Engine loop iteration failed (continuing).")

            elapsed_s = self._clock.now() - t0
            sleep_s = max(0.0, self._settings.loop_interval_s - elapsed_s)
            self._stop.wait(timeout=sleep_s or 0.001)

    def _run_due_processes(self) -> None:
        for process in self.registry.list_processes():
            if self._stop.is_set():
                return
            if not process.enabled or process.status == UnitStatus.PAUSED:
                continue
            if not any(_is_due(w) for w in process.workers):
                continue
            try:
                self.run_process(process.id)
            except Exception:
                _LOG.exception("Process %s run failed (continuing).", process.id)


def _is_due(worker: Worker) -> bool:
    return worker.enabled and worker.status == UnitStatus.IDLE and not worker.skipped
