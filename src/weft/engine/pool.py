# src/weft/engine/pool.py
from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from weft.domain.errors import ConfigError, TerminalFailure
from weft.domain.models import SlotStatus, Task, Worker
from weft.domain.states import TaskStatus, UnitStatus
from weft.logging import get_logger

from .registry import ReactiveRegistry

_LOG = get_logger(__name__)

SlotExecutor = Callable[[Worker], Any]

_UPDATABLE_TASK_FIELDS = frozenset({"execute", "payload"})


def _unbound_action() -> None:
    return None


def _config_error(message: str, **details: Any) -> None:
    err = ConfigError(message, details=details or None)
    _LOG.warning("[%s] %s", err.code, err.message)


class WorkerPool:
    """
    Reusable execution slots fed from a task queue ordered by arrangement id.

    Assignment (one per tick):
    - queue non-empty, an idle slot exists, and the queue head is not paused
    - pop the head and an idle slot, bind the slot's action to the task
    - dispatch through `executor` on a background thread
    - the slot always returns to idle afterwards

    A paused head blocks every later task (cascading pause).
    """

    def __init__(
        self,
        size: int,
        executor: SlotExecutor,
        *,
        registry: Optional[ReactiveRegistry] = None,
        tick_ms: int = 10,
        slot_timeout_ms: int = 10_000,
    ) -> None:
        if size < 0:
            raise ValueError("pool size must be >= 0")
        if tick_ms <= 0:
            raise ValueError("tick_ms must be > 0")

        self._executor = executor
        self._registry = registry
        self._tick_s = tick_ms / 1000.0
        self._slot_timeout_ms = slot_timeout_ms

        self._lock = threading.RLock()
        self._queue: list[Task] = []
        self._slots: dict[str, Worker] = {}
        self._idle: list[Worker] = []
        self._last_milestone: dict[str, str] = {}
        self._arrangement = itertools.count(1)
        self._slot_numbers = itertools.count(1)

        self._dispatcher: Optional[ThreadPoolExecutor] = None
        self._dispatch_capacity = 0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        for _ in range(size):
            self._add_slot()

    # -------------------------
    # Queue operations
    # -------------------------

    def add_task(self, name: str, execute: Callable[[], Any], payload: Any = None) -> Optional[Task]:
        """
        Queues a task behind every existing one. Returns None (queue unchanged)
        if a queued task already has this name.
        """
        with self._lock:
            if self._find(name) is not None:
                _config_error(f'Task with name "{name}" already exists.', name=name)
                return None
            task = Task(
                name=name,
                arrangement_id=next(self._arrangement),
                execute=execute,
                payload=payload,
            )
            self._queue.append(task)
            self._queue.sort(key=lambda t: t.arrangement_id)
            return task

    def update_task(self, name: str, **changes: Any) -> Optional[Task]:
        with self._lock:
            task = self._find(name)
            if task is None:
                _config_error(f'Cannot update: task "{name}" not found.', name=name)
                return None
            rejected = sorted(set(changes) - _UPDATABLE_TASK_FIELDS)
            if rejected:
                _config_error(f'Cannot update field(s) {rejected} of task "{name}".', name=name)
            for key, value in changes.items():
                if key not in rejected:
                    setattr(task, key, value)
            return task

    def pause_task(self, name: str) -> bool:
        return self._transition(name, TaskStatus.IDLE, TaskStatus.PAUSED, "pause")

    def resume_task(self, name: str) -> bool:
        return self._transition(name, TaskStatus.PAUSED, TaskStatus.IDLE, "resume")

    def cancel_task(self, name: str) -> bool:
        with self._lock:
            task = self._find(name)
            if task is None:
                _config_error(f'Cannot cancel: task "{name}" not found.', name=name)
                return False
            self._queue.remove(task)
            return True

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return list(self._queue)

    def simulate_run(self) -> str:
        with self._lock:
            if not self._queue:
                return "No tasks pending for execution."
            sequence = ", ".join(f"{i}. {t.name}" for i, t in enumerate(self._queue, start=1))
        return f"Execution sequence: {sequence}"

    # -------------------------
    # Slots
    # -------------------------

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._slots)

    def slot_ids(self) -> list[str]:
        with self._lock:
            return list(self._slots)

    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    def get_worker_status(self, slot_id: str) -> Optional[SlotStatus]:
        with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None:
                return None
            return SlotStatus(
                current_task=slot.task,
                last_milestone=self._last_milestone.get(slot_id),
                is_idle=slot in self._idle,
            )

    def resize(self, size: int) -> int:
        """
        Grows with new idle slots, or shrinks by removing idle slots only.
        Busy slots are never interrupted, so a shrink may stop early.
        Returns the resulting slot count.
        """
        if size < 0:
            raise ValueError("pool size must be >= 0")

        removed: list[Worker] = []
        with self._lock:
            current = len(self._slots)
            for _ in range(size - current):
                self._add_slot()

            excess = current - size
            while excess > 0 and self._idle:
                slot = self._idle.pop()
                del self._slots[slot.id]
                self._last_milestone.pop(slot.id, None)
                removed.append(slot)
                excess -= 1
            if excess > 0:
                _LOG.warning(
                    "Pool shrink stopped early: %d busy slot(s) kept (size=%d, requested=%d).",
                    excess, len(self._slots), size,
                )
            result = len(self._slots)

        if self._registry is not None:
            for slot in removed:
                self._registry.release_unit(slot.id)
        return result

    def _add_slot(self) -> Worker:
        number = next(self._slot_numbers)
        slot = Worker(
            id=f"pool-worker-{number}",
            name=f"Pool Worker {number}",
            run=_unbound_action,
            timeout_ms=self._slot_timeout_ms,
        )
        self._slots[slot.id] = slot
        self._idle.append(slot)
        if self._registry is not None:
            self._registry.register_unit(slot)
        return slot

    # -------------------------
    # Assignment loop
    # -------------------------

    def start(self) -> None:
        """
        Starts the assignment tick thread. Safe to call more than once.
        """
        if self._thread and self._thread.is_alive():
            return
        _LOG.info("Starting worker pool: slots=%d tick_ms=%d", self.size, int(self._tick_s * 1000))
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="weft-pool", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        """
        Stops assigning new tasks. Dispatched work runs to completion.
        """
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout_s)
            self._thread = None

    def close(self, *, wait: bool = True) -> None:
        self.stop()
        with self._lock:
            dispatcher, self._dispatcher = self._dispatcher, None
            self._dispatch_capacity = 0
        if dispatcher is not None:
            dispatcher.shutdown(wait=wait)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                _LOG.exception("Pool tick failed (continuing).")
            self._stop.wait(timeout=self._tick_s)

    def tick(self) -> Optional[str]:
        """
        Performs at most one assignment. Returns the dispatched task name.
        """
        with self._lock:
            if not self._queue or not self._idle:
                return None
            if self._queue[0].status == TaskStatus.PAUSED:
                return None

            task = self._queue.pop(0)
            slot = self._idle.pop(0)
            task.status = TaskStatus.RUNNING
            dispatcher = self._get_dispatcher()

        self._update_slot(slot, run=task.execute, task=task.name, status=UnitStatus.IDLE)
        _LOG.debug("Assigning task %s (arrangement %d) to %s", task.name, task.arrangement_id, slot.id)
        fut = dispatcher.submit(self._run_on_slot, slot, task)
        fut.add_done_callback(self._on_dispatch_done(task.name))
        return task.name

    def _run_on_slot(self, slot: Worker, task: Task) -> None:
        outcome = "failed"
        try:
            self._executor(slot)
            outcome = "completed"
        except TerminalFailure as e:
            _LOG.warning("Task %s failed on %s: %s", task.name, slot.id, e)
        finally:
            self._update_slot(slot, run=_unbound_action, task=None, status=UnitStatus.IDLE)
            with self._lock:
                self._last_milestone[slot.id] = f"task:{task.name}:{outcome}"
                if slot.id in self._slots:
                    self._idle.append(slot)

    def _on_dispatch_done(self, task_name: str):
        def _cb(fut: Future[None]) -> None:
            try:
                fut.result()
            except Exception as e:
                _LOG.exception("Task %s execution raised: %r", task_name, e)

        return _cb

    # -------------------------
    # Helpers
    # -------------------------

    def _find(self, name: str) -> Optional[Task]:
        for task in self._queue:
            if task.name == name:
                return task
        return None

    def _transition(self, name: str, source: TaskStatus, target: TaskStatus, verb: str) -> bool:
        with self._lock:
            task = self._find(name)
            if task is None:
                _config_error(f'Cannot {verb}: task "{name}" not found.', name=name)
                return False
            if task.status != source:
                _config_error(
                    f'Cannot {verb} task "{name}" from status {task.status}.',
                    name=name,
                    status=task.status.value,
                )
                return False
            task.status = target
            return True

    def _get_dispatcher(self) -> ThreadPoolExecutor:
        capacity = max(len(self._slots), 1)
        if self._dispatcher is None or self._dispatch_capacity < capacity:
            if self._dispatcher is not None:
                # In-flight work on the old executor still completes.
                self._dispatcher.shutdown(wait=False)
            self._dispatcher = ThreadPoolExecutor(max_workers=capacity, thread_name_prefix="weft-pool-slot")
            self._dispatch_capacity = capacity
        return self._dispatcher

    def _update_slot(self, slot: Worker, **changes: Any) -> None:
        if self._registry is not None and self._registry.get_unit_by_id(slot.id) is slot:
            self._registry.update_unit_state(slot.id, **changes)
            return
        for key, value in changes.items():
            setattr(slot, key, value)
