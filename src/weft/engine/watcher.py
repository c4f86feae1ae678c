# src/weft/engine/watcher.py
from __future__ import annotations

from typing import Callable, Optional

from weft.domain.states import UnitStatus
from weft.logging import get_logger

from .clock import Clock, SystemClock
from .events import MilestoneEmitter
from .registry import ReactiveRegistry

_LOG = get_logger(__name__)


class UnitWatcher:
    """
    Periodic health scan over registered workers:
    - releases standalone idle workers whose last run is older than the
      idle threshold (workers owned by a process and protected ids are kept)
    - optionally resets paused workers to idle
    """

    def __init__(
        self,
        registry: ReactiveRegistry,
        milestones: MilestoneEmitter,
        *,
        release: Callable[[str], None],
        clock: Optional[Clock] = None,
        idle_threshold_ms: int = 600_000,
        auto_unpause: bool = False,
        is_protected: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self._registry = registry
        self._milestones = milestones
        self._release = release
        self._clock = clock or SystemClock()
        self._idle_threshold_ms = idle_threshold_ms
        self._auto_unpause = auto_unpause
        self._is_protected = is_protected or (lambda _unit_id: False)

    def scan(self) -> list[str]:
        """
        Returns the ids released by this scan.
        """
        now = self._clock.utcnow()
        released: list[str] = []

        for worker in self._registry.list_workers():
            if self._is_protected(worker.id):
                continue

            if self._auto_unpause and worker.status == UnitStatus.PAUSED:
                self._registry.update_unit_state(worker.id, status=UnitStatus.IDLE)
                self._milestones.emit(f"worker:{worker.id}:unpaused")
                continue

            if worker.status != UnitStatus.IDLE or worker.last_run is None:
                continue
            if self._registry.get_processes_for_worker(worker.id):
                continue

            idle_ms = (now - worker.last_run).total_seconds() * 1000.0
            if idle_ms > self._idle_threshold_ms:
                self._release(worker.id)
                self._milestones.emit(f"worker:{worker.id}:released", {"idle_time_ms": idle_ms})
                released.append(worker.id)

        if released:
            _LOG.info("Watcher released %d stale worker(s): %s", len(released), released)
        return released
