# src/weft/engine/__init__.py
"""
Execution engine for weft.

- registry: reactive unit store + status propagation
- supervisor: retries, backoff and per-attempt timeouts
- task_runner: retrying sub-task lists with a summary result
- graph / run_modes: process execution strategies
- pool: task queue over reusable worker slots
- watcher: idle release / auto-unpause scan
- manager: Engine façade + background loop
"""

from .clock import Clock, ManualClock, SystemClock
from .events import EventBus, MilestoneEmitter
from .graph import DependencyGraphScheduler, detect_cycle
from .manager import Engine
from .pool import WorkerPool
from .recovery import recover_snapshots
from .registry import ReactiveRegistry, aggregate_status
from .report import RunReport
from .run_modes import ProcessRunner, RunModeExecutor
from .supervisor import Supervisor
from .task_runner import run_item_tasks, run_worker_tasks
from .visualizer import LoggingVisualizer
from .watcher import UnitWatcher

__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "EventBus",
    "MilestoneEmitter",
    "ReactiveRegistry",
    "aggregate_status",
    "Supervisor",
    "run_worker_tasks",
    "run_item_tasks",
    "DependencyGraphScheduler",
    "detect_cycle",
    "RunModeExecutor",
    "ProcessRunner",
    "RunReport",
    "WorkerPool",
    "UnitWatcher",
    "LoggingVisualizer",
    "recover_snapshots",
    "Engine",
]
