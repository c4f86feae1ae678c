# src/weft/domain/states.py
from __future__ import annotations

from enum import StrEnum


class UnitStatus(StrEnum):
    """
    Lifecycle status of a registered unit.

    Supervisor automaton for one invocation:
      idle -> running -> completed | error

    PAUSED units (and already COMPLETED ones) are skipped by the Supervisor.
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    PAUSED = "paused"


class RunMode(StrEnum):
    """
    Ordering strategy for a process whose workers declare no dependencies.
    """

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ISOLATED = "isolated"
    BATCHED = "batched"


class TaskStatus(StrEnum):
    """
    Status of a task waiting in the worker pool queue.
    """

    IDLE = "idle"
    PAUSED = "paused"
    RUNNING = "running"


class EventKind(StrEnum):
    START = "start"
    COMPLETE = "complete"
    ERROR = "error"
    MILESTONE = "milestone"
    UPDATED = "updated"
