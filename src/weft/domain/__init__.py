"""
Domain layer for weft.

- states: status / run-mode / event enums
- backoff: retry delay policies
- models: pydantic unit, task and event models
- errors: domain-level exceptions
"""

from .states import EventKind, RunMode, TaskStatus, UnitStatus
from .backoff import BackoffPolicy, CustomBackoff, ExponentialBackoff, FixedBackoff
from .models import (
    Dependency,
    ErrorResponse,
    Event,
    Process,
    PoolTaskView,
    RunReportView,
    SlotStatus,
    Task,
    TaskFailure,
    TaskRunnerResult,
    TaskSuccess,
    Unit,
    UnitMetrics,
    UnitListResponse,
    UnitSnapshot,
    Worker,
    WorkerRunResponse,
    WorkerTask,
)
from .errors import (
    AttemptFailure,
    AttemptTimeout,
    ConfigError,
    CycleError,
    NotFoundError,
    TerminalFailure,
    WeftError,
)

__all__ = [
    "UnitStatus",
    "RunMode",
    "TaskStatus",
    "EventKind",
    "BackoffPolicy",
    "FixedBackoff",
    "ExponentialBackoff",
    "CustomBackoff",
    "Dependency",
    "Worker",
    "Process",
    "Unit",
    "UnitMetrics",
    "UnitSnapshot",
    "Task",
    "SlotStatus",
    "WorkerTask",
    "TaskSuccess",
    "TaskFailure",
    "TaskRunnerResult",
    "Event",
    "ErrorResponse",
    "UnitListResponse",
    "WorkerRunResponse",
    "RunReportView",
    "PoolTaskView",
    "WeftError",
    "ConfigError",
    "CycleError",
    "NotFoundError",
    "AttemptFailure",
    "AttemptTimeout",
    "TerminalFailure",
]
