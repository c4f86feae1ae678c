from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .backoff import BackoffPolicy, FixedBackoff, coerce_backoff
from .states import EventKind, RunMode, TaskStatus, UnitStatus


UnitId = Annotated[str, Field(min_length=1, max_length=256)]


class UnitMetrics(BaseModel):
    """
    Execution metrics. Replaced as a whole on every `completed` transition.
    """
    model_config = ConfigDict(extra="forbid")

    run_count: int = 0
    execution_times_ms: list[float] = Field(default_factory=list)
    average_execution_time_ms: Optional[float] = None

    def with_sample(self, duration_ms: Optional[float]) -> "UnitMetrics":
        times = list(self.execution_times_ms)
        if duration_ms is not None:
            times.append(duration_ms)
        average = sum(times) / len(times) if times else self.average_execution_time_ms
        return UnitMetrics(
            run_count=self.run_count + 1,
            execution_times_ms=times,
            average_execution_time_ms=average,
        )


class Dependency(BaseModel):
    """
    A reference to another worker, optionally gated by a predicate on that
    worker's recorded result.
    """
    model_config = ConfigDict(extra="forbid")

    id: UnitId
    condition: Optional[Callable[[Any], bool]] = None


class _UnitBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: UnitId
    name: str
    description: Optional[str] = None
    enabled: bool = True
    status: UnitStatus = UnitStatus.IDLE
    last_run: Optional[datetime] = None
    meta: UnitMetrics = Field(default_factory=UnitMetrics)
    error: Optional[str] = None

    on_start: Optional[Callable[[], Any]] = None
    on_complete: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[BaseException], Any]] = None


class Worker(_UnitBase):
    """
    Leaf unit wrapping one synchronous action.
    """
    kind: Literal["worker"] = "worker"

    run: Callable[[], Any]
    timeout_ms: Annotated[int, Field(gt=0)] = 10_000
    max_retries: Annotated[int, Field(ge=0)] = 0
    retry_delay: BackoffPolicy = Field(default_factory=FixedBackoff)
    depends_on: list[Dependency] = Field(default_factory=list)
    process_id: Optional[str] = None

    # Set when a dependency-graph run decided this worker must not execute.
    skipped: bool = False
    # Name of the pool task currently bound to this worker (pool slots only).
    task: Optional[str] = None
    # Disable the worker once meta.run_count reaches this value.
    max_runs: Optional[Annotated[int, Field(gt=0)]] = None

    @field_validator("retry_delay", mode="before")
    @classmethod
    def _coerce_retry_delay(cls, value: Any) -> Any:
        return coerce_backoff(value)

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_dependencies(cls, deps: Any) -> Any:
        if deps is None:
            return []
        return [{"id": d} if isinstance(d, str) else d for d in deps]

    @model_validator(mode="after")
    def _validate_dependencies(self):
        ids = [d.id for d in self.depends_on]
        if len(ids) != len(set(ids)):
            raise ValueError("depends_on must not contain duplicates")
        if self.id in ids:
            raise ValueError("worker cannot depend on itself")
        return self

    @property
    def dependency_ids(self) -> list[str]:
        return [d.id for d in self.depends_on]

    def to_snapshot(self) -> "UnitSnapshot":
        return UnitSnapshot(
            kind="worker",
            id=self.id,
            name=self.name,
            description=self.description,
            enabled=self.enabled,
            status=self.status,
            last_run=self.last_run,
            meta=self.meta.model_copy(deep=True),
            error=self.error,
            process_id=self.process_id,
            depends_on=self.dependency_ids,
            skipped=self.skipped,
            task=self.task,
        )


class Process(_UnitBase):
    """
    Composite unit. Exclusively owns its ordered worker list.
    """
    kind: Literal["process"] = "process"

    workers: list[Worker] = Field(default_factory=list)
    run_mode: RunMode = RunMode.SEQUENTIAL
    isolation_delay_ms: Annotated[int, Field(ge=0)] = 100
    batch_size: Annotated[int, Field(gt=0)] = 2

    @model_validator(mode="after")
    def _claim_workers(self):
        ids = [w.id for w in self.workers]
        if len(ids) != len(set(ids)):
            raise ValueError("process contains duplicate worker ids")
        if self.id in ids:
            raise ValueError("process id must differ from its worker ids")
        for worker in self.workers:
            worker.process_id = self.id
        return self

    def to_snapshot(self) -> "UnitSnapshot":
        return UnitSnapshot(
            kind="process",
            id=self.id,
            name=self.name,
            description=self.description,
            enabled=self.enabled,
            status=self.status,
            last_run=self.last_run,
            meta=self.meta.model_copy(deep=True),
            error=self.error,
            run_mode=self.run_mode,
            worker_ids=[w.id for w in self.workers],
        )


Unit = Annotated[Union[Worker, Process], Field(discriminator="kind")]


class UnitSnapshot(BaseModel):
    """
    Serializable view of a unit (no callables). Used by storage adapters,
    renderers and the host router.
    """
    model_config = ConfigDict(extra="forbid")

    kind: Literal["worker", "process"]
    id: str
    name: str
    description: Optional[str] = None
    enabled: bool = True
    status: UnitStatus = UnitStatus.IDLE
    last_run: Optional[datetime] = None
    meta: UnitMetrics = Field(default_factory=UnitMetrics)
    error: Optional[str] = None

    # worker-only
    process_id: Optional[str] = None
    depends_on: list[str] = Field(default_factory=list)
    skipped: bool = False
    task: Optional[str] = None

    # process-only
    run_mode: Optional[RunMode] = None
    worker_ids: list[str] = Field(default_factory=list)


class Task(BaseModel):
    """
    Entry of the worker pool queue. `arrangement_id` is the only ordering key.
    """
    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1)]
    arrangement_id: int
    execute: Callable[[], Any]
    status: TaskStatus = TaskStatus.IDLE
    payload: Any = None


class SlotStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_task: Optional[str] = None
    last_milestone: Optional[str] = None
    is_idle: bool


class WorkerTask(BaseModel):
    """
    One named sub-task for the task runner.
    """
    model_config = ConfigDict(extra="forbid")

    id: UnitId
    execute: Callable[[], Any]


class TaskSuccess(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    result: Any = None


class TaskFailure(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    error: str


class TaskRunnerResult(BaseModel):
    """
    Outcome of a task runner call. `success_percentage` is 100 for an empty
    task list.
    """
    model_config = ConfigDict(extra="forbid")

    total_tasks: int
    successful: list[TaskSuccess] = Field(default_factory=list)
    failed: list[TaskFailure] = Field(default_factory=list)
    success_percentage: float


class Event(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: EventKind
    unit_id: Optional[str] = None
    milestone_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)


class UnitListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    units: list[UnitSnapshot]
    total: int


class WorkerRunResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    status: UnitStatus
    error: Optional[str] = None


class RunReportView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    status: UnitStatus
    ok: bool
    completed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class PoolTaskView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    arrangement_id: int
    status: TaskStatus
