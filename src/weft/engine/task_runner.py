# src/weft/engine/task_runner.py
from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from weft.domain.errors import TerminalFailure, WeftError
from weft.domain.models import TaskFailure, TaskRunnerResult, TaskSuccess, Worker, WorkerTask
from weft.logging import get_logger

from .clock import Clock
from .registry import ReactiveRegistry
from .supervisor import Supervisor

_LOG = get_logger(__name__)

T = TypeVar("T")


def run_worker_tasks(
    tasks: Sequence[WorkerTask],
    *,
    max_retries: int = 0,
    retry_delay: Any = None,
    timeout_ms: int = 10_000,
    clock: Optional[Clock] = None,
) -> TaskRunnerResult:
    """
    Runs `tasks` one after another, each through the Supervisor with the
    same retry, backoff and timeout rules as a worker. A failing task never
    stops the ones after it.

    `retry_delay` takes whatever `Worker.retry_delay` takes: milliseconds,
    a callable of the attempt number, or a backoff policy.
    """
    registry = ReactiveRegistry(clock=clock)
    supervisor = Supervisor(registry, clock=clock)
    result = TaskRunnerResult(total_tasks=len(tasks), success_percentage=100.0)

    for task in tasks:
        worker = Worker(
            id=task.id,
            name=task.id,
            run=task.execute,
            max_retries=max_retries,
            retry_delay=retry_delay,
            timeout_ms=timeout_ms,
        )
        registry.register_unit(worker)
        try:
            value = supervisor.execute(worker)
        except TerminalFailure as e:
            result.failed.append(TaskFailure(id=task.id, error=_error_text(e)))
        else:
            result.successful.append(TaskSuccess(id=task.id, result=value))
        finally:
            registry.release_unit(worker.id)

    if result.total_tasks:
        result.success_percentage = len(result.successful) / result.total_tasks * 100
    _LOG.info(
        "Task runner finished: %d/%d succeeded (%.1f%%).",
        len(result.successful), result.total_tasks, result.success_percentage,
    )
    return result


def run_item_tasks(
    items: Iterable[T],
    execute: Callable[[T], Any],
    *,
    task_id: Optional[Callable[[T], str]] = None,
    **options: Any,
) -> TaskRunnerResult:
    """
    Builds one task per item and runs them with `run_worker_tasks`.
    Task ids come from `task_id(item)`, or `str(item)` by default.
    """
    name = task_id or str
    tasks = [
        WorkerTask(id=name(item), execute=lambda item=item: execute(item))
        for item in items
    ]
    return run_worker_tasks(tasks, **options)


def _error_text(failure: TerminalFailure) -> str:
    cause = failure.__cause__
    if cause is None:
        return failure.message
    if isinstance(cause, WeftError):
        return cause.message
    return str(cause) or type(cause).__name__
