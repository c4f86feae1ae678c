# src/weft/engine/run_modes.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Optional, Sequence

from weft.domain.errors import TerminalFailure
from weft.domain.models import Process, Worker
from weft.domain.states import RunMode, UnitStatus
from weft.logging import get_logger

from .clock import Clock, SystemClock
from .graph import DependencyGraphScheduler, has_dependencies
from .registry import ReactiveRegistry
from .report import RunReport

_LOG = get_logger(__name__)

Execute = Callable[[Worker], Any]


class RunModeExecutor:
    """
    Executes a process's workers when none of them declares dependencies.

    - sequential: one at a time, in list order
    - parallel: all at once, fault-isolated join
    - isolated: sequential with `isolation_delay_ms` between workers
    - batched: chunks of `batch_size` in order, each chunk like parallel

    Sequential and isolated runs stop at the first failure; the workers that
    never started are reported (and flagged) as skipped. Parallel and
    batched runs record a failure and carry on. No mode raises.
    """

    def __init__(
        self,
        registry: Optional[ReactiveRegistry] = None,
        *,
        clock: Optional[Clock] = None,
        max_concurrency: int = 32,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._registry = registry
        self._clock = clock or SystemClock()
        self._max_concurrency = max_concurrency

    def run(
        self,
        process: Process,
        workers: Sequence[Worker],
        execute: Execute,
        report: Optional[RunReport] = None,
    ) -> RunReport:
        report = report if report is not None else RunReport()
        mode = RunMode(process.run_mode or RunMode.SEQUENTIAL)

        if mode == RunMode.PARALLEL:
            self._run_concurrently(workers, execute, report)
        elif mode == RunMode.BATCHED:
            size = process.batch_size
            for start in range(0, len(workers), size):
                self._run_concurrently(workers[start:start + size], execute, report)
        else:
            delay_s = process.isolation_delay_ms / 1000.0 if mode == RunMode.ISOLATED else 0.0
            self._run_in_order(workers, execute, report, delay_s)
        return report

    def _run_in_order(self, workers: Sequence[Worker], execute: Execute, report: RunReport, delay_s: float) -> None:
        for index, worker in enumerate(workers):
            if index > 0 and delay_s > 0:
                self._clock.sleep(delay_s)
            if not self._run_one(worker, execute, report):
                self._skip_rest(worker, workers[index + 1:], report)
                return

    def _run_one(self, worker: Worker, execute: Execute, report: RunReport) -> bool:
        try:
            result = execute(worker)
        except Exception as e:
            self._record_failure(worker, e, report)
            return False
        self._record_outcome(worker, result, report)
        return True

    def _skip_rest(self, failed: Worker, rest: Sequence[Worker], report: RunReport) -> None:
        for worker in rest:
            _LOG.info("[SKIPPED] Worker %s: %s failed earlier in the run.", worker.id, failed.id)
            report.skipped.append(worker.id)
            if self._registry is not None:
                self._registry.update_unit_state(worker.id, skipped=True)

    def _run_concurrently(self, workers: Sequence[Worker], execute: Execute, report: RunReport) -> None:
        if not workers:
            return
        max_workers = min(self._max_concurrency, len(workers))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="weft-run") as pool:
            futures = {pool.submit(execute, w): w for w in workers}
            for fut in as_completed(futures):
                worker = futures[fut]
                try:
                    result = fut.result()
                except Exception as e:
                    self._record_failure(worker, e, report)
                else:
                    self._record_outcome(worker, result, report)

    def _record_outcome(self, worker: Worker, result: Any, report: RunReport) -> None:
        if worker.status == UnitStatus.PAUSED:
            report.skipped.append(worker.id)
        else:
            report.record_completed(worker.id, result)

    def _record_failure(self, worker: Worker, error: Exception, report: RunReport) -> None:
        report.failed.append(worker.id)
        if isinstance(error, TerminalFailure):
            _LOG.debug("Worker %s failed: %s", worker.id, error)
        else:
            _LOG.error("Worker %s raised outside the supervisor.", worker.id, exc_info=error)


class ProcessRunner:
    """
    Chooses the execution strategy for a process run: the dependency graph
    when any worker declares `depends_on`, the run mode otherwise.
    """

    def __init__(self, graph: DependencyGraphScheduler, modes: RunModeExecutor) -> None:
        self._graph = graph
        self._modes = modes

    def run(
        self,
        process: Process,
        workers: Sequence[Worker],
        execute: Execute,
        report: Optional[RunReport] = None,
    ) -> RunReport:
        if has_dependencies(workers):
            return self._graph.run(workers, execute, report)
        return self._modes.run(process, workers, execute, report)
