# src/weft/engine/graph.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from weft.domain.errors import CycleError, TerminalFailure
from weft.domain.models import Worker
from weft.domain.states import UnitStatus
from weft.logging import get_logger

from .registry import ReactiveRegistry
from .report import RunReport

_LOG = get_logger(__name__)

Execute = Callable[[Worker], Any]


class _Readiness(Enum):
    READY = "ready"
    WAIT = "wait"
    SKIP = "skip"


def has_dependencies(workers: Sequence[Worker]) -> bool:
    return any(w.depends_on for w in workers)


def detect_cycle(workers: Sequence[Worker]) -> None:
    """
    Depth-first walk from every worker, tracking the current path.
    Revisiting a node that is already on the path means a cycle.

    Dependencies naming ids outside `workers` are leaves here.
    """
    by_id = {w.id: w for w in workers}
    cleared: set[str] = set()

    def visit(node_id: str, path: list[str]) -> Optional[list[str]]:
        if node_id in path:
            return path[path.index(node_id):] + [node_id]
        if node_id in cleared:
            return None
        node = by_id.get(node_id)
        if node is None:
            return None
        path.append(node_id)
        for dep_id in node.dependency_ids:
            cycle = visit(dep_id, path)
            if cycle:
                return cycle
        path.pop()
        cleared.add(node_id)
        return None

    for worker in workers:
        cycle = visit(worker.id, [])
        if cycle:
            raise CycleError(
                f"Circular dependency detected involving worker {worker.id}",
                details={"id": worker.id, "cycle": cycle},
            )


class DependencyGraphScheduler:
    """
    Wave-based execution of workers that declare `depends_on`.

    Readiness (evaluated for every pending worker before each wave):
    - every dependency is completed in this run, and
    - its optional condition holds for the dependency's recorded result.

    A false condition, or a dependency that was itself skipped, skips the
    worker permanently. When nothing is ready the run ends; workers still
    pending at that point (e.g. depending on ids outside the run) are
    reported as skipped.

    A terminal failure aborts the run after the current wave has joined, so
    nothing that depends on the failed worker ever starts.
    """

    def __init__(self, registry: Optional[ReactiveRegistry] = None, *, max_concurrency: int = 32) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._registry = registry
        self._max_concurrency = max_concurrency

    def run(self, workers: Sequence[Worker], execute: Execute, report: Optional[RunReport] = None) -> RunReport:
        detect_cycle(workers)

        report = report if report is not None else RunReport()
        completed: set[str] = set()
        skipped: set[str] = set()
        results: dict[str, Any] = {}
        pending = list(workers)

        max_workers = min(self._max_concurrency, max(len(workers), 1))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="weft-wave") as pool:
            while pending:
                ready: list[Worker] = []
                waiting: list[Worker] = []
                progressed = False

                for worker in pending:
                    verdict, reason = self._readiness(worker, completed, skipped, results)
                    if verdict is _Readiness.READY:
                        ready.append(worker)
                    elif verdict is _Readiness.SKIP:
                        self._skip(worker, reason, report, skipped)
                        progressed = True
                    else:
                        waiting.append(worker)

                pending = waiting
                if ready:
                    self._run_wave(pool, ready, execute, report, completed, skipped, results)
                elif not progressed:
                    break

        for worker in pending:
            self._skip(worker, "dependencies can never be satisfied", report, skipped)
        return report

    def _readiness(
        self,
        worker: Worker,
        completed: set[str],
        skipped: set[str],
        results: dict[str, Any],
    ) -> tuple[_Readiness, str]:
        verdict = _Readiness.READY
        for dep in worker.depends_on:
            if dep.id in skipped:
                return _Readiness.SKIP, f"dependency {dep.id} was skipped"
            if dep.id not in completed:
                verdict = _Readiness.WAIT
                continue
            if dep.condition is not None and not dep.condition(results.get(dep.id)):
                return _Readiness.SKIP, f"condition on {dep.id} was not met"
        return verdict, ""

    def _run_wave(
        self,
        pool: ThreadPoolExecutor,
        ready: list[Worker],
        execute: Execute,
        report: RunReport,
        completed: set[str],
        skipped: set[str],
        results: dict[str, Any],
    ) -> None:
        _LOG.debug("Starting wave: %s", [w.id for w in ready])
        futures = {pool.submit(execute, w): w for w in ready}
        failure: Optional[BaseException] = None

        for fut in as_completed(futures):
            worker = futures[fut]
            try:
                result = fut.result()
            except TerminalFailure as e:
                report.failed.append(worker.id)
                failure = failure or e
                continue
            except Exception as e:
                _LOG.exception("Worker %s raised outside the supervisor.", worker.id)
                report.failed.append(worker.id)
                failure = failure or e
                continue

            if worker.status == UnitStatus.PAUSED:
                self._skip(worker, "worker is paused", report, skipped)
                continue
            completed.add(worker.id)
            results[worker.id] = result
            report.record_completed(worker.id, result)

        if failure is not None:
            raise failure

    def _skip(self, worker: Worker, reason: str, report: RunReport, skipped: set[str]) -> None:
        _LOG.info("[SKIPPED] Worker %s: %s.", worker.id, reason)
        skipped.add(worker.id)
        report.skipped.append(worker.id)
        if self._registry is not None:
            self._registry.update_unit_state(worker.id, skipped=True)
