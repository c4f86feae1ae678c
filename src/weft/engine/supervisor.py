# src/weft/engine/supervisor.py
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from weft.domain.errors import AttemptFailure, AttemptTimeout, TerminalFailure
from weft.domain.models import Worker
from weft.domain.states import UnitStatus
from weft.logging import get_logger

from .clock import Clock, SystemClock
from .registry import ReactiveRegistry

_LOG = get_logger(__name__)


class Supervisor:
    """
    Runs one worker invocation with bounded attempts and a bounded
    per-attempt duration. Every execution path in the engine goes through
    `execute`.

    Workers must be registered with the supervisor's registry: status
    changes, metrics and events all go through it.

    Timeout semantics:
    - Each attempt runs on its own attempt thread and is awaited for
      `timeout_ms`.
    - A timed-out attempt cannot be interrupted. It keeps running in the
      background and its eventual result is discarded ("orphaned attempt").
    """

    def __init__(self, registry: ReactiveRegistry, *, clock: Optional[Clock] = None) -> None:
        self._registry = registry
        self._clock = clock or SystemClock()

    def execute(self, worker: Worker) -> Any:
        """
        Returns the action's result, or None if the worker was skipped
        (paused or already completed).

        Raises TerminalFailure after the last attempt failed, or when the
        retry delay policy itself raised; by then the unit is in `error`,
        its error hook ran and the error event is published.
        """
        if worker.status in (UnitStatus.PAUSED, UnitStatus.COMPLETED):
            _LOG.debug("Skipping worker %s (status=%s).", worker.id, worker.status)
            return None

        if self._registry.get_unit_by_id(worker.id) is not worker:
            _LOG.warning(
                "Worker %s is not registered; its status, metrics and events will not be tracked.",
                worker.id,
            )

        self._registry.update_unit_state(worker.id, status=UnitStatus.RUNNING, error=None, skipped=False)
        _call_hook(worker, "on_start")

        max_attempts = worker.max_retries + 1
        attempts = 0
        last_error: Optional[BaseException] = None

        while attempts < max_attempts:
            attempts += 1
            try:
                result = self._run_attempt(worker, attempts)
            except Exception as e:
                last_error = e
                if attempts == max_attempts:
                    break
                try:
                    delay_ms = worker.retry_delay.delay_ms_for(attempts)
                except Exception as delay_error:
                    _LOG.exception("Worker %s retry delay policy raised; giving up.", worker.id)
                    last_error = delay_error
                    break
                _LOG.info(
                    "Worker %s attempt %d/%d failed: %r; retrying in %.0fms",
                    worker.id, attempts, max_attempts, e, delay_ms,
                )
                if delay_ms > 0:
                    self._clock.sleep(delay_ms / 1000.0)
                continue

            self._registry.update_unit_state(worker.id, status=UnitStatus.COMPLETED)
            _call_hook(worker, "on_complete")
            if attempts > 1:
                _LOG.info("Worker %s succeeded on attempt %d.", worker.id, attempts)
            return result

        message = _describe(last_error)
        _LOG.warning("Worker %s failed after %d attempt(s): %s", worker.id, attempts, message)

        self._registry.update_unit_state(worker.id, status=UnitStatus.ERROR, error=message)
        _call_hook(worker, "on_error", last_error)

        raise TerminalFailure(
            f"Worker {worker.id} failed after {attempts} attempt(s): {message}",
            details={"id": worker.id, "attempts": attempts, "timed_out": isinstance(last_error, AttemptTimeout)},
        ) from last_error

    def _run_attempt(self, worker: Worker, attempt: int) -> Any:
        timeout_s = worker.timeout_ms / 1000.0
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"weft-attempt-{worker.id}")
        try:
            future: Future[Any] = pool.submit(worker.run)
            try:
                return future.result(timeout=timeout_s)
            except TimeoutError as e:
                if future.done():
                    # The action raised TimeoutError itself.
                    raise
                future.cancel()
                raise AttemptTimeout(
                    f"Worker {worker.id} attempt {attempt} timed out after {worker.timeout_ms}ms",
                    details={"id": worker.id, "attempt": attempt, "timeout_ms": worker.timeout_ms},
                ) from e
        finally:
            pool.shutdown(wait=False)


def _describe(error: Optional[BaseException]) -> str:
    if error is None:
        return "unknown error"
    if isinstance(error, AttemptFailure):
        return error.message
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


def _call_hook(worker: Worker, name: str, *args: Any) -> None:
    hook: Optional[Callable[..., Any]] = getattr(worker, name)
    if hook is None:
        return
    try:
        hook(*args)
    except Exception:
        _LOG.exception("Worker %s %s hook raised (ignored).", worker.id, name)
