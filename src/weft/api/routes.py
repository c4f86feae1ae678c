# src/weft/api/routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from weft.domain.errors import CycleError, NotFoundError, WeftError
from weft.domain.models import (
    ErrorResponse,
    PoolTaskView,
    Process,
    RunReportView,
    UnitListResponse,
    UnitSnapshot,
    WorkerRunResponse,
)
from weft.engine.manager import Engine
from weft.logging import get_logger

from .deps import get_engine

_LOG = get_logger(__name__)
router = APIRouter()


def _error_response(err: WeftError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


def _not_found(kind: str, unit_id: str) -> JSONResponse:
    return _error_response(NotFoundError(f"{kind} not found: {unit_id}", details={"id": unit_id}), 404)


@router.get("/healthz")
def healthz(engine: Engine = Depends(get_engine)) -> dict:
    return {"ok": True, "running": engine.running}


@router.get("/units", response_model=UnitListResponse)
def list_units(engine: Engine = Depends(get_engine)):
    units = engine.get_registry_snapshot()
    return UnitListResponse(units=units, total=len(units))


@router.get("/units/{unit_id}", response_model=UnitSnapshot)
def get_unit(unit_id: str, engine: Engine = Depends(get_engine)):
    unit = engine.get_unit_by_id(unit_id)
    if unit is None:
        return _not_found("Unit", unit_id)
    return unit.to_snapshot()


@router.post("/workers/{worker_id}/run", response_model=WorkerRunResponse)
def run_worker(worker_id: str, engine: Engine = Depends(get_engine)):
    """
    Runs one worker synchronously. A terminal failure is reported through
    the returned status/error, not as an HTTP error.
    """
    if engine.registry.get_worker_by_id(worker_id) is None:
        return _not_found("Worker", worker_id)
    engine.run_worker(worker_id)
    worker = engine.registry.get_worker_by_id(worker_id)
    if worker is None:
        # Released while running.
        return _not_found("Worker", worker_id)
    return WorkerRunResponse(id=worker.id, status=worker.status, error=worker.error)


@router.post("/processes/{process_id}/run", response_model=RunReportView)
def run_process(process_id: str, engine: Engine = Depends(get_engine)):
    process = engine.get_unit_by_id(process_id)
    if not isinstance(process, Process):
        return _not_found("Process", process_id)
    try:
        report = engine.run_process(process_id)
    except CycleError as e:
        return _error_response(e, 400)

    status = engine.get_unit_status(process_id) or process.status
    if report is None:
        return RunReportView(id=process_id, status=status, ok=False)
    return RunReportView(id=process_id, status=status, ok=report.ok, **report.as_dict())


@router.get("/pool/tasks", response_model=list[PoolTaskView])
def list_pool_tasks(engine: Engine = Depends(get_engine)):
    pool = engine.pool
    if pool is None:
        return []
    return [
        PoolTaskView(name=t.name, arrangement_id=t.arrangement_id, status=t.status)
        for t in pool.list_tasks()
    ]
