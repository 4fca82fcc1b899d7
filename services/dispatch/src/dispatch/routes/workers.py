"""Worker API endpoints."""

from fastapi import APIRouter, Depends

from services.dispatch.src.dispatch.core.engine import DispatchEngine
from services.dispatch.src.dispatch.db.schemas import WorkerRecord
from services.dispatch.src.dispatch.routes.issues import _dispatch, _str_dt
from services.dispatch.src.dispatch.schemas.responses import (
    AvailabilityRequest,
    RegisterWorkerRequest,
    WorkerMetricsResponse,
    WorkerResponse,
)

router = APIRouter()


def _worker_response(w: WorkerRecord) -> WorkerResponse:
    return WorkerResponse(
        id=w.id,
        name=w.name,
        department=w.department,
        availability=w.availability.value,
        last_assigned_at=_str_dt(w.last_assigned_at),
        eligible_at=_str_dt(w.eligible_at),
    )


@router.post("", response_model=WorkerResponse)
def register_worker(
    body: RegisterWorkerRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> WorkerResponse:
    return _worker_response(dispatch.register_worker(body.name, body.department))


@router.get("/eligible", response_model=list[WorkerResponse])
def list_eligible(dispatch: DispatchEngine = Depends(_dispatch)) -> list[WorkerResponse]:
    """Workers that can be dispatched right now (cooldown applied)."""
    return [_worker_response(w) for w in dispatch.eligible_workers()]


@router.get("/{worker_id}", response_model=WorkerResponse)
def get_worker(worker_id: str, dispatch: DispatchEngine = Depends(_dispatch)) -> WorkerResponse:
    return _worker_response(dispatch.get_worker(worker_id))


@router.put("/{worker_id}/availability", response_model=WorkerResponse)
def set_availability(
    worker_id: str,
    body: AvailabilityRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> WorkerResponse:
    return _worker_response(dispatch.set_worker_availability(worker_id, body.available))


@router.get("/{worker_id}/metrics", response_model=WorkerMetricsResponse)
def get_metrics(
    worker_id: str,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> WorkerMetricsResponse:
    m = dispatch.worker_metrics(worker_id)
    return WorkerMetricsResponse(
        worker_id=m.worker_id,
        total_assigned=m.total_assigned,
        total_resolved=m.total_resolved,
        rework_count=m.rework_count,
        rating_count=m.rating_count,
        rating_avg=m.rating_avg,
    )
