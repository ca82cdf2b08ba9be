from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from cascadejobs.api.deps import get_scheduled_delete_service
from cascadejobs.api.schemas.scheduled_deletes import (
    ClearScheduledJobsResponse,
    ScheduledJobListResponse,
    ScheduledJobResponse,
    SessionRequest,
    StartScheduledDeleteRequest,
    StartScheduledDeleteResponse,
)
from cascadejobs.jobs.service import ScheduledDeleteService
from cascadejobs.jobs.store import JobNotFoundError, JobValidationError, snapshot_to_dict
from cascadejobs.planner.types import PlanningError
from cascadejobs.ratelimit.service import RateLimitedError

router = APIRouter(prefix="/scheduled-deletes", tags=["scheduled-deletes"])


def _rate_limited(exc: RateLimitedError) -> HTTPException:
    headers = None if exc.retry_after_seconds is None else {"Retry-After": str(exc.retry_after_seconds)}
    return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc), headers=headers)


@router.post("", response_model=StartScheduledDeleteResponse, status_code=status.HTTP_201_CREATED)
def start_scheduled_delete(
    request: StartScheduledDeleteRequest,
    service: ScheduledDeleteService = Depends(get_scheduled_delete_service),
) -> StartScheduledDeleteResponse:
    try:
        job_id = service.start_scheduled_delete(
            request.table,
            request.id,
            request.chunk_size,
            session_id=request.session_id,
        )
    except RateLimitedError as exc:
        raise _rate_limited(exc) from exc
    except (JobValidationError, PlanningError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return StartScheduledDeleteResponse(job_id=job_id)


@router.get("", response_model=ScheduledJobListResponse)
def list_scheduled_jobs(service: ScheduledDeleteService = Depends(get_scheduled_delete_service)) -> ScheduledJobListResponse:
    items = service.list_scheduled_jobs()
    return ScheduledJobListResponse(items=[ScheduledJobResponse.model_validate(snapshot_to_dict(item)) for item in items])


@router.get("/current", response_model=ScheduledJobResponse)
def get_current_job(service: ScheduledDeleteService = Depends(get_scheduled_delete_service)) -> ScheduledJobResponse:
    job = service.get_current_job()
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No scheduled delete jobs")
    return ScheduledJobResponse.model_validate(snapshot_to_dict(job))


@router.post("/clear", response_model=ClearScheduledJobsResponse)
def clear_scheduled_jobs(
    request: SessionRequest,
    service: ScheduledDeleteService = Depends(get_scheduled_delete_service),
) -> ClearScheduledJobsResponse:
    try:
        cleared = service.clear_scheduled_jobs(session_id=request.session_id)
    except RateLimitedError as exc:
        raise _rate_limited(exc) from exc
    return ClearScheduledJobsResponse(cleared=cleared)


@router.get("/{job_id}", response_model=ScheduledJobResponse)
def get_scheduled_job(job_id: str, service: ScheduledDeleteService = Depends(get_scheduled_delete_service)) -> ScheduledJobResponse:
    try:
        job = service.get_scheduled_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ScheduledJobResponse.model_validate(snapshot_to_dict(job))


@router.post(
    "/{job_id}/cancel",
    response_model=ScheduledJobResponse,
    responses={204: {"description": "Unknown job, nothing to cancel"}},
)
def cancel_scheduled_delete(
    job_id: str,
    request: SessionRequest,
    service: ScheduledDeleteService = Depends(get_scheduled_delete_service),
) -> ScheduledJobResponse | Response:
    try:
        job = service.cancel_scheduled_delete(job_id, session_id=request.session_id)
    except RateLimitedError as exc:
        raise _rate_limited(exc) from exc
    if job is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return ScheduledJobResponse.model_validate(snapshot_to_dict(job))
