"""
Jobs router for job management API.

Endpoints:
- POST /jobs?forceCreate=true   - Create job (409 on duplicate)
- GET /jobs                     - List jobs (paginated, newest first)
- GET /jobs/upcoming            - Enabled PENDING jobs by next run
- GET /jobs/{job_id}            - Get job details
- PUT /jobs/{job_id}            - Update job
- DELETE /jobs/{job_id}         - Delete job
- PATCH /jobs/{job_id}/enable   - Enable job
- PATCH /jobs/{job_id}/disable  - Disable job

Route handlers are sync so the blocking service calls run in FastAPI's
threadpool.
"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from src.scheduler.entities import JobDefinition, JobStatus
from src.scheduler.errors import (
    DuplicateJobError,
    InvalidJobUpdateError,
    TransientDependencyError,
)

from ..schemas.jobs import (
    DuplicateJobResponse,
    JobCreateRequest,
    JobListResponse,
    JobResponse,
    JobUpdateRequest,
)
from .._scheduler_state import get_job_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _duplicate_response(error: DuplicateJobError) -> JSONResponse:
    body = DuplicateJobResponse(
        message=str(error),
        existing_job=JobResponse.from_job(error.existing_job),
    )
    return JSONResponse(status_code=409, content=body.model_dump(mode="json", by_alias=True))


def _unavailable(action: str, error: TransientDependencyError) -> HTTPException:
    logger.error(f"[JobsAPI] Failed to {action}: {error}")
    return HTTPException(status_code=503, detail=f"Failed to {action}: {error}")


def _not_found(job_id: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Job not found: {job_id}")


@router.post(
    "",
    response_model=JobResponse,
    status_code=201,
    responses={409: {"model": DuplicateJobResponse}},
)
def create_job(
    request: JobCreateRequest,
    force_create: bool = Query(default=False, alias="forceCreate", description="Skip duplicate detection"),
):
    """
    Create a new job.

    Identical jobs (same name, frequency, cronExpression and data) are
    rejected with 409 unless forceCreate=true.
    """
    service = get_job_service()

    definition = JobDefinition(
        name=request.name,
        frequency=request.frequency,
        start_date=request.start_date,
        cron_expression=request.cron_expression,
        end_date=request.end_date,
        description=request.description,
        enabled=request.enabled,
        data=request.data,
        max_retries=request.max_retries,
    )

    try:
        job = service.create(definition, force_create=force_create)
    except DuplicateJobError as e:
        logger.warning(
            f"[JobsAPI] Duplicate job creation attempt: '{request.name}' "
            f"(existing job {e.existing_job_id})"
        )
        return _duplicate_response(e)
    except TransientDependencyError as e:
        raise _unavailable("create job", e)

    return JobResponse.from_job(job)


@router.get("", response_model=JobListResponse)
def list_jobs(
    page: int = Query(default=1, ge=1, description="Page number"),
    limit: int = Query(default=10, ge=1, description="Page size (capped at 100)"),
    status: Optional[JobStatus] = Query(default=None, description="Filter by status"),
):
    """
    List jobs, newest first.
    """
    service = get_job_service()
    limit = min(limit, 100)

    try:
        jobs, total = service.list_jobs(page=page, limit=limit, status=status)
    except TransientDependencyError as e:
        raise _unavailable("list jobs", e)

    return JobListResponse(
        jobs=[JobResponse.from_job(job) for job in jobs],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/upcoming", response_model=list[JobResponse])
def list_upcoming_jobs(
    limit: int = Query(default=10, ge=1, le=100, description="Maximum jobs to return"),
):
    """Enabled PENDING jobs ordered by next run time."""
    service = get_job_service()

    try:
        jobs = service.list_upcoming(limit=limit)
    except TransientDependencyError as e:
        raise _unavailable("list upcoming jobs", e)

    return [JobResponse.from_job(job) for job in jobs]


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: int):
    """Get a specific job by ID."""
    service = get_job_service()

    try:
        job = service.get_job(job_id)
    except TransientDependencyError as e:
        raise _unavailable("get job", e)

    if job is None:
        raise _not_found(job_id)

    return JobResponse.from_job(job)


@router.put(
    "/{job_id}",
    response_model=JobResponse,
    responses={409: {"model": DuplicateJobResponse}},
)
def update_job(job_id: int, request: JobUpdateRequest):
    """
    Update a job.

    Only fields present in the body are changed. The job is re-queued if it
    ends up enabled and PENDING.
    """
    service = get_job_service()

    try:
        job = service.update(job_id, request.to_changes())
    except DuplicateJobError as e:
        return _duplicate_response(e)
    except InvalidJobUpdateError as e:
        logger.info(f"[JobsAPI] Rejected update of job {job_id}: {e.reason}")
        raise HTTPException(status_code=422, detail=e.reason)
    except TransientDependencyError as e:
        raise _unavailable("update job", e)

    if job is None:
        raise _not_found(job_id)

    return JobResponse.from_job(job)


@router.delete("/{job_id}", status_code=204)
def delete_job(job_id: int):
    """Delete a job, its queue entry and its cache entries."""
    service = get_job_service()

    try:
        deleted = service.delete(job_id)
    except TransientDependencyError as e:
        raise _unavailable("delete job", e)

    if not deleted:
        raise _not_found(job_id)

    return Response(status_code=204)


@router.patch("/{job_id}/enable", response_model=JobResponse)
def enable_job(job_id: int):
    """Enable a job. PENDING jobs go back on the work queue."""
    service = get_job_service()

    try:
        job = service.enable(job_id)
    except TransientDependencyError as e:
        raise _unavailable("enable job", e)

    if job is None:
        raise _not_found(job_id)

    return JobResponse.from_job(job)


@router.patch("/{job_id}/disable", response_model=JobResponse)
def disable_job(job_id: int):
    """Disable a job and remove it from the work queue."""
    service = get_job_service()

    try:
        job = service.disable(job_id)
    except TransientDependencyError as e:
        raise _unavailable("disable job", e)

    if job is None:
        raise _not_found(job_id)

    return JobResponse.from_job(job)
