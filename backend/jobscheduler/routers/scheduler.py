"""
Scheduler admin API endpoints.
"""

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi import status as http_status
from pydantic import BaseModel, StrictBool, StrictStr

from ..config import settings
from ..logger import logger
from ..models import ExecutionStatus
from ..scheduler import (
    ConfigurationError,
    JobConfigView,
    PersistenceError,
    SchedulerService,
)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


class JobConfigResponse(BaseModel):
    name: str
    schedule: str
    enabled: bool
    default_schedule: str


class JobStatusResponse(BaseModel):
    """Configuration plus the outcome of the most recent run."""

    name: str
    schedule: str
    enabled: bool
    last_run: Optional[str]
    next_run: Optional[str]
    status: str
    duration: Optional[float]
    error: Optional[str]


class SchedulerHealthResponse(BaseModel):
    enabled: bool
    uptime: Optional[float]
    total_jobs_executed: int
    success_rate: int
    running_jobs: List[str]


class UpdateJobRequest(BaseModel):
    """Request model for updating a job. Omitted fields are left unchanged."""

    schedule: Optional[StrictStr] = None
    enabled: Optional[StrictBool] = None


class UpdateJobResponse(BaseModel):
    success: bool
    message: str
    job: Optional[JobConfigResponse]


class ExecutionResponse(BaseModel):
    id: int
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[int]
    status: str
    error: Optional[str]


def get_scheduler_or_none(request: Request) -> Optional[SchedulerService]:
    return getattr(request.app.state, "scheduler", None)


def get_scheduler(
    scheduler: Optional[SchedulerService] = Depends(get_scheduler_or_none),
) -> SchedulerService:
    if scheduler is None:
        raise HTTPException(
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is not enabled or not initialized",
        )
    return scheduler


def _config_response(config: JobConfigView) -> JobConfigResponse:
    return JobConfigResponse(
        name=config.name,
        schedule=config.schedule,
        enabled=config.enabled,
        default_schedule=config.default_schedule,
    )


@router.get("/status", response_model=List[JobStatusResponse])
async def get_status(scheduler: SchedulerService = Depends(get_scheduler)):
    """
    Status of every registered job.

    Disabled jobs always report ``never_run`` regardless of their history.
    """
    try:
        jobs = []
        for config in scheduler.get_all_job_configs():
            last = await scheduler.execution_tracker.latest(config.name)
            next_run = scheduler.next_run_time(config.name)

            status = last.status.value if last else "never_run"
            jobs.append(
                JobStatusResponse(
                    name=config.name,
                    schedule=config.schedule,
                    enabled=config.enabled,
                    last_run=last.started_at.isoformat() if last else None,
                    next_run=next_run.isoformat() if next_run else None,
                    status=status if config.enabled else "never_run",
                    duration=(
                        last.duration_ms / 1000
                        if last and last.duration_ms is not None
                        else None
                    ),
                    error=last.error if last else None,
                )
            )
        return jobs
    except PersistenceError as e:
        logger.error(f"Failed to get scheduler status: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get scheduler status",
        )


@router.get("/health", response_model=SchedulerHealthResponse)
async def get_health(
    request: Request,
    scheduler: Optional[SchedulerService] = Depends(get_scheduler_or_none),
):
    """Overall execution counters. Success rate is 100 when nothing has run yet."""
    started_at = getattr(request.app.state, "started_at", None)
    uptime = time.monotonic() - started_at if started_at is not None else None

    if scheduler is None:
        return SchedulerHealthResponse(
            enabled=False,
            uptime=uptime,
            total_jobs_executed=0,
            success_rate=100,
            running_jobs=[],
        )

    try:
        total = await scheduler.execution_tracker.count()
        successful = await scheduler.execution_tracker.count(ExecutionStatus.SUCCESS)
    except PersistenceError as e:
        logger.error(f"Failed to get scheduler health: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get scheduler health",
        )

    return SchedulerHealthResponse(
        enabled=settings.scheduler.enabled,
        uptime=uptime,
        total_jobs_executed=total,
        success_rate=round(successful / total * 100) if total > 0 else 100,
        running_jobs=scheduler.running_jobs(),
    )


@router.get("/jobs", response_model=List[JobConfigResponse])
async def list_jobs(scheduler: SchedulerService = Depends(get_scheduler)):
    return [_config_response(config) for config in scheduler.get_all_job_configs()]


@router.get("/jobs/{job_name}", response_model=JobConfigResponse)
async def get_job(job_name: str, scheduler: SchedulerService = Depends(get_scheduler)):
    config = scheduler.get_job_config(job_name)
    if config is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_name} not registered",
        )
    return _config_response(config)


@router.patch("/jobs/{job_name}", response_model=UpdateJobResponse)
async def update_job(
    job_name: str,
    request: UpdateJobRequest,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Update the schedule and/or enabled state of a job.

    The change is persisted and takes effect immediately.
    """
    try:
        await scheduler.update_job_config(
            job_name, schedule=request.schedule, enabled=request.enabled
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Failed to update scheduler job {job_name}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        )

    logger.info(
        f"Scheduler job {job_name} updated (schedule={request.schedule}, enabled={request.enabled})"
    )
    config = scheduler.get_job_config(job_name)
    return UpdateJobResponse(
        success=True,
        message=f"Scheduler job {job_name} updated successfully",
        job=_config_response(config) if config else None,
    )


@router.get("/jobs/{job_name}/executions", response_model=List[ExecutionResponse])
async def get_job_executions(
    job_name: str,
    limit: int = Query(50, ge=1, le=500, description="Maximum number of records"),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """Execution history of a job, newest first."""
    if scheduler.get_job_config(job_name) is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_name} not registered",
        )

    try:
        records = await scheduler.execution_tracker.history(job_name, limit=limit)
    except PersistenceError as e:
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        )

    return [
        ExecutionResponse(
            id=record.id,
            started_at=record.started_at.isoformat(),
            completed_at=record.completed_at.isoformat() if record.completed_at else None,
            duration_ms=record.duration_ms,
            status=record.status.value,
            error=record.error,
        )
        for record in records
    ]
