from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from walletops.api.deps import get_app_settings, get_job_manager, get_operation_service, get_polling_service, poll_config
from walletops.api.schemas.jobs import (
    BatchLaunchRequest,
    BatchLaunchResponse,
    BatchPollRequest,
    BatchPollResponse,
    CreateJobRequest,
    JobListResponse,
    JobProgressRequest,
    JobProgressResponse,
    JobResponse,
    PollResponse,
)
from walletops.core.config import Settings
from walletops.jobs.polling import BatchPollResult, LongPollingService
from walletops.jobs.service import InvalidJobStateError, JobManager, JobNotFoundError, snapshot_to_dict
from walletops.operations.base import OperationValidationError
from walletops.operations.service import OperationService, parse_operation

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _batch_response(result: BatchPollResult) -> BatchPollResponse:
    return BatchPollResponse(
        state=result.state.value,
        completed=result.completed,
        failed=result.failed,
        cancelled=result.cancelled,
        pending=result.pending,
        missing=result.missing,
        jobs=[JobResponse.model_validate(snapshot_to_dict(item)) for item in result.jobs],
    )


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_job(request: CreateJobRequest, manager: JobManager = Depends(get_job_manager)) -> JobResponse:
    job_id = manager.create_job(request.kind)
    return JobResponse.model_validate(snapshot_to_dict(manager.get_job(job_id)))


@router.get("", response_model=JobListResponse)
def list_jobs(manager: JobManager = Depends(get_job_manager)) -> JobListResponse:
    return JobListResponse(items=[JobResponse.model_validate(snapshot_to_dict(item)) for item in manager.list_all()])


@router.post("/poll", response_model=BatchPollResponse)
async def poll_jobs(
    request: BatchPollRequest,
    settings: Settings = Depends(get_app_settings),
    polling: LongPollingService = Depends(get_polling_service),
) -> BatchPollResponse:
    config = poll_config(settings, request.timeout_ms, request.poll_interval_ms)
    result = await polling.poll_batch_jobs(request.job_ids, config)
    return _batch_response(result)


@router.post("/batch", response_model=BatchLaunchResponse)
async def launch_batch(
    request: BatchLaunchRequest,
    settings: Settings = Depends(get_app_settings),
    operations: OperationService = Depends(get_operation_service),
    polling: LongPollingService = Depends(get_polling_service),
) -> BatchLaunchResponse:
    try:
        params = []
        for index, item in enumerate(request.operations):
            kind = item.get("kind")
            if not isinstance(kind, str):
                raise OperationValidationError(f"operations[{index}]: kind is required")
            parsed = parse_operation(kind, item)
            operations.prepare(parsed)
            params.append(parsed)
    except OperationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    config = poll_config(settings, request.timeout_ms)
    max_concurrent = request.max_concurrent or int(settings.max_concurrent_jobs)
    job_ids = await polling.start_controlled_batch(params, max_concurrent, operations.spawn, config)
    result = await polling.poll_batch_jobs(job_ids, poll_config(settings, 0))
    return BatchLaunchResponse(job_ids=job_ids, result=_batch_response(result))


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobResponse:
    try:
        job = manager.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse.model_validate(snapshot_to_dict(job))


@router.post("/{job_id}/progress", response_model=JobProgressResponse)
def report_progress(
    job_id: str,
    request: JobProgressRequest,
    manager: JobManager = Depends(get_job_manager),
) -> JobProgressResponse:
    if request.completed is not None and request.total is not None:
        accepted = manager.update_progress_items(job_id, request.completed, request.total, request.step)
    else:
        accepted = manager.update_progress(job_id, float(request.percentage or 0.0), request.step)
    return JobProgressResponse(job_id=job_id, accepted=accepted)


@router.post("/{job_id}/cancel", response_model=JobResponse)
def cancel_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobResponse:
    try:
        job = manager.cancel_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobResponse.model_validate(snapshot_to_dict(job))


@router.get("/{job_id}/poll", response_model=PollResponse)
async def poll_job(
    job_id: str,
    timeout_ms: int | None = Query(default=None, ge=0, le=300_000),
    poll_interval_ms: int | None = Query(default=None, ge=10, le=60_000),
    settings: Settings = Depends(get_app_settings),
    polling: LongPollingService = Depends(get_polling_service),
) -> PollResponse:
    try:
        result = await polling.poll_single_job(job_id, poll_config(settings, timeout_ms, poll_interval_ms))
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return PollResponse(state=result.state.value, job=JobResponse.model_validate(snapshot_to_dict(result.job)))
