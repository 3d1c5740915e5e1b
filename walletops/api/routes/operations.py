from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from walletops.api.deps import get_job_manager, get_operation_service
from walletops.api.schemas.operations import JobLaunchResponse, OperationResponse
from walletops.jobs.service import JobManager
from walletops.jobs.types import JobKind
from walletops.ledger.client import LedgerError
from walletops.operations.base import OperationValidationError, PreconditionError
from walletops.operations.service import OperationService, parse_operation

router = APIRouter(prefix="/operations", tags=["operations"])


@router.post("/{kind}", response_model=OperationResponse)
async def run_operation(
    kind: JobKind,
    payload: dict[str, Any] = Body(...),
    service: OperationService = Depends(get_operation_service),
) -> OperationResponse:
    try:
        params = parse_operation(kind, payload)
        report = await service.run_sync(params)
    except OperationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except PreconditionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except LedgerError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return OperationResponse(kind=kind.value, summary=report.summary(), report=report.to_payload())


@router.post("/{kind}/jobs", response_model=JobLaunchResponse, status_code=status.HTTP_202_ACCEPTED)
async def launch_operation(
    kind: JobKind,
    payload: dict[str, Any] = Body(...),
    service: OperationService = Depends(get_operation_service),
    manager: JobManager = Depends(get_job_manager),
) -> JobLaunchResponse:
    try:
        params = parse_operation(kind, payload)
        job_id = service.spawn(params)
    except OperationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    job = manager.get_job(job_id)
    return JobLaunchResponse(job_id=job_id, kind=kind.value, status=job.status.value)
