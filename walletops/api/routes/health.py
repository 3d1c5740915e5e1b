from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from walletops.api.deps import get_app_settings, get_job_manager
from walletops.core.config import Settings
from walletops.jobs.service import JobManager

router = APIRouter(tags=["health"])


@router.get("/health")
def get_health(
    settings: Settings = Depends(get_app_settings),
    manager: JobManager = Depends(get_job_manager),
) -> dict[str, object]:
    jobs = manager.list_all()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "jobs": len(jobs),
        "active_jobs": sum(1 for job in jobs if not job.status.terminal),
        "timestamp": datetime.now(tz=timezone.utc),
    }
