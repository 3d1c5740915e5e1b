from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class OperationResponse(BaseModel):
    kind: str
    summary: str
    report: dict[str, Any]


class JobLaunchResponse(BaseModel):
    job_id: str
    kind: str
    status: str
