from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from walletops.jobs.types import JobKind


class CreateJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: JobKind


class JobProgressRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    completed: int | None = Field(default=None, ge=0)
    total: int | None = Field(default=None, ge=0)
    percentage: float | None = Field(default=None, ge=0.0, le=100.0)
    step: str | None = Field(default=None, max_length=512)

    @model_validator(mode="after")
    def _require_one_form(self) -> "JobProgressRequest":
        has_items = self.completed is not None or self.total is not None
        if has_items and (self.completed is None or self.total is None):
            raise ValueError("completed and total must be provided together")
        if not has_items and self.percentage is None:
            raise ValueError("either completed/total or percentage is required")
        return self


class JobProgressResponse(BaseModel):
    job_id: str
    accepted: bool


class JobProgressModel(BaseModel):
    completed: int
    total: int
    percentage: float
    step: str | None


class JobResponse(BaseModel):
    id: str
    kind: str
    status: str
    progress: JobProgressModel
    result: Any
    error_message: str | None
    cancel_requested: bool
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class JobListResponse(BaseModel):
    items: list[JobResponse]


class PollResponse(BaseModel):
    state: str
    job: JobResponse


class BatchPollRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_ids: list[str] = Field(min_length=1, max_length=200)
    timeout_ms: int | None = Field(default=None, ge=0, le=300_000)
    poll_interval_ms: int | None = Field(default=None, ge=10, le=60_000)


class BatchPollResponse(BaseModel):
    state: str
    completed: int
    failed: int
    cancelled: int
    pending: int
    missing: list[str]
    jobs: list[JobResponse]


class BatchLaunchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operations: list[dict[str, Any]] = Field(min_length=1, max_length=200)
    max_concurrent: int | None = Field(default=None, ge=1, le=50)
    timeout_ms: int | None = Field(default=None, ge=0, le=3_600_000)


class BatchLaunchResponse(BaseModel):
    job_ids: list[str]
    result: BatchPollResponse
