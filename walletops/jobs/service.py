from __future__ import annotations

import asyncio
import functools
import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar
from uuid import uuid4

from pydantic_core import PydanticSerializationError, to_jsonable_python

from walletops.core.config import Settings
from walletops.jobs.types import (
    TERMINAL_STATUSES,
    CancellationToken,
    JobCompletion,
    JobKind,
    JobProgress,
    JobSnapshot,
    JobStatus,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")


class JobNotFoundError(RuntimeError):
    pass


class InvalidJobStateError(RuntimeError):
    pass


class JobCancelledError(RuntimeError):
    pass


ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {
        JobStatus.SUCCEEDED,
        JobStatus.PARTIALLY_SUCCEEDED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    },
    JobStatus.SUCCEEDED: set(),
    JobStatus.PARTIALLY_SUCCEEDED: set(),
    JobStatus.FAILED: set(),
    JobStatus.CANCELLED: set(),
}


@dataclass(slots=True)
class _JobRecord:
    id: str
    kind: JobKind
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    progress: JobProgress = field(default_factory=JobProgress)
    token: CancellationToken = field(default_factory=CancellationToken)
    staged_result: Any = None
    result: Any = None
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(frozen=True)
class JobContext:
    job_id: str
    manager: "JobManager"
    cancel_token: CancellationToken

    def report(self, completed: int, total: int, step: str | None = None) -> bool:
        return self.manager.update_progress_items(self.job_id, completed, total, step)

    def set_total(self, total: int) -> bool:
        return self.manager.set_total_items(self.job_id, total)

    def raise_if_cancelled(self) -> None:
        if self.cancel_token.cancelled:
            raise JobCancelledError(f"Job {self.job_id} was cancelled")

    async def run_blocking(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        return await self.manager.run_blocking(fn, *args, **kwargs)


JobWork = Callable[[JobContext], Awaitable[JobCompletion | None]]


class JobManager:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._capacity = int(settings.job_registry_capacity)
        self._lock = threading.Lock()
        self._jobs: OrderedDict[str, _JobRecord] = OrderedDict()
        self._tasks: set[asyncio.Task[None]] = set()
        self._blocking_pool = ThreadPoolExecutor(
            max_workers=int(settings.blocking_pool_workers),
            thread_name_prefix="walletops-ledger",
        )

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _enforce_transition(self, from_status: JobStatus, to_status: JobStatus) -> None:
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise InvalidJobStateError(f"Illegal transition: {from_status.value} -> {to_status.value}")

    def _evict_if_needed(self) -> None:
        # caller holds self._lock
        overflow = len(self._jobs) - self._capacity
        if overflow <= 0:
            return
        evictable = [job_id for job_id, record in self._jobs.items() if record.status in TERMINAL_STATUSES]
        for job_id in evictable[:overflow]:
            del self._jobs[job_id]
        if len(evictable) < overflow:
            logger.warning(
                "Job registry holds %d jobs above capacity %d; no terminal jobs left to evict",
                len(self._jobs) - self._capacity,
                self._capacity,
            )

    def _touch(self, record: _JobRecord) -> None:
        record.updated_at = self._now()
        self._jobs.move_to_end(record.id)

    def _new_record(self, kind: JobKind) -> _JobRecord:
        now = self._now()
        return _JobRecord(id=str(uuid4()), kind=kind, status=JobStatus.PENDING, created_at=now, updated_at=now)

    def _register(self, record: _JobRecord) -> None:
        self._jobs[record.id] = record
        self._evict_if_needed()

    def create_job(self, kind: JobKind) -> str:
        record = self._new_record(kind)
        with self._lock:
            self._register(record)
        logger.info("Created job %s (%s)", record.id, kind.value)
        return record.id

    def spawn_job(self, kind: JobKind, work: JobWork) -> str:
        loop = asyncio.get_running_loop()
        record = self._new_record(kind)
        job_id = record.id
        # registered already running so no caller can observe or cancel it as pending
        self._enforce_transition(record.status, JobStatus.RUNNING)
        record.status = JobStatus.RUNNING
        record.started_at = record.created_at
        with self._lock:
            self._register(record)
            context = JobContext(job_id=job_id, manager=self, cancel_token=record.token)
        logger.info("Created job %s (%s)", job_id, kind.value)

        task = loop.create_task(self._execute(context, work), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job_id

    async def _execute(self, context: JobContext, work: JobWork) -> None:
        try:
            completion = await work(context)
        except JobCancelledError as exc:
            self._finish(context.job_id, JobStatus.CANCELLED, error_message=str(exc))
            return
        except asyncio.CancelledError:
            self._finish(context.job_id, JobStatus.CANCELLED, error_message="Job task was cancelled")
            raise
        except Exception as exc:
            logger.exception("Job %s failed", context.job_id)
            self._finish(context.job_id, JobStatus.FAILED, error_message=str(exc) or type(exc).__name__)
            return

        completion = completion or JobCompletion()
        if completion.failed:
            status = JobStatus.FAILED
        elif completion.partial:
            status = JobStatus.PARTIALLY_SUCCEEDED
        else:
            status = JobStatus.SUCCEEDED
        self._finish(
            context.job_id,
            status,
            payload=completion.payload,
            error_message=completion.error_message,
        )

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        payload: Any = None,
        error_message: str | None = None,
    ) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                logger.warning("Job %s finished after eviction; result dropped", job_id)
                return
            if record.status in TERMINAL_STATUSES:
                return
            raw_result = payload if payload is not None else record.staged_result
            try:
                result = to_jsonable_python(raw_result)
            except PydanticSerializationError as exc:
                status = JobStatus.FAILED
                error_message = f"Failed to serialize result: {exc}"
                result = None
            if result is None and status == JobStatus.FAILED:
                result = error_message
            self._enforce_transition(record.status, status)
            now = self._now()
            record.status = status
            record.result = result
            record.error_message = error_message
            record.finished_at = now
            if status == JobStatus.SUCCEEDED and record.progress.total:
                record.progress.completed = record.progress.total
                record.progress.percentage = 100.0
            self._touch(record)
            self._evict_if_needed()
        logger.info("Job %s finished with status %s", job_id, status.value)

    def update_progress(self, job_id: str, percentage: float, step: str | None = None) -> bool:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.status in TERMINAL_STATUSES:
                return False
            record.progress.percentage = max(0.0, min(float(percentage), 100.0))
            if step is not None:
                record.progress.step = step
            self._touch(record)
            return True

    def update_progress_items(self, job_id: str, completed: int, total: int, step: str | None = None) -> bool:
        if completed < 0 or total < 0:
            return False
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.status in TERMINAL_STATUSES:
                return False
            progress = record.progress
            new_completed = max(int(completed), progress.completed)
            new_total = max(int(total), new_completed)
            progress.completed = new_completed
            progress.total = new_total
            progress.percentage = (new_completed / new_total * 100.0) if new_total else 0.0
            if step is not None:
                progress.step = step
            self._touch(record)
            return True

    def set_total_items(self, job_id: str, total: int) -> bool:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.status in TERMINAL_STATUSES or total < record.progress.completed:
                return False
            record.progress.total = int(total)
            record.progress.percentage = (record.progress.completed / total * 100.0) if total else 0.0
            self._touch(record)
            return True

    def set_job_result(self, job_id: str, payload: Any) -> bool:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.status in TERMINAL_STATUSES:
                return False
            record.staged_result = payload
            self._touch(record)
            return True

    def cancel_job(self, job_id: str) -> JobSnapshot:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            if record.status in TERMINAL_STATUSES:
                raise InvalidJobStateError(f"Job {job_id} is already {record.status.value}")
            record.token.cancel()
            if record.status == JobStatus.PENDING:
                self._enforce_transition(record.status, JobStatus.CANCELLED)
                record.status = JobStatus.CANCELLED
                record.error_message = "Cancelled before start"
                record.result = record.error_message
                record.finished_at = self._now()
            self._touch(record)
            snapshot = self._to_snapshot(record)
        logger.info("Cancellation requested for job %s", job_id)
        return snapshot

    def get_info(self, job_id: str) -> JobSnapshot | None:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                return None
            self._jobs.move_to_end(job_id)
            return self._to_snapshot(record)

    def get_job(self, job_id: str) -> JobSnapshot:
        snapshot = self.get_info(job_id)
        if snapshot is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return snapshot

    def list_all(self) -> list[JobSnapshot]:
        with self._lock:
            snapshots = [self._to_snapshot(record) for record in self._jobs.values()]
        return sorted(snapshots, key=lambda item: item.created_at, reverse=True)

    async def run_blocking(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._blocking_pool, functools.partial(fn, *args, **kwargs))

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._blocking_pool.shutdown(wait=False, cancel_futures=True)

    def _to_snapshot(self, record: _JobRecord) -> JobSnapshot:
        return JobSnapshot(
            id=record.id,
            kind=record.kind,
            status=record.status,
            progress=replace(record.progress),
            result=record.result,
            error_message=record.error_message,
            cancel_requested=record.token.cancelled,
            created_at=record.created_at,
            updated_at=record.updated_at,
            started_at=record.started_at,
            finished_at=record.finished_at,
        )


def snapshot_to_dict(snapshot: JobSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "kind": snapshot.kind.value,
        "status": snapshot.status.value,
        "progress": {
            "completed": snapshot.progress.completed,
            "total": snapshot.progress.total,
            "percentage": snapshot.progress.percentage,
            "step": snapshot.progress.step,
        },
        "result": snapshot.result,
        "error_message": snapshot.error_message,
        "cancel_requested": snapshot.cancel_requested,
        "created_at": snapshot.created_at,
        "updated_at": snapshot.updated_at,
        "started_at": snapshot.started_at,
        "finished_at": snapshot.finished_at,
    }
