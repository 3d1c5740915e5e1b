from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Sequence

from walletops.jobs.service import JobManager
from walletops.jobs.types import JobSnapshot, JobStatus

logger = logging.getLogger(__name__)


class PollState(str, Enum):
    DONE = "done"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class LongPollConfig:
    timeout_ms: int = 30_000
    poll_interval_ms: int = 500

    def __post_init__(self) -> None:
        if self.timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be greater than zero")


@dataclass(slots=True)
class PollResult:
    state: PollState
    job: JobSnapshot


@dataclass(slots=True)
class BatchPollResult:
    state: PollState
    jobs: list[JobSnapshot] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return sum(1 for job in self.jobs if job.status in {JobStatus.SUCCEEDED, JobStatus.PARTIALLY_SUCCEEDED})

    @property
    def failed(self) -> int:
        return sum(1 for job in self.jobs if job.status == JobStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return sum(1 for job in self.jobs if job.status == JobStatus.CANCELLED)

    @property
    def pending(self) -> int:
        return sum(1 for job in self.jobs if not job.status.terminal)


Launch = Callable[[Any], str]


class LongPollingService:
    """Pull-based waiting on the job registry.

    Every wait re-reads snapshots from the manager at a fixed interval until
    the jobs are terminal or the timeout elapses.
    """

    def __init__(self, manager: JobManager, *, clock: Callable[[], float] = time.monotonic):
        self._manager = manager
        self._clock = clock

    async def poll_single_job(self, job_id: str, config: LongPollConfig | None = None) -> PollResult:
        config = config or LongPollConfig()
        deadline = self._clock() + config.timeout_ms / 1000.0
        while True:
            job = self._manager.get_job(job_id)
            if job.status.terminal:
                return PollResult(state=PollState.DONE, job=job)
            remaining = deadline - self._clock()
            if remaining <= 0:
                return PollResult(state=PollState.TIMED_OUT, job=job)
            await asyncio.sleep(min(config.poll_interval_ms / 1000.0, remaining))

    async def poll_batch_jobs(self, job_ids: Sequence[str], config: LongPollConfig | None = None) -> BatchPollResult:
        config = config or LongPollConfig()
        deadline = self._clock() + config.timeout_ms / 1000.0
        while True:
            jobs: list[JobSnapshot] = []
            missing: list[str] = []
            for job_id in job_ids:
                snapshot = self._manager.get_info(job_id)
                if snapshot is None:
                    missing.append(job_id)
                else:
                    jobs.append(snapshot)
            if all(job.status.terminal for job in jobs):
                return BatchPollResult(state=PollState.DONE, jobs=jobs, missing=missing)
            remaining = deadline - self._clock()
            if remaining <= 0:
                return BatchPollResult(state=PollState.TIMED_OUT, jobs=jobs, missing=missing)
            await asyncio.sleep(min(config.poll_interval_ms / 1000.0, remaining))

    async def start_controlled_batch(
        self,
        requests: Sequence[Any],
        max_concurrent: int,
        launch: Launch,
        config: LongPollConfig | None = None,
    ) -> list[str]:
        """Launch ``requests`` in groups of at most ``max_concurrent`` jobs.

        A group must reach a terminal state (or time out) before the next one
        starts. Returns every launched job id in request order.
        """
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be greater than zero")
        config = config or LongPollConfig()
        job_ids: list[str] = []
        total_groups = (len(requests) + max_concurrent - 1) // max_concurrent
        for group_index, start in enumerate(range(0, len(requests), max_concurrent)):
            group = [launch(request) for request in requests[start : start + max_concurrent]]
            job_ids.extend(group)
            logger.info("Launched group %d/%d with %d job(s)", group_index + 1, total_groups, len(group))
            result = await self.poll_batch_jobs(group, config)
            if result.state == PollState.TIMED_OUT:
                logger.warning(
                    "Group %d/%d still has %d running job(s) after %d ms; moving on",
                    group_index + 1,
                    total_groups,
                    result.pending,
                    config.timeout_ms,
                )
        return job_ids

