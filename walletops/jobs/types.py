from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class JobKind(str, Enum):
    REFUND_WALLETS = "refund_wallets"
    REFUND_WALLETS_SPECIFIC_AMOUNT = "refund_wallets_specific_amount"
    REFUND_SPECIFIC_AMOUNT = "refund_specific_amount"
    DISTRIBUTE_SOL = "distribute_sol"
    CLOSE_ACCOUNTS = "close_accounts"
    CLOSE_TOKEN_ACCOUNT = "close_token_account"
    CLOSE_TOKEN_ACCOUNTS_BATCH = "close_token_accounts_batch"
    BURN_TOKENS = "burn_tokens"
    BURN_EACH_TOKENS = "burn_each_tokens"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.PARTIALLY_SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED}
)


@dataclass(slots=True)
class JobProgress:
    completed: int = 0
    total: int = 0
    percentage: float = 0.0
    step: str | None = None


@dataclass(slots=True)
class JobSnapshot:
    id: str
    kind: JobKind
    status: JobStatus
    progress: JobProgress
    result: Any
    error_message: str | None
    cancel_requested: bool
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


@dataclass(frozen=True)
class JobCompletion:
    payload: Any = None
    partial: bool = False
    failed: bool = False
    error_message: str | None = None


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
